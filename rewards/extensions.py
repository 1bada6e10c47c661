"""
Flask extensions shared by the rewards engine.

Constraint names follow a fixed convention so the Alembic migrations and the
models agree on the names of the idempotency constraints.
"""
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy import MetaData

NAMING_CONVENTION = {
    'ix': 'ix_%(column_0_label)s',
    'uq': 'uq_%(table_name)s_%(column_0_name)s',
    'pk': 'pk_%(table_name)s',
}

# Database
db = SQLAlchemy(metadata=MetaData(naming_convention=NAMING_CONVENTION))

# Migrations
migrate = Migrate()
