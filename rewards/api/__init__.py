from .customer import customer_bp
from .proxy import proxy_bp
from .admin import admin_bp
from .jobs import jobs_bp

__all__ = ['customer_bp', 'proxy_bp', 'admin_bp', 'jobs_bp']
