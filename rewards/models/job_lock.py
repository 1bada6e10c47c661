"""
TTL job lock rows.

A lock is held while expires_at is in the future. A crashed holder never
releases its row; the next run takes it over once it is stale.
"""
from ..extensions import db
from ..utils.time import utcnow


class JobLock(db.Model):
    __tablename__ = 'job_locks'

    key = db.Column(db.String(128), primary_key=True)
    lock_id = db.Column(db.String(64), nullable=False)
    acquired_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)

    def __repr__(self):
        return f'<JobLock {self.key} until {self.expires_at}>'
