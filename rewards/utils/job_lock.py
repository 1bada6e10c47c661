"""
TTL-bounded job locks stored in the database.

Only one run of a named job may hold the lock at a time across every worker
and process. A lock whose expires_at has passed is stale and is taken over;
the holder's liveness is never checked.

Usage:
    with job_lock('expire-redemptions'):
        ...
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import timedelta
from typing import Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.job_lock import JobLock
from .exceptions import LockContentionError
from .time import utcnow

logger = logging.getLogger(__name__)

MIN_TTL_SECONDS = 10


def _ttl(ttl_seconds: Optional[int]) -> int:
    if ttl_seconds is None:
        ttl_seconds = current_app.config.get('JOB_LOCK_TTL_SECONDS', 300)
    return max(MIN_TTL_SECONDS, int(ttl_seconds))


def acquire_lock(key: str, ttl_seconds: int = None, now=None) -> Optional[str]:
    """
    Try to take the lock.

    Returns the new lock id, or None when another holder's lock is live.
    """
    now = now or utcnow()
    lock_id = uuid.uuid4().hex
    expires_at = now + timedelta(seconds=_ttl(ttl_seconds))

    # Take over a stale row in one conditional statement
    taken = JobLock.query.filter(
        JobLock.key == key,
        JobLock.expires_at <= now,
    ).update({
        'lock_id': lock_id,
        'acquired_at': now,
        'expires_at': expires_at,
    }, synchronize_session=False)
    if taken:
        db.session.commit()
        logger.info(f'Took over stale job lock {key}')
        return lock_id

    if db.session.get(JobLock, key) is not None:
        db.session.rollback()
        return None

    db.session.add(JobLock(key=key, lock_id=lock_id, acquired_at=now, expires_at=expires_at))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return None
    return lock_id


def release_lock(key: str, lock_id: str) -> bool:
    """Release only if we still own it; a lock taken over after expiry is left alone."""
    deleted = JobLock.query.filter_by(key=key, lock_id=lock_id).delete(synchronize_session=False)
    db.session.commit()
    if not deleted:
        logger.warning(f'Job lock {key} was no longer held by {lock_id} at release')
    return bool(deleted)


@contextmanager
def job_lock(key: str, ttl_seconds: int = None):
    """
    Hold the named lock for the duration of the block.

    Raises:
        LockContentionError: another run holds a live lock
    """
    lock_id = acquire_lock(key, ttl_seconds)
    if lock_id is None:
        raise LockContentionError(key)
    try:
        yield lock_id
    finally:
        db.session.rollback()
        release_lock(key, lock_id)
