"""
Shared-token authentication for job endpoints.

Cron callers send the token as X-Job-Token or as a Bearer token. When no
JOB_TOKEN is configured, requests are allowed only where the environment
permits unauthenticated jobs (development and testing).
"""
import hmac
import logging
from functools import wraps

from flask import current_app, request

from .shopify_auth import bearer_token
from ..utils.errors import ErrorCode, error_response

logger = logging.getLogger(__name__)


def _presented_token():
    return request.headers.get('X-Job-Token') or bearer_token()


def check_job_token():
    """
    Returns None when the caller may run jobs, otherwise an error response.
    """
    expected = current_app.config.get('JOB_TOKEN')
    if not expected:
        if current_app.config.get('ALLOW_UNAUTHENTICATED_JOBS', False):
            return None
        logger.error('JOB_TOKEN is not configured; refusing job request')
        return error_response('Job token is not configured', 'JOB_TOKEN_NOT_SET', 500, log_error=False)

    presented = _presented_token()
    if not presented:
        return error_response('Missing job token', ErrorCode.AUTH_REQUIRED, 401, log_error=False)
    if not hmac.compare_digest(presented.encode('utf-8'), expected.encode('utf-8')):
        logger.warning(f'Rejected job request from {request.remote_addr}: bad token')
        return error_response('Invalid job token', ErrorCode.INVALID_TOKEN, 403, log_error=False)
    return None


def require_job_token(f):
    """Decorator for job routes."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        failure = check_job_token()
        if failure is not None:
            return failure
        return f(*args, **kwargs)
    return decorated_function
