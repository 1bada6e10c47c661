from .shopify_auth import (
    AuthResult,
    require_auth,
    verify_admin_session,
    verify_app_proxy,
    verify_customer_session,
)
from .job_auth import check_job_token, require_job_token

__all__ = [
    'AuthResult',
    'require_auth',
    'verify_admin_session',
    'verify_app_proxy',
    'verify_customer_session',
    'check_job_token',
    'require_job_token',
]
