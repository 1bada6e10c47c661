"""
Job endpoints for external cron callers.

POST /jobs/expire?job=expire-all
    X-Job-Token: <JOB_TOKEN>

Optional query parameter restore=true|false overrides each shop's
restore-on-expiry setting for this run.
"""
from flask import Blueprint, request, jsonify, current_app

from ..middleware.job_auth import require_job_token
from ..services.expiry_service import JOB_EXPIRE_ALL, JOB_NAMES, run_expiry_sweep
from ..utils.errors import bad_request, conflict
from ..utils.exceptions import LockContentionError

jobs_bp = Blueprint('jobs', __name__)

_TRUE = ('1', 'true', 'yes')
_FALSE = ('0', 'false', 'no')


def _restore_override():
    value = (request.args.get('restore') or '').strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    return None


@jobs_bp.route('/expire', methods=['POST'])
@require_job_token
def expire():
    job_name = (request.args.get('job') or JOB_EXPIRE_ALL).strip()
    if job_name not in JOB_NAMES:
        return bad_request(f"Unknown job '{job_name}'. Expected one of: {', '.join(JOB_NAMES)}")

    try:
        summary = run_expiry_sweep(job_name, restore_points=_restore_override())
    except LockContentionError as e:
        current_app.logger.info(f'Expiry job {job_name} skipped: {e.message}')
        return conflict(e.message)

    return jsonify({'ok': True, **summary})
