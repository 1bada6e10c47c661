"""
Background scheduler for the expiry sweeps.

Handles:
- Redemption expiry (daily at 00:15 UTC)
- Inactivity expiry (daily at 03:00 UTC)

External cron can drive the same work through POST /jobs/expire; the job
locks keep the two from overlapping.
"""
import os
import logging

from .exceptions import LockContentionError

logger = logging.getLogger(__name__)

# Global scheduler instance
_scheduler = None
_flask_app = None  # Store Flask app reference for context


def init_scheduler(app):
    """
    Initialize the background scheduler.

    Only runs in production or when ENABLE_SCHEDULER=true.
    Only the first gunicorn worker in a process group starts it.
    """
    global _scheduler, _flask_app

    _flask_app = app

    if app.config.get('TESTING'):
        logger.debug('[Scheduler] Disabled in testing mode')
        return

    if not (os.getenv('FLASK_ENV') == 'production' or os.getenv('ENABLE_SCHEDULER') == 'true'):
        logger.info('[Scheduler] Disabled (set FLASK_ENV=production or ENABLE_SCHEDULER=true)')
        return

    if os.getenv('SCHEDULER_RUNNING') == 'true':
        logger.info('[Scheduler] Already running in another process')
        return

    from apscheduler.schedulers.background import BackgroundScheduler
    from apscheduler.triggers.cron import CronTrigger

    _scheduler = BackgroundScheduler(
        timezone='UTC',
        job_defaults={
            'coalesce': True,  # Combine missed runs
            'max_instances': 1,  # Prevent concurrent runs
            'misfire_grace_time': 3600  # 1 hour grace period
        }
    )

    _scheduler.add_job(
        run_redemption_expiry,
        trigger=CronTrigger(hour=0, minute=15),
        id='expire_redemptions',
        name='Expire unused redemption codes',
        replace_existing=True
    )

    _scheduler.add_job(
        run_inactivity_expiry,
        trigger=CronTrigger(hour=3, minute=0),
        id='expire_inactive',
        name='Expire inactive point balances',
        replace_existing=True
    )

    _scheduler.start()
    os.environ['SCHEDULER_RUNNING'] = 'true'
    logger.info('[Scheduler] Started: redemption expiry 00:15 UTC, inactivity expiry 03:00 UTC')

    import atexit
    atexit.register(shutdown_scheduler)


def shutdown_scheduler():
    """Gracefully shutdown the scheduler."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info('[Scheduler] Shutdown complete')


def get_scheduler_status() -> dict:
    if not _scheduler or not _scheduler.running:
        return {'running': False, 'jobs': []}
    return {
        'running': True,
        'jobs': [
            {
                'id': job.id,
                'name': job.name,
                'nextRunTime': job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in _scheduler.get_jobs()
        ],
    }


def _run_sweep(job_name: str):
    if not _flask_app:
        logger.error('[Scheduler] Flask app not initialized')
        return None

    with _flask_app.app_context():
        from ..services.expiry_service import run_expiry_sweep

        try:
            summary = run_expiry_sweep(job_name)
        except LockContentionError as e:
            logger.info(f'[Scheduler] {job_name} skipped: {e.message}')
            return None
        except Exception as e:
            logger.error(f'[Scheduler] {job_name} failed: {e}')
            return None

        logger.info(f'[Scheduler] {job_name} complete: {summary}')
        return summary


def run_redemption_expiry():
    """Expire ISSUED/APPLIED codes past their expiry."""
    from ..services.expiry_service import JOB_EXPIRE_REDEMPTIONS
    return _run_sweep(JOB_EXPIRE_REDEMPTIONS)


def run_inactivity_expiry():
    """Zero balances idle longer than each shop's inactivity window."""
    from ..services.expiry_service import JOB_EXPIRE_INACTIVE
    return _run_sweep(JOB_EXPIRE_INACTIVE)
