"""
Expiry sweeper.

Two jobs, each guarded by its own TTL job lock:

- expire-redemptions: ISSUED/APPLIED codes past expires_at become EXPIRED.
  Whether the points come back is a per-shop setting
  (restore_points_on_redemption_expiry, off by default) that callers may
  override per run.
- expire-inactive: balances with no activity for points_expire_inactivity_days
  are zeroed with an EXPIRE ledger entry keyed per customer per day, so a
  second run on the same day is a no-op.

expire-all runs both.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from flask import current_app
from sqlalchemy import update

from .ledger_service import get_balance, record_movement
from .redemption_service import RedemptionService
from .settings_service import SettingsProvider
from ..extensions import db
from ..models.ledger import CustomerPointsBalance, LedgerSource, LedgerType
from ..models.redemption import ACTIVE_STATUSES, Redemption, RedemptionStatus
from ..utils.exceptions import DuplicateEntryError
from ..utils.job_lock import job_lock
from ..utils.time import utcnow, isoformat

logger = logging.getLogger(__name__)

JOB_EXPIRE_REDEMPTIONS = 'expire-redemptions'
JOB_EXPIRE_INACTIVE = 'expire-inactive'
JOB_EXPIRE_ALL = 'expire-all'

JOB_NAMES = (JOB_EXPIRE_REDEMPTIONS, JOB_EXPIRE_INACTIVE, JOB_EXPIRE_ALL)

DEFAULT_BATCH_SIZE = 250


def expire_redemptions(
    shop: str,
    now: datetime = None,
    restore_points: Optional[bool] = None,
    settings_provider: SettingsProvider = None,
) -> Dict[str, int]:
    """
    Expire a shop's unused codes that are past expires_at.

    A redemption whose discount was never created in Shopify is voided with
    its points restored whatever the restore setting says; it is counted in
    both totals.

    Args:
        restore_points: None follows the shop setting; True/False overrides it

    Returns:
        {'expiredCount': n, 'pointsRestored': m}
    """
    now = now or utcnow()
    provider = settings_provider or SettingsProvider()
    settings = provider.get(shop)
    restore = settings.restore_points_on_redemption_expiry if restore_points is None else bool(restore_points)
    redemptions = RedemptionService(shop, settings_provider=provider)

    candidates = (
        Redemption.query
        .filter(
            Redemption.shop == shop,
            Redemption.status.in_(ACTIVE_STATUSES),
            Redemption.expires_at < now,
        )
        .order_by(Redemption.id)
        .all()
    )

    expired_count = 0
    points_restored = 0
    for redemption in candidates:
        if not redemption.discount_node_id:
            redemptions.void_and_restore(redemption.id, reason='DISCOUNT_NOT_CREATED', now=now)
            expired_count += 1
            points_restored += redemption.points
            continue

        try:
            updated = Redemption.query.filter(
                Redemption.id == redemption.id,
                Redemption.status.in_(ACTIVE_STATUSES),
            ).update({
                'status': RedemptionStatus.EXPIRED.value,
                'expired_at': now,
            }, synchronize_session='fetch')
            if not updated:
                db.session.rollback()
                continue

            if restore:
                record_movement(
                    shop, redemption.customer_id, LedgerType.ADJUST, redemption.points,
                    LedgerSource.REDEMPTION_EXPIRED, redemption.id,
                    description=f'Restored {redemption.points} pts (code {redemption.code} expired unused)',
                    inc_redeemed=-redemption.points,
                    now=now,
                )
                redemption.restored_at = now
                redemption.restore_reason = 'EXPIRED_UNUSED'
                points_restored += redemption.points

            db.session.commit()
            expired_count += 1
        except DuplicateEntryError:
            db.session.rollback()
            logger.info(f'Redemption {redemption.id} restore already recorded')
        except Exception:
            db.session.rollback()
            raise

    if expired_count:
        logger.info(f'Expired {expired_count} redemptions for {shop} (restored {points_restored} pts)')
    return {'expiredCount': expired_count, 'pointsRestored': points_restored}


def expire_inactive_balances(
    shop: str,
    now: datetime = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    settings_provider: SettingsProvider = None,
) -> Dict[str, int]:
    """
    Zero balances that have been inactive longer than the shop allows.

    A zero inactivity window disables expiry. Eligibility is checked again
    inside each customer's transaction, and the final balance update only
    matches if nothing changed since, so a concurrent earn or redeem wins.
    """
    now = now or utcnow()
    settings = (settings_provider or SettingsProvider()).get(shop)
    days = settings.points_expire_inactivity_days
    if days <= 0:
        return {'expiredCustomers': 0, 'pointsExpired': 0}

    cutoff = now - timedelta(days=days)
    day_key = now.strftime('%Y-%m-%d')

    expired_customers = 0
    points_expired = 0
    last_id = 0

    while True:
        batch = (
            CustomerPointsBalance.query
            .filter(
                CustomerPointsBalance.shop == shop,
                CustomerPointsBalance.id > last_id,
                CustomerPointsBalance.expired_at.is_(None),
                CustomerPointsBalance.balance > 0,
                CustomerPointsBalance.last_activity_at <= cutoff,
            )
            .order_by(CustomerPointsBalance.id)
            .limit(batch_size)
            .all()
        )
        if not batch:
            break
        last_id = batch[-1].id
        customer_ids = [row.customer_id for row in batch]
        db.session.rollback()

        for customer_id in customer_ids:
            expired = _expire_customer(shop, customer_id, cutoff, day_key, days, now)
            if expired:
                expired_customers += 1
                points_expired += expired

        if len(batch) < batch_size:
            break

    if expired_customers:
        logger.info(f'Inactivity-expired {expired_customers} customers for {shop} ({points_expired} pts)')
    return {'expiredCustomers': expired_customers, 'pointsExpired': points_expired}


def _expire_customer(shop: str, customer_id: str, cutoff: datetime, day_key: str,
                     days: int, now: datetime) -> int:
    """Expire one customer's balance. Returns the points expired (0 if skipped)."""
    try:
        row = get_balance(shop, customer_id, for_update=True)
        if row is None or row.balance <= 0 or row.expired_at is not None or row.last_activity_at > cutoff:
            db.session.rollback()
            return 0

        points = row.balance
        record_movement(
            shop, customer_id, LedgerType.EXPIRE, -points,
            LedgerSource.INACTIVITY, f'INACTIVITY:{customer_id}:{day_key}',
            description=f'Expired {points} pts after {days} days of inactivity',
            now=now,
            apply_balance=False,
        )

        result = db.session.execute(
            update(CustomerPointsBalance)
            .where(
                CustomerPointsBalance.id == row.id,
                CustomerPointsBalance.balance == points,
                CustomerPointsBalance.expired_at.is_(None),
                CustomerPointsBalance.last_activity_at <= cutoff,
            )
            .values(balance=0, expired_at=now, updated_at=now)
            .execution_options(synchronize_session='fetch')
        )
        if result.rowcount != 1:
            db.session.rollback()
            logger.info(f'Inactivity expiry for {shop}/{customer_id} lost a race; skipped')
            return 0

        db.session.commit()
        return points
    except DuplicateEntryError:
        db.session.rollback()
        return 0
    except Exception:
        db.session.rollback()
        raise


def _shops_with(model) -> List[str]:
    return [row[0] for row in db.session.query(model.shop).distinct().order_by(model.shop).all()]


def run_expiry_sweep(
    job_name: str = JOB_EXPIRE_ALL,
    now: datetime = None,
    restore_points: Optional[bool] = None,
    settings_provider: SettingsProvider = None,
    batch_size: int = None,
) -> Dict[str, Any]:
    """
    Run a named expiry job across every shop.

    Raises:
        ValueError: unknown job name
        LockContentionError: the job is already running
    """
    if job_name not in JOB_NAMES:
        raise ValueError(f"Unknown job '{job_name}'. Expected one of: {', '.join(JOB_NAMES)}")

    now = now or utcnow()
    provider = settings_provider or SettingsProvider()
    if batch_size is None:
        batch_size = current_app.config.get('INACTIVITY_BATCH_SIZE', DEFAULT_BATCH_SIZE)

    summary = {
        'job': job_name,
        'expiredCount': 0,
        'pointsRestored': 0,
        'expiredCustomers': 0,
        'pointsExpired': 0,
        'shops': 0,
        'ranAt': isoformat(now),
    }
    shops = set()

    if job_name in (JOB_EXPIRE_REDEMPTIONS, JOB_EXPIRE_ALL):
        with job_lock(f'expiry:{JOB_EXPIRE_REDEMPTIONS}'):
            for shop in _shops_with(Redemption):
                result = expire_redemptions(shop, now, restore_points, provider)
                summary['expiredCount'] += result['expiredCount']
                summary['pointsRestored'] += result['pointsRestored']
                shops.add(shop)

    if job_name in (JOB_EXPIRE_INACTIVE, JOB_EXPIRE_ALL):
        with job_lock(f'expiry:{JOB_EXPIRE_INACTIVE}'):
            for shop in _shops_with(CustomerPointsBalance):
                result = expire_inactive_balances(shop, now, batch_size, provider)
                summary['expiredCustomers'] += result['expiredCustomers']
                summary['pointsExpired'] += result['pointsExpired']
                shops.add(shop)

    summary['shops'] = len(shops)
    logger.info(
        f"Expiry sweep {job_name}: {summary['expiredCount']} codes expired, "
        f"{summary['pointsRestored']} pts restored, {summary['expiredCustomers']} customers expired"
    )
    return summary
