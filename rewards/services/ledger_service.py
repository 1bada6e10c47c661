"""
Ledger store and balance aggregate.

Every point movement goes through record_movement(), which appends the ledger
row and applies the matching balance delta inside the caller's transaction.
The caller commits once per logical event, so a ledger row and its balance
change either both land or both roll back.

Balance rows are only changed with column arithmetic
(``balance = balance + :delta``) so concurrent writers serialize on the row
instead of overwriting each other's read-modify-write.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, Any

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models.ledger import (
    CustomerPointsBalance,
    LedgerSource,
    LedgerType,
    PointsLedgerEntry,
)
from ..utils.exceptions import DuplicateEntryError, InsufficientPointsError, InvalidAmountError
from ..utils.time import utcnow

logger = logging.getLogger(__name__)


def _value(item) -> str:
    return item.value if hasattr(item, 'value') else str(item)


def find_ledger_entry(shop: str, customer_id: str, type_, source, source_id: str) -> Optional[PointsLedgerEntry]:
    return PointsLedgerEntry.query.filter_by(
        shop=shop,
        customer_id=customer_id,
        type=_value(type_),
        source=_value(source),
        source_id=str(source_id),
    ).first()


def append_ledger_entry(entry: PointsLedgerEntry) -> PointsLedgerEntry:
    """
    Add a ledger row to the current transaction.

    Raises:
        DuplicateEntryError: the idempotency key already exists. If the
            database rejects the row the session is rolled back first, so
            the whole event is discarded.
    """
    existing = find_ledger_entry(entry.shop, entry.customer_id, entry.type, entry.source, entry.source_id)
    if existing:
        raise DuplicateEntryError('Ledger entry', f'{entry.type}:{entry.source}:{entry.source_id}')

    db.session.add(entry)
    try:
        db.session.flush()
    except IntegrityError as e:
        db.session.rollback()
        raise DuplicateEntryError('Ledger entry', f'{entry.type}:{entry.source}:{entry.source_id}') from e
    return entry


def ensure_balance_row(shop: str, customer_id: str, now: datetime = None) -> None:
    """Create the balance row if missing without racing a concurrent creator."""
    now = now or utcnow()
    values = {
        'shop': shop,
        'customer_id': customer_id,
        'balance': 0,
        'lifetime_earned': 0,
        'lifetime_redeemed': 0,
        'last_activity_at': now,
        'created_at': now,
        'updated_at': now,
    }
    table = CustomerPointsBalance.__table__
    dialect = db.session.get_bind().dialect.name

    if dialect == 'postgresql':
        from sqlalchemy.dialects.postgresql import insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=['shop', 'customer_id'])
        db.session.execute(stmt)
    elif dialect == 'sqlite':
        from sqlalchemy.dialects.sqlite import insert
        stmt = insert(table).values(**values).on_conflict_do_nothing(index_elements=['shop', 'customer_id'])
        db.session.execute(stmt)
    elif get_balance(shop, customer_id) is None:
        db.session.add(CustomerPointsBalance(**values))
        db.session.flush()


def apply_balance_delta(
    shop: str,
    customer_id: str,
    delta: int,
    inc_earned: int = 0,
    inc_redeemed: int = 0,
    now: datetime = None,
) -> None:
    """
    Apply a signed delta to the cached balance.

    A zero delta is an activity touch. Every call refreshes last_activity_at
    and clears expired_at. The result is clamped at zero as a last resort;
    callers must not rely on the clamp.
    """
    now = now or utcnow()
    ensure_balance_row(shop, customer_id, now)

    new_balance = CustomerPointsBalance.balance + delta
    new_redeemed = CustomerPointsBalance.lifetime_redeemed + inc_redeemed

    stmt = (
        update(CustomerPointsBalance)
        .where(
            CustomerPointsBalance.shop == shop,
            CustomerPointsBalance.customer_id == customer_id,
        )
        .values(
            balance=case((new_balance < 0, 0), else_=new_balance),
            lifetime_earned=CustomerPointsBalance.lifetime_earned + inc_earned,
            lifetime_redeemed=case((new_redeemed < 0, 0), else_=new_redeemed),
            last_activity_at=now,
            expired_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session='fetch')
    )
    db.session.execute(stmt)


def debit_balance(shop: str, customer_id: str, points: int, now: datetime = None) -> None:
    """
    Debit points only if the balance still covers them.

    The check and the debit are one statement, so two concurrent debits can
    never both pass on the same points.

    Raises:
        InsufficientPointsError: balance dropped below points
    """
    now = now or utcnow()
    stmt = (
        update(CustomerPointsBalance)
        .where(
            CustomerPointsBalance.shop == shop,
            CustomerPointsBalance.customer_id == customer_id,
            CustomerPointsBalance.balance >= points,
        )
        .values(
            balance=CustomerPointsBalance.balance - points,
            lifetime_redeemed=CustomerPointsBalance.lifetime_redeemed + points,
            last_activity_at=now,
            expired_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session='fetch')
    )
    result = db.session.execute(stmt)
    if result.rowcount != 1:
        current = get_balance(shop, customer_id)
        raise InsufficientPointsError(current.balance if current else 0, points)


def record_movement(
    shop: str,
    customer_id: str,
    type_: LedgerType,
    delta: int,
    source: LedgerSource,
    source_id: str,
    description: str = None,
    inc_earned: int = 0,
    inc_redeemed: int = 0,
    now: datetime = None,
    apply_balance: bool = True,
) -> PointsLedgerEntry:
    """
    Append a ledger entry and apply its balance delta. Does not commit.

    apply_balance=False is for callers that already moved the balance with a
    guarded statement (see debit_balance).
    """
    now = now or utcnow()
    entry = PointsLedgerEntry(
        shop=shop,
        customer_id=customer_id,
        type=_value(type_),
        delta=int(delta),
        source=_value(source),
        source_id=str(source_id),
        description=description,
        created_at=now,
    )
    append_ledger_entry(entry)
    if apply_balance:
        apply_balance_delta(shop, customer_id, int(delta), inc_earned, inc_redeemed, now)
    return entry


def get_balance(shop: str, customer_id: str, for_update: bool = False) -> Optional[CustomerPointsBalance]:
    query = CustomerPointsBalance.query.filter_by(shop=shop, customer_id=customer_id)
    if for_update:
        query = query.with_for_update()
    return query.first()


def ledger_sum(shop: str, customer_id: str) -> int:
    total = db.session.query(func.coalesce(func.sum(PointsLedgerEntry.delta), 0)).filter(
        PointsLedgerEntry.shop == shop,
        PointsLedgerEntry.customer_id == customer_id,
    ).scalar()
    return int(total or 0)


def recent_ledger(shop: str, customer_id: str, limit: int = 25):
    return (
        PointsLedgerEntry.query
        .filter_by(shop=shop, customer_id=customer_id)
        .order_by(PointsLedgerEntry.created_at.desc(), PointsLedgerEntry.id.desc())
        .limit(limit)
        .all()
    )


def reconcile_balance(shop: str, customer_id: str) -> Dict[str, Any]:
    """
    Recompute the cached balance from the ledger and fix any drift.

    The ledger wins. Returns the before/after values.
    """
    total = ledger_sum(shop, customer_id)
    row = get_balance(shop, customer_id, for_update=True)
    previous = row.balance if row else None

    if total < 0:
        logger.error(f'Ledger sum for {shop}/{customer_id} is negative ({total}); clamping to 0')
    target = max(0, total)

    if row is None:
        ensure_balance_row(shop, customer_id)
        row = get_balance(shop, customer_id)

    drift = target - (previous or 0)
    if previous is None or drift != 0:
        if previous is not None:
            logger.warning(
                f'Balance drift for {shop}/{customer_id}: cached={previous} ledger={total} drift={drift:+d}'
            )
        row.balance = target
    db.session.commit()

    return {
        'shop': shop,
        'customerId': customer_id,
        'ledgerSum': total,
        'previousBalance': previous,
        'balance': target,
        'drift': drift,
    }


def adjust_points(
    shop: str,
    customer_id: str,
    delta: int,
    reason: str = None,
    source_id: str = None,
    now: datetime = None,
) -> Dict[str, Any]:
    """
    Admin adjustment (ADJUST / ADMIN).

    A negative adjustment is capped at the current balance. Passing the same
    source_id twice applies the adjustment once.
    """
    if isinstance(delta, bool) or not isinstance(delta, int) or delta == 0:
        raise InvalidAmountError(delta)

    now = now or utcnow()
    source_id = source_id or uuid.uuid4().hex
    applied = delta

    existing = find_ledger_entry(shop, customer_id, LedgerType.ADJUST, LedgerSource.ADMIN, source_id)
    if existing is not None:
        return _duplicate_adjustment(shop, customer_id, source_id, existing)

    if delta < 0:
        row = get_balance(shop, customer_id, for_update=True)
        current = row.balance if row else 0
        if current <= 0:
            raise InsufficientPointsError(current, -delta)
        applied = max(delta, -current)

    try:
        entry = record_movement(
            shop, customer_id, LedgerType.ADJUST, applied, LedgerSource.ADMIN, source_id,
            description=reason or 'Manual adjustment',
            now=now,
        )
        db.session.commit()
    except DuplicateEntryError:
        db.session.rollback()
        existing = find_ledger_entry(shop, customer_id, LedgerType.ADJUST, LedgerSource.ADMIN, source_id)
        return _duplicate_adjustment(shop, customer_id, source_id, existing)

    row = get_balance(shop, customer_id)
    logger.info(f'Adjusted {shop}/{customer_id} by {applied:+d} (requested {delta:+d})')
    return {
        'applied': applied,
        'duplicate': False,
        'balance': row.balance,
        'entry': entry.to_dict(),
    }


def _duplicate_adjustment(shop: str, customer_id: str, source_id: str, existing) -> Dict[str, Any]:
    logger.info(f'Adjustment {source_id} for {shop}/{customer_id} already applied')
    row = get_balance(shop, customer_id)
    return {
        'applied': existing.delta if existing else 0,
        'duplicate': True,
        'balance': row.balance if row else 0,
        'entry': existing.to_dict() if existing else None,
    }
