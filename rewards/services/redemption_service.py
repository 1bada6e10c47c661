"""
Redemption manager.

Issues single-use discount codes paid for with points, in two phases:

1. Local transaction: debit the balance, append the REDEEM ledger entry and
   create the ISSUED redemption. Committed before any remote call.
2. Remote call: create the Shopify discount code. On any failure the local
   debit is undone by a compensating transaction (void_and_restore) and the
   original error is re-raised.

A customer therefore never ends up debited without either a usable code or
a restored balance.
"""
import logging
import secrets
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Iterable, List

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from .ledger_service import debit_balance, get_balance, record_movement
from .settings_service import SettingsProvider, ShopSettingsSnapshot
from .shopify_client import ShopifyClient, get_shopify_client, normalize_customer_id
from ..extensions import db
from ..models.ledger import LedgerSource, LedgerType
from ..models.redemption import ACTIVE_STATUSES, Redemption, RedemptionStatus
from ..utils.exceptions import (
    ConfigurationError,
    CustomerIneligibleError,
    DuplicateEntryError,
    InsufficientPointsError,
    InvalidAmountError,
    InvalidStatusTransitionError,
    NotFoundError,
    RedemptionPendingError,
    RemoteServiceError,
)
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

# No 0/O or 1/I so codes survive being read aloud or retyped
CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
CODE_LENGTH = 8


def generate_code(prefix: str = 'RWD') -> str:
    body = ''.join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
    return f'{prefix}-{body}' if prefix else body


class RedemptionService:
    """
    Issues, consumes and voids redemptions for one shop.

    Usage:
        service = RedemptionService(shop, shopify_client=client)
        result = service.issue_redemption_code(customer_id, 500, idem_key='abc')
    """

    def __init__(self, shop: str, settings_provider: SettingsProvider = None,
                 shopify_client: ShopifyClient = None):
        self.shop = shop
        self.settings_provider = settings_provider or SettingsProvider()
        self._shopify_client = shopify_client

    @property
    def shopify_client(self) -> Optional[ShopifyClient]:
        if self._shopify_client is None:
            self._shopify_client = get_shopify_client(self.shop)
        return self._shopify_client

    # ==================== Queries ====================

    def active_redemption(self, customer_id: str, now: datetime = None) -> Optional[Redemption]:
        """Newest unexpired ISSUED/APPLIED redemption whose discount exists in Shopify."""
        now = now or utcnow()
        return (
            Redemption.query
            .filter(
                Redemption.shop == self.shop,
                Redemption.customer_id == customer_id,
                Redemption.status.in_(ACTIVE_STATUSES),
                Redemption.expires_at > now,
                Redemption.discount_node_id.isnot(None),
            )
            .order_by(Redemption.created_at.desc(), Redemption.id.desc())
            .first()
        )

    def pending_redemption(self, customer_id: str, now: datetime = None,
                           idem_key: str = None) -> Optional[Redemption]:
        """Unexpired redemption that is debited but has no discount yet."""
        now = now or utcnow()
        query = Redemption.query.filter(
            Redemption.shop == self.shop,
            Redemption.customer_id == customer_id,
            Redemption.status.in_(ACTIVE_STATUSES),
            Redemption.expires_at > now,
            Redemption.discount_node_id.is_(None),
        )
        if idem_key:
            query = query.filter(Redemption.idem_key == idem_key)
        return query.order_by(Redemption.id).first()

    def void_abandoned(self, customer_id: str, now: datetime = None) -> int:
        """
        Void and restore redemptions whose discount was never created.

        A row stays without a discount only while its request is calling
        Shopify; past REDEMPTION_PENDING_GRACE_SECONDS that request is gone.
        """
        now = now or utcnow()
        grace = current_app.config.get('REDEMPTION_PENDING_GRACE_SECONDS', 120)
        abandoned = (
            Redemption.query
            .filter(
                Redemption.shop == self.shop,
                Redemption.customer_id == customer_id,
                Redemption.status.in_(ACTIVE_STATUSES),
                Redemption.discount_node_id.is_(None),
                Redemption.created_at <= now - timedelta(seconds=grace),
            )
            .order_by(Redemption.id)
            .all()
        )
        for redemption in abandoned:
            self.void_and_restore(redemption.id, reason='DISCOUNT_NOT_CREATED', now=now)
        return len(abandoned)

    def get_redemption(self, redemption_id: int) -> Redemption:
        redemption = db.session.get(Redemption, redemption_id)
        if redemption is None or redemption.shop != self.shop:
            raise NotFoundError('Redemption', redemption_id)
        return redemption

    # ==================== Issue ====================

    def issue_redemption_code(
        self,
        customer_id: str,
        points_requested: int,
        idem_key: str = None,
        now: datetime = None,
    ) -> Dict[str, Any]:
        """
        Issue a discount code worth one redemption step.

        Validation runs in a fixed order and each failure is its own error:
        InvalidAmountError, CustomerIneligibleError, ConfigurationError,
        then InsufficientPointsError. An idempotent replay or an existing
        active redemption is returned unchanged instead of debiting again.

        Raises:
            RemoteServiceError: discount creation failed; points were restored
            RedemptionPendingError: a duplicate of this request is still being issued
        """
        now = now or utcnow()
        customer_id = normalize_customer_id(customer_id)
        idem_key = (idem_key or '').strip() or None
        settings = self.settings_provider.get(self.shop)

        if isinstance(points_requested, bool) or not isinstance(points_requested, int) \
                or points_requested <= 0 or points_requested not in settings.redemption_steps:
            raise InvalidAmountError(points_requested, settings.redemption_steps)

        client = self.shopify_client
        if client is None:
            raise ConfigurationError(f'Shop {self.shop} has no Shopify access token')

        self._check_customer_eligible(settings, client, customer_id)
        eligible_scope = self._resolve_eligible_scope(settings, client)
        self.void_abandoned(customer_id, now)

        if idem_key:
            replay = self._find_replay(customer_id, idem_key, now)
            if replay is not None:
                logger.info(f'Idempotent replay of redemption {replay.code} for {self.shop}/{customer_id}')
                return self._result(replay)

        if settings.prevent_multiple_active_redemptions:
            active = self.active_redemption(customer_id, now)
            if active is not None:
                logger.info(f'Returning active redemption {active.code} for {self.shop}/{customer_id}')
                return self._result(active)

        self._raise_if_pending(settings, customer_id, idem_key, now)

        value_dollars = settings.value_for(points_requested)
        if value_dollars is None:
            raise ConfigurationError(f'Redemption value map has no value for {points_requested} points')

        balance = get_balance(self.shop, customer_id)
        current = balance.balance if balance else 0
        if current < points_requested:
            raise InsufficientPointsError(current, points_requested)

        redemption, created = self._debit_and_issue(
            settings, customer_id, points_requested, value_dollars, idem_key, now
        )
        if not created:
            return self._result(redemption)

        try:
            node_id = client.create_discount_code(
                code=redemption.code,
                customer_id=customer_id,
                value_dollars=value_dollars,
                min_subtotal=settings.redemption_min_order,
                eligible_scope=eligible_scope,
                expires_at=redemption.expires_at,
            )
        except Exception as e:
            logger.error(f'Discount creation failed for redemption {redemption.id} ({self.shop}/{customer_id}): {e}')
            self.void_and_restore(redemption.id, reason=f'DISCOUNT_CREATE_FAILED: {e}')
            raise

        redemption.discount_node_id = node_id
        db.session.commit()

        logger.info(f'Issued {redemption.code} ({points_requested} pts, ${value_dollars}) to {self.shop}/{customer_id}')
        return self._result(redemption)

    def _check_customer_eligible(self, settings: ShopSettingsSnapshot, client, customer_id: str) -> None:
        if not settings.excluded_customer_tags:
            return
        tags = client.fetch_customer_tags(customer_id)
        excluded_tag = settings.is_customer_excluded(tags)
        if excluded_tag:
            raise CustomerIneligibleError(customer_id, excluded_tag)

    def _resolve_eligible_scope(self, settings: ShopSettingsSnapshot, client) -> str:
        """Collection GID for the configured handle, cached while the handle is unchanged."""
        handle = settings.eligible_collection_handle
        if not handle:
            raise ConfigurationError('Eligible collection handle is not configured')

        if settings.eligible_collection_gid:
            return settings.eligible_collection_gid

        try:
            gid = client.resolve_collection_by_handle(handle)
        except RemoteServiceError as e:
            raise ConfigurationError(f"Could not resolve eligible collection '{handle}': {e.message}") from e
        if not gid:
            raise ConfigurationError(f"Eligible collection '{handle}' was not found")

        self.settings_provider.remember_collection_gid(self.shop, handle, gid)
        return gid

    def _find_replay(self, customer_id: str, idem_key: str, now: datetime) -> Optional[Redemption]:
        existing = Redemption.query.filter_by(
            shop=self.shop, customer_id=customer_id, idem_key=idem_key
        ).first()
        if existing is not None and existing.status != RedemptionStatus.VOID.value \
                and existing.expires_at > now and existing.discount_node_id:
            return existing
        return None

    def _raise_if_pending(self, settings: ShopSettingsSnapshot, customer_id: str,
                          idem_key: Optional[str], now: datetime) -> None:
        """Refuse to debit while a request this one would duplicate is still calling Shopify."""
        pending = None
        if idem_key:
            pending = self.pending_redemption(customer_id, now, idem_key=idem_key)
        if pending is None and settings.prevent_multiple_active_redemptions:
            pending = self.pending_redemption(customer_id, now)
        if pending is not None:
            raise RedemptionPendingError(pending.id)

    def _debit_and_issue(
        self,
        settings: ShopSettingsSnapshot,
        customer_id: str,
        points: int,
        value_dollars,
        idem_key: Optional[str],
        now: datetime,
    ):
        """
        Phase 1. Returns (redemption, created).

        The replay, single-active and pending checks are repeated under the
        balance row lock, and the debit itself re-checks the balance, so
        concurrent requests for the same customer cannot both debit.
        """
        prefix = current_app.config.get('REDEMPTION_CODE_PREFIX', 'RWD')
        try:
            balance = get_balance(self.shop, customer_id, for_update=True)

            if idem_key:
                replay = self._find_replay(customer_id, idem_key, now)
                if replay is not None:
                    db.session.rollback()
                    return replay, False

            if settings.prevent_multiple_active_redemptions:
                active = self.active_redemption(customer_id, now)
                if active is not None:
                    db.session.rollback()
                    return active, False

            self._raise_if_pending(settings, customer_id, idem_key, now)

            if balance is None or balance.balance < points:
                raise InsufficientPointsError(balance.balance if balance else 0, points)

            if idem_key:
                # Free the key held by a void or expired attempt so the retry can take it
                Redemption.query.filter(
                    Redemption.shop == self.shop,
                    Redemption.customer_id == customer_id,
                    Redemption.idem_key == idem_key,
                    or_(
                        Redemption.status == RedemptionStatus.VOID.value,
                        Redemption.expires_at <= now,
                    ),
                ).update({'idem_key': None}, synchronize_session='fetch')

            redemption = Redemption(
                shop=self.shop,
                customer_id=customer_id,
                points=points,
                value_dollars=value_dollars,
                code=generate_code(prefix),
                idem_key=idem_key,
                status=RedemptionStatus.ISSUED.value,
                issued_at=now,
                expires_at=now + timedelta(hours=settings.redemption_expiry_hours),
                created_at=now,
            )
            db.session.add(redemption)
            db.session.flush()

            debit_balance(self.shop, customer_id, points, now)
            record_movement(
                self.shop, customer_id, LedgerType.REDEEM, -points,
                LedgerSource.REDEMPTION, redemption.id,
                description=f'Redeemed {points} pts for ${value_dollars} off (code {redemption.code})',
                now=now,
                apply_balance=False,
            )
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if idem_key:
                racer = self._find_replay(customer_id, idem_key, now)
                if racer is not None:
                    return racer, False
                pending = self.pending_redemption(customer_id, now, idem_key=idem_key)
                if pending is not None:
                    raise RedemptionPendingError(pending.id)
            raise
        except Exception:
            db.session.rollback()
            raise

        return redemption, True

    # ==================== Compensation ====================

    def void_and_restore(self, redemption_id: int, reason: str, now: datetime = None) -> Redemption:
        """
        Compensating transaction for a redemption whose code is unusable.

        Marks it VOID, credits the points back with an ADJUST entry and
        lowers lifetime_redeemed (floored at zero). Running it twice restores
        once: the ADJUST entry is keyed by the redemption id.
        """
        now = now or utcnow()
        redemption = self.get_redemption(redemption_id)
        if redemption.status == RedemptionStatus.VOID.value and redemption.restored_at:
            return redemption
        if redemption.status not in ACTIVE_STATUSES + (RedemptionStatus.VOID.value,):
            raise InvalidStatusTransitionError('redemption', redemption.status, RedemptionStatus.VOID.value)

        try:
            redemption.status = RedemptionStatus.VOID.value
            redemption.voided_at = now
            redemption.restored_at = now
            redemption.restore_reason = (reason or '')[:500]

            record_movement(
                self.shop, redemption.customer_id, LedgerType.ADJUST, redemption.points,
                LedgerSource.REDEMPTION_VOID, redemption.id,
                description=f'Restored {redemption.points} pts (code {redemption.code} voided)',
                inc_redeemed=-redemption.points,
                now=now,
            )
            db.session.commit()
        except DuplicateEntryError:
            # Points were already restored; only the status change was lost
            db.session.rollback()
            redemption = self.get_redemption(redemption_id)
            redemption.status = RedemptionStatus.VOID.value
            redemption.voided_at = redemption.voided_at or now
            redemption.restored_at = redemption.restored_at or now
            db.session.commit()
            return redemption
        except Exception:
            db.session.rollback()
            raise

        logger.warning(f'Voided redemption {redemption.code} and restored {redemption.points} pts: {reason}')
        return redemption

    def void_redemption(self, redemption_id: int, reason: str = 'Voided by admin', now: datetime = None) -> Redemption:
        """
        Admin void of an ISSUED code.

        The remote discount is deactivated first; if that fails nothing local
        changes and the error propagates, so the points are never restored
        while the code is still usable.
        """
        redemption = self.get_redemption(redemption_id)
        if redemption.status != RedemptionStatus.ISSUED.value:
            raise InvalidStatusTransitionError('redemption', redemption.status, RedemptionStatus.VOID.value)

        if redemption.discount_node_id and self.shopify_client is not None:
            self.shopify_client.deactivate_discount(redemption.discount_node_id)

        return self.void_and_restore(redemption.id, reason=reason, now=now)

    # ==================== Consumption ====================

    def consume_codes_for_order(
        self,
        customer_id: Optional[str],
        order_id: str,
        codes: Iterable[str],
        now: datetime = None,
    ) -> List[Redemption]:
        """
        Mark redemptions used by a paid order as CONSUMED.

        Each code is matched to the customer first and falls back to a
        shop-wide match when the customer association drifted. Only
        ISSUED/APPLIED redemptions transition, so replays are no-ops.
        """
        now = now or utcnow()
        consumed = []
        for code in codes or []:
            code = str(code).strip().upper()
            if not code:
                continue

            redemption = None
            if customer_id:
                redemption = Redemption.query.filter_by(
                    shop=self.shop, customer_id=customer_id, code=code
                ).first()
            if redemption is None:
                redemption = Redemption.query.filter_by(shop=self.shop, code=code).first()
            if redemption is None:
                continue

            updated = Redemption.query.filter(
                Redemption.id == redemption.id,
                Redemption.status.in_(ACTIVE_STATUSES),
            ).update({
                'status': RedemptionStatus.CONSUMED.value,
                'applied_at': redemption.applied_at or now,
                'consumed_at': now,
                'consumed_order_id': str(order_id),
            }, synchronize_session='fetch')

            if updated:
                consumed.append(redemption)
                logger.info(f'Redemption {code} consumed by order {order_id} ({self.shop})')

        db.session.commit()
        return consumed

    # ==================== Helpers ====================

    @staticmethod
    def _result(redemption: Redemption) -> Dict[str, Any]:
        return {
            'redemptionId': redemption.id,
            'code': redemption.code,
            'discountNodeId': redemption.discount_node_id,
            'expiresAt': redemption.to_dict()['expiresAt'],
            'points': redemption.points,
            'valueDollars': float(redemption.value_dollars),
        }
