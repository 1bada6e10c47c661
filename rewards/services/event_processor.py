"""
Earn and reversal processing for commerce events.

Handlers are safe to run any number of times for the same event:
- order paid is gated by the (shop, order_id) snapshot
- refunds are keyed by (REVERSAL, REFUND, refund_id)
- cancellations are keyed by (REVERSAL, CANCEL, order_id)

Each key is checked explicitly before any write, and the unique constraints
hold as the second layer.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set

from sqlalchemy.exc import IntegrityError

from .ledger_service import apply_balance_delta, find_ledger_entry, get_balance, record_movement
from .order_events import OrderCancelledEvent, OrderLine, OrderPaidEvent, RefundCreatedEvent
from .redemption_service import RedemptionService
from .settings_service import SettingsProvider, ShopSettingsSnapshot
from .shopify_client import ShopifyClient, get_shopify_client
from ..extensions import db
from ..models.ledger import LedgerSource, LedgerType
from ..models.order_snapshot import OrderPointsSnapshot
from ..models.webhook_event import WebhookOutcome
from ..utils.exceptions import DuplicateEntryError
from ..utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class ProcessingOutcome:
    status: str
    code: str
    message: str = ''
    points: int = 0

    @classmethod
    def processed(cls, code: str, message: str = '', points: int = 0) -> 'ProcessingOutcome':
        return cls(WebhookOutcome.PROCESSED.value, code, message, points)

    @classmethod
    def skipped(cls, code: str, message: str = '') -> 'ProcessingOutcome':
        return cls(WebhookOutcome.SKIPPED.value, code, message, 0)


def _collection_key(value: str) -> str:
    """Compare collections by numeric id whether given as GID or plain id."""
    return str(value).rsplit('/', 1)[-1]


class EventProcessor:
    """
    Applies order paid, refund created and order cancelled events for one shop.

    Usage:
        processor = EventProcessor(shop)
        outcome = processor.process_order_paid(OrderPaidEvent.from_payload(shop, payload))
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

    # ==================== Eligibility ====================

    def _product_collections(self, settings: ShopSettingsSnapshot, lines: Iterable[OrderLine]) -> Dict[str, Set[str]]:
        """Collection membership of the order's products, only when collection exclusion is configured."""
        if not settings.excluded_collection_ids:
            return {}
        product_ids = [line.product_id for line in lines if line.product_id]
        if not product_ids:
            return {}
        client = self.shopify_client
        if client is None:
            logger.warning(f'Collection exclusion configured for {self.shop} but no Shopify client is available')
            return {}
        return client.fetch_product_collection_ids(product_ids)

    @staticmethod
    def line_is_eligible(line: OrderLine, settings: ShopSettingsSnapshot,
                         product_collections: Dict[str, Set[str]] = None) -> bool:
        """
        Tag include/exclude plus optional collection exclusion.

        An empty include list admits every line. Exclusion wins when a line
        matches both lists.
        """
        tags = {t.lower() for t in line.tags}
        include = {t.lower() for t in settings.include_product_tags}
        exclude = {t.lower() for t in settings.exclude_product_tags}

        if include and not (tags & include):
            return False
        if exclude and (tags & exclude):
            return False

        if settings.excluded_collection_ids and product_collections and line.product_id:
            excluded = {_collection_key(c) for c in settings.excluded_collection_ids}
            member_of = {_collection_key(c) for c in product_collections.get(str(line.product_id), set())}
            if excluded & member_of:
                return False
        return True

    def eligible_net_cents(self, settings: ShopSettingsSnapshot, lines: Iterable[OrderLine]) -> int:
        lines = list(lines)
        collections = self._product_collections(settings, lines)
        return sum(line.net_cents for line in lines if self.line_is_eligible(line, settings, collections))

    # ==================== Order paid ====================

    def process_order_paid(self, event: OrderPaidEvent, now: datetime = None) -> ProcessingOutcome:
        now = now or utcnow()
        if not event.order_id:
            return ProcessingOutcome.skipped('MISSING_ORDER_ID', 'Order payload has no id')

        if event.discount_codes:
            RedemptionService(
                self.shop, self.settings_provider, self._shopify_client
            ).consume_codes_for_order(event.customer_id, event.order_id, event.discount_codes, now)

        if not event.customer_id:
            return ProcessingOutcome.skipped('NO_CUSTOMER', 'Guest order')

        settings = self.settings_provider.get(self.shop)

        excluded_tag = settings.is_customer_excluded(event.customer_tags)
        if excluded_tag:
            logger.info(f'Order {event.order_id} skipped: customer {event.customer_id} tagged {excluded_tag}')
            return ProcessingOutcome.skipped('CUSTOMER_EXCLUDED', f'Customer tagged {excluded_tag}')

        if self._snapshot(event.order_id) is not None:
            return ProcessingOutcome.skipped('ALREADY_PROCESSED', f'Order {event.order_id} already has a snapshot')

        eligible_cents = self.eligible_net_cents(settings, event.lines)
        points = (eligible_cents // 100) * settings.earn_rate

        try:
            snapshot = OrderPointsSnapshot(
                shop=self.shop,
                order_id=event.order_id,
                order_name=event.order_name,
                customer_id=event.customer_id,
                eligible_net_merchandise=Decimal(eligible_cents) / 100,
                points_awarded=points,
                points_reversed_to_date=0,
                currency=event.currency,
                discount_codes=list(event.discount_codes),
                paid_at=event.paid_at or now,
                created_at=now,
            )
            db.session.add(snapshot)
            db.session.flush()

            if points > 0:
                record_movement(
                    self.shop, event.customer_id, LedgerType.EARN, points,
                    LedgerSource.ORDER, event.order_id,
                    description=f'Earned on order {event.order_name or event.order_id}',
                    inc_earned=points,
                    now=now,
                )
            else:
                apply_balance_delta(self.shop, event.customer_id, 0, now=now)
            db.session.commit()
        except (IntegrityError, DuplicateEntryError):
            db.session.rollback()
            return ProcessingOutcome.skipped('ALREADY_PROCESSED', f'Order {event.order_id} processed concurrently')
        except Exception:
            db.session.rollback()
            raise

        logger.info(f'Order {event.order_id} ({self.shop}): {points} pts to {event.customer_id}')
        return ProcessingOutcome.processed('EARNED', f'Awarded {points} points', points)

    # ==================== Refund created ====================

    def process_refund_created(self, event: RefundCreatedEvent, now: datetime = None) -> ProcessingOutcome:
        now = now or utcnow()
        if not event.order_id or not event.refund_id:
            return ProcessingOutcome.skipped('MISSING_ID', 'Refund payload has no order or refund id')

        snapshot = self._snapshot(event.order_id)
        if snapshot is None:
            return ProcessingOutcome.skipped('NO_SNAPSHOT', f'Order {event.order_id} never earned points')
        if snapshot.points_awarded <= 0 or snapshot.points_remaining <= 0:
            return ProcessingOutcome.skipped('NOTHING_TO_REVERSE', f'Order {event.order_id} has no points left')

        if find_ledger_entry(self.shop, snapshot.customer_id, LedgerType.REVERSAL,
                             LedgerSource.REFUND, event.refund_id):
            return ProcessingOutcome.skipped('ALREADY_PROCESSED', f'Refund {event.refund_id} already reversed')

        original_dollars = snapshot.eligible_cents // 100
        if original_dollars <= 0:
            return ProcessingOutcome.skipped('NOTHING_TO_REVERSE', 'Original order had no eligible dollars')

        settings = self.settings_provider.get(self.shop)
        refunded_cents = self._refunded_eligible_cents(settings, event)
        refunded_dollars = refunded_cents // 100

        reverse = refunded_dollars * snapshot.points_awarded // original_dollars
        reverse = min(reverse, snapshot.points_remaining)
        if reverse <= 0:
            return ProcessingOutcome.skipped('ZERO_REVERSAL', 'Refund does not reverse any points')

        return self._reverse(
            snapshot, reverse, LedgerSource.REFUND, event.refund_id,
            description=f'Reversal on refund {event.refund_id} for order {snapshot.order_name or snapshot.order_id}',
            now=now,
        )

    def _refunded_eligible_cents(self, settings: ShopSettingsSnapshot, event: RefundCreatedEvent) -> int:
        lines = [refund_line.line for refund_line in event.lines]
        collections = self._product_collections(settings, lines)
        return sum(
            refund_line.refunded_cents
            for refund_line in event.lines
            if self.line_is_eligible(refund_line.line, settings, collections)
        )

    # ==================== Order cancelled ====================

    def process_order_cancelled(self, event: OrderCancelledEvent, now: datetime = None) -> ProcessingOutcome:
        now = now or utcnow()
        if not event.order_id:
            return ProcessingOutcome.skipped('MISSING_ORDER_ID', 'Cancellation payload has no id')

        snapshot = self._snapshot(event.order_id)
        if snapshot is None:
            return ProcessingOutcome.skipped('NO_SNAPSHOT', f'Order {event.order_id} never earned points')

        if find_ledger_entry(self.shop, snapshot.customer_id, LedgerType.REVERSAL,
                             LedgerSource.CANCEL, event.order_id):
            return ProcessingOutcome.skipped('ALREADY_PROCESSED', f'Order {event.order_id} already cancelled')

        remaining = snapshot.points_remaining
        if remaining <= 0:
            if snapshot.cancelled_at is None:
                snapshot.cancelled_at = event.cancelled_at or now
                db.session.commit()
            return ProcessingOutcome.skipped('NOTHING_TO_REVERSE', f'Order {event.order_id} has no points left')

        return self._reverse(
            snapshot, remaining, LedgerSource.CANCEL, event.order_id,
            description=f'Reversal on cancellation of order {snapshot.order_name or snapshot.order_id}',
            now=now,
            cancelled_at=event.cancelled_at or now,
        )

    # ==================== Helpers ====================

    def _snapshot(self, order_id: str) -> Optional[OrderPointsSnapshot]:
        return OrderPointsSnapshot.query.filter_by(shop=self.shop, order_id=str(order_id)).first()

    def _reverse(
        self,
        snapshot: OrderPointsSnapshot,
        points: int,
        source: LedgerSource,
        source_id: str,
        description: str,
        now: datetime,
        cancelled_at: datetime = None,
    ) -> ProcessingOutcome:
        """
        Write one REVERSAL against an order's award.

        The full amount counts against the order, but the balance is only
        debited as far as it goes; points the customer already spent are
        logged as a shortfall instead of driving the balance negative.
        """
        customer_id = snapshot.customer_id
        try:
            balance = get_balance(self.shop, customer_id, for_update=True)
            available = balance.balance if balance else 0
            debit = min(points, available)
            if debit < points:
                logger.warning(
                    f'Reversal shortfall for {self.shop}/{customer_id} on {source.value}:{source_id}: '
                    f'wanted {points}, balance {available}'
                )
                description = f'{description} ({points - debit} pts already spent)'

            record_movement(
                self.shop, customer_id, LedgerType.REVERSAL, -debit,
                source, source_id,
                description=description,
                now=now,
            )
            OrderPointsSnapshot.query.filter_by(id=snapshot.id).update({
                'points_reversed_to_date': OrderPointsSnapshot.points_reversed_to_date + points,
            }, synchronize_session='fetch')
            if cancelled_at is not None:
                snapshot.cancelled_at = cancelled_at
            db.session.commit()
        except DuplicateEntryError:
            db.session.rollback()
            return ProcessingOutcome.skipped('ALREADY_PROCESSED', f'{source.value} {source_id} already reversed')
        except Exception:
            db.session.rollback()
            raise

        logger.info(f'Reversed {debit} pts for {self.shop}/{customer_id} ({source.value}:{source_id})')
        return ProcessingOutcome.processed('REVERSED', f'Reversed {debit} points', debit)
