"""
Webhook payload adapters.

Shopify order, refund and cancellation payloads are normalized here into
fixed event types. The event processor only ever sees these types: money is
integer cents, ids are strings, tags are lists and discount codes are
upper-cased.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from .shopify_client import normalize_customer_id
from ..utils.time import parse_timestamp


def parse_money_cents(value: Any) -> int:
    """
    Parse a Shopify money value into integer cents.

    Accepts "19.99", 19.99, {"amount": "19.99"} and
    {"shop_money": {"amount": "19.99"}}. Anything unparseable is 0.
    """
    if isinstance(value, dict):
        if 'shop_money' in value:
            value = (value.get('shop_money') or {}).get('amount')
        else:
            value = value.get('amount')
    if value is None or value == '':
        return 0
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return 0
    return int((amount * 100).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def parse_tags(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        items = value.split(',')
    elif isinstance(value, (list, tuple)):
        items = value
    else:
        return []
    return [str(item).strip() for item in items if str(item).strip()]


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _id(value: Any) -> Optional[str]:
    if value is None or value == '':
        return None
    return str(value)


def line_discount_cents(line: Dict[str, Any]) -> int:
    """Total discount on a line: its allocations, or total_discount when absent."""
    allocations = line.get('discount_allocations')
    if isinstance(allocations, list):
        total = 0
        for allocation in allocations:
            cents = parse_money_cents(allocation.get('amount'))
            if not cents:
                cents = parse_money_cents(allocation.get('amount_set'))
            total += cents
        return total
    cents = parse_money_cents(line.get('total_discount'))
    if not cents:
        cents = parse_money_cents(line.get('total_discount_set'))
    return cents


def extract_discount_codes(payload: Dict[str, Any]) -> List[str]:
    """
    Collect every discount code an order applied.

    Looks at discount_codes (objects or plain strings) and code-type
    discount_applications. Codes are upper-cased and de-duplicated.
    """
    found = []

    for item in payload.get('discount_codes') or []:
        if isinstance(item, str):
            found.append(item)
        elif isinstance(item, dict) and item.get('code'):
            found.append(item['code'])

    for application in payload.get('discount_applications') or []:
        if not isinstance(application, dict):
            continue
        if application.get('type') not in (None, 'discount_code'):
            continue
        code = application.get('code') or application.get('title')
        if code:
            found.append(code)

    codes = []
    for code in found:
        code = str(code).strip().upper()
        if code and code not in codes:
            codes.append(code)
    return codes


@dataclass
class OrderLine:
    line_id: Optional[str]
    product_id: Optional[str]
    quantity: int
    unit_price_cents: int
    discount_cents: int
    tags: List[str] = field(default_factory=list)

    @property
    def net_cents(self) -> int:
        return max(0, self.unit_price_cents * self.quantity - self.discount_cents)

    @classmethod
    def from_payload(cls, line: Dict[str, Any]) -> 'OrderLine':
        return cls(
            line_id=_id(line.get('id')),
            product_id=_id(line.get('product_id')),
            quantity=max(0, _int(line.get('quantity'))),
            unit_price_cents=parse_money_cents(line.get('price') or line.get('price_set')),
            discount_cents=line_discount_cents(line),
            tags=parse_tags(line.get('tags')),
        )


@dataclass
class RefundLine:
    """A refunded quantity of one original order line."""
    line: OrderLine
    refunded_quantity: int

    @property
    def refunded_cents(self) -> int:
        """Refunded gross minus the line discount apportioned per unit."""
        original_qty = self.line.quantity or self.refunded_quantity
        if original_qty <= 0 or self.refunded_quantity <= 0:
            return 0
        gross = self.line.unit_price_cents * self.refunded_quantity
        discount = self.line.discount_cents * self.refunded_quantity // original_qty
        return max(0, gross - discount)


@dataclass
class OrderPaidEvent:
    shop: str
    order_id: str
    order_name: Optional[str]
    customer_id: Optional[str]
    customer_tags: List[str]
    lines: List[OrderLine]
    discount_codes: List[str]
    currency: Optional[str] = None
    paid_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, shop: str, payload: Dict[str, Any]) -> 'OrderPaidEvent':
        customer = payload.get('customer') or {}
        customer_id = normalize_customer_id(customer.get('id') or customer.get('admin_graphql_api_id'))
        return cls(
            shop=shop,
            order_id=_id(payload.get('id')) or '',
            order_name=payload.get('name'),
            customer_id=customer_id or None,
            customer_tags=parse_tags(customer.get('tags')),
            lines=[OrderLine.from_payload(li) for li in payload.get('line_items') or []],
            discount_codes=extract_discount_codes(payload),
            currency=payload.get('currency'),
            paid_at=parse_timestamp(payload.get('processed_at') or payload.get('created_at')),
        )


@dataclass
class RefundCreatedEvent:
    shop: str
    refund_id: str
    order_id: str
    lines: List[RefundLine]
    created_at: Optional[datetime] = None

    @classmethod
    def from_payload(cls, shop: str, payload: Dict[str, Any]) -> 'RefundCreatedEvent':
        lines = []
        for item in payload.get('refund_line_items') or []:
            line = OrderLine.from_payload(item.get('line_item') or {})
            refunded = max(0, _int(item.get('quantity'), line.quantity))
            lines.append(RefundLine(line=line, refunded_quantity=refunded))
        return cls(
            shop=shop,
            refund_id=_id(payload.get('id')) or '',
            order_id=_id(payload.get('order_id') or (payload.get('order') or {}).get('id')) or '',
            lines=lines,
            created_at=parse_timestamp(payload.get('created_at')),
        )


@dataclass
class OrderCancelledEvent:
    shop: str
    order_id: str
    customer_id: Optional[str]
    cancelled_at: Optional[datetime] = None
    reason: Optional[str] = None

    @classmethod
    def from_payload(cls, shop: str, payload: Dict[str, Any]) -> 'OrderCancelledEvent':
        customer = payload.get('customer') or {}
        return cls(
            shop=shop,
            order_id=_id(payload.get('id')) or '',
            customer_id=normalize_customer_id(customer.get('id')) or None,
            cancelled_at=parse_timestamp(payload.get('cancelled_at')),
            reason=payload.get('cancel_reason'),
        )
