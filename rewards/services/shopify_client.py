"""
Shopify Admin API client.

Everything the rewards engine needs from Shopify:
- Customer tags (redemption eligibility)
- Collection lookup by handle (redemption scope)
- Product collection membership (optional earn exclusion)
- Single-use discount code creation and deactivation

Every failure (transport error, timeout, GraphQL error, userErrors) is raised
as RemoteServiceError so the redemption manager can compensate.
"""
import logging
import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List, Iterable, Set

import httpx
from flask import current_app

from ..extensions import db
from ..models.shop_settings import ShopInstallation
from ..utils.exceptions import RemoteServiceError

logger = logging.getLogger(__name__)

CUSTOMER_GID_RE = re.compile(r'gid://shopify/Customer/(\d+)')


def normalize_customer_id(value) -> str:
    """
    Reduce a Shopify customer identifier to its numeric id string.

    Accepts "gid://shopify/Customer/123", "123" or 123.
    """
    text = str(value if value is not None else '').strip()
    if not text:
        return ''
    if text.isdigit():
        return text
    match = CUSTOMER_GID_RE.search(text)
    if match:
        return match.group(1)
    return text


def to_customer_gid(customer_id) -> str:
    return f'gid://shopify/Customer/{normalize_customer_id(customer_id)}'


def _product_gid(product_id) -> str:
    text = str(product_id)
    return text if text.startswith('gid://') else f'gid://shopify/Product/{text}'


def _money(value) -> str:
    return f'{Decimal(value):.2f}'


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class ShopifyClient:
    """
    Client for the Shopify Admin GraphQL API, bound to one shop.

    Usage:
        client = ShopifyClient('shop.myshopify.com', access_token)
        node_id = client.create_discount_code(...)
    """

    def __init__(self, shop_domain: str, access_token: str, api_version: str = '2025-01',
                 timeout: float = 10.0, transport: httpx.BaseTransport = None):
        self.shop_domain = shop_domain.replace('https://', '').replace('http://', '').rstrip('/')
        self.access_token = access_token
        self.api_version = api_version
        self.timeout = timeout
        self.transport = transport
        self.graphql_url = f'https://{self.shop_domain}/admin/api/{api_version}/graphql.json'

    def _execute_query(self, query: str, variables: Optional[Dict] = None) -> Dict[str, Any]:
        """Execute a GraphQL query and return its data."""
        headers = {
            'X-Shopify-Access-Token': self.access_token,
            'Content-Type': 'application/json'
        }

        payload = {'query': query}
        if variables:
            payload['variables'] = variables

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.graphql_url, headers=headers, json=payload)
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException as e:
            raise RemoteServiceError(f'Shopify request timed out after {self.timeout}s', e) from e
        except httpx.HTTPStatusError as e:
            raise RemoteServiceError(f'Shopify returned HTTP {e.response.status_code}', e) from e
        except (httpx.HTTPError, ValueError) as e:
            raise RemoteServiceError(f'Shopify request failed: {e}', e) from e

        if result.get('errors'):
            messages = '; '.join(str(err.get('message', err)) for err in result['errors'])
            raise RemoteServiceError(f'GraphQL errors: {messages}')

        return result.get('data') or {}

    def fetch_customer_tags(self, customer_id: str) -> List[str]:
        query = """
        query customerTags($id: ID!) {
            customer(id: $id) {
                id
                tags
            }
        }
        """
        data = self._execute_query(query, {'id': to_customer_gid(customer_id)})
        tags = (data.get('customer') or {}).get('tags') or []
        return [str(tag) for tag in tags]

    def resolve_collection_by_handle(self, handle: str) -> Optional[str]:
        """Return the collection GID for a handle, or None if it does not exist."""
        query = """
        query collectionByHandle($handle: String!) {
            collectionByHandle(handle: $handle) {
                id
                handle
                title
            }
        }
        """
        data = self._execute_query(query, {'handle': handle})
        collection = data.get('collectionByHandle') or {}
        return collection.get('id')

    def fetch_product_collection_ids(self, product_ids: Iterable) -> Dict[str, Set[str]]:
        """
        Map product id -> set of collection GIDs it belongs to.

        Only the first 50 collections per product are considered.
        """
        ids = [str(pid) for pid in dict.fromkeys(product_ids) if pid]
        if not ids:
            return {}

        query = """
        query productCollections($ids: [ID!]!) {
            nodes(ids: $ids) {
                ... on Product {
                    id
                    collections(first: 50) {
                        edges { node { id } }
                    }
                }
            }
        }
        """
        data = self._execute_query(query, {'ids': [_product_gid(pid) for pid in ids]})

        result = {}
        for node in data.get('nodes') or []:
            if not node or not node.get('id'):
                continue
            numeric_id = node['id'].rsplit('/', 1)[-1]
            edges = (node.get('collections') or {}).get('edges') or []
            result[numeric_id] = {edge['node']['id'] for edge in edges if edge.get('node')}
        return result

    def create_discount_code(
        self,
        code: str,
        customer_id: str,
        value_dollars: Decimal,
        min_subtotal: Decimal,
        eligible_scope: str,
        expires_at: datetime,
        title: str = None,
        starts_at: datetime = None,
    ) -> str:
        """
        Create a single-use, customer-bound fixed-amount discount code.

        Args:
            code: The code the customer types at checkout
            customer_id: Numeric customer id or GID
            value_dollars: Fixed amount off
            min_subtotal: Minimum order subtotal (0 for none)
            eligible_scope: Collection GID the discount applies to
            expires_at: When the code stops working

        Returns:
            The discount node GID

        Raises:
            RemoteServiceError: on any transport failure or userErrors
        """
        mutation = """
        mutation discountCodeBasicCreate($basicCodeDiscount: DiscountCodeBasicInput!) {
            discountCodeBasicCreate(basicCodeDiscount: $basicCodeDiscount) {
                codeDiscountNode { id }
                userErrors { field code message }
            }
        }
        """
        min_subtotal = Decimal(min_subtotal or 0)
        variables = {
            'basicCodeDiscount': {
                'title': title or f'Rewards ${_money(value_dollars)} off',
                'code': code,
                'startsAt': _iso(starts_at or datetime.now(timezone.utc)),
                'endsAt': _iso(expires_at),
                'customerSelection': {'customers': {'add': [to_customer_gid(customer_id)]}},
                'usageLimit': 1,
                'appliesOncePerCustomer': True,
                'customerGets': {
                    'items': {'collections': {'add': [eligible_scope]}},
                    'value': {
                        'discountAmount': {
                            'amount': _money(value_dollars),
                            'appliesOnEachItem': False,
                        }
                    },
                },
                'minimumRequirement': (
                    {'subtotal': {'greaterThanOrEqualToSubtotal': _money(min_subtotal)}}
                    if min_subtotal > 0 else None
                ),
            }
        }

        data = self._execute_query(mutation, variables)
        result = data.get('discountCodeBasicCreate') or {}

        user_errors = result.get('userErrors') or []
        if user_errors:
            messages = '; '.join(err.get('message', '') for err in user_errors)
            raise RemoteServiceError(f'Discount creation rejected: {messages}', user_errors=user_errors)

        node_id = (result.get('codeDiscountNode') or {}).get('id')
        if not node_id:
            raise RemoteServiceError('Discount creation failed (missing node id)')

        logger.info(f'Created discount {code} for {self.shop_domain} ({node_id})')
        return node_id

    def deactivate_discount(self, discount_node_id: str) -> None:
        mutation = """
        mutation discountCodeDeactivate($id: ID!) {
            discountCodeDeactivate(id: $id) {
                codeDiscountNode { id }
                userErrors { field code message }
            }
        }
        """
        data = self._execute_query(mutation, {'id': discount_node_id})
        user_errors = (data.get('discountCodeDeactivate') or {}).get('userErrors') or []
        if user_errors:
            messages = '; '.join(err.get('message', '') for err in user_errors)
            raise RemoteServiceError(f'Discount deactivation rejected: {messages}', user_errors=user_errors)


def get_shopify_client(shop: str) -> Optional[ShopifyClient]:
    """
    Build the remote client for a shop.

    SHOPIFY_CLIENT_FACTORY, when configured, takes precedence. Otherwise the
    stored offline token is used. Returns None when the shop is not installed.
    """
    factory = current_app.config.get('SHOPIFY_CLIENT_FACTORY')
    if factory is not None:
        return factory(shop)

    installation = db.session.get(ShopInstallation, shop)
    if installation is None or not installation.is_active:
        return None

    return ShopifyClient(
        shop,
        installation.access_token,
        api_version=current_app.config.get('SHOPIFY_API_VERSION', '2025-01'),
        timeout=current_app.config.get('SHOPIFY_DISCOUNT_TIMEOUT_SECONDS', 10.0),
    )
