"""
Tests for the Shopify GraphQL client.

Requests are answered by an httpx.MockTransport, so no network is used.
"""
import json
from datetime import datetime
from decimal import Decimal

import httpx
import pytest

from rewards.extensions import db
from rewards.models.shop_settings import ShopInstallation
from rewards.services.shopify_client import ShopifyClient, get_shopify_client, normalize_customer_id
from rewards.utils.exceptions import RemoteServiceError

from conftest import SHOP


def client_with(handler):
    return ShopifyClient(SHOP, 'shpat_test', transport=httpx.MockTransport(handler))


def graphql(data=None, errors=None, status=200):
    body = {}
    if data is not None:
        body['data'] = data
    if errors is not None:
        body['errors'] = errors

    def handler(request):
        handler.requests.append(json.loads(request.content))
        return httpx.Response(status, json=body)

    handler.requests = []
    return handler


@pytest.mark.parametrize('value,expected', [
    ('gid://shopify/Customer/123', '123'),
    ('123', '123'),
    (123, '123'),
    (None, ''),
])
def test_normalize_customer_id(value, expected):
    assert normalize_customer_id(value) == expected


class TestQueries:

    def test_customer_tags(self):
        handler = graphql({'customer': {'id': 'gid://shopify/Customer/5', 'tags': ['VIP', 'Wholesale']}})

        assert client_with(handler).fetch_customer_tags('5') == ['VIP', 'Wholesale']
        assert handler.requests[0]['variables'] == {'id': 'gid://shopify/Customer/5'}

    def test_collection_not_found(self):
        assert client_with(graphql({'collectionByHandle': None})).resolve_collection_by_handle('nope') is None

    def test_product_collections(self):
        handler = graphql({'nodes': [
            {'id': 'gid://shopify/Product/11', 'collections': {'edges': [
                {'node': {'id': 'gid://shopify/Collection/1'}},
                {'node': {'id': 'gid://shopify/Collection/2'}},
            ]}},
            None,
        ]})

        result = client_with(handler).fetch_product_collection_ids(['11', '11', '12'])

        assert result == {'11': {'gid://shopify/Collection/1', 'gid://shopify/Collection/2'}}
        assert handler.requests[0]['variables']['ids'] == ['gid://shopify/Product/11', 'gid://shopify/Product/12']


class TestCreateDiscountCode:

    def create(self, client, **overrides):
        kwargs = dict(
            code='TEST-ABCD1234',
            customer_id='5',
            value_dollars=Decimal('10'),
            min_subtotal=0,
            eligible_scope='gid://shopify/Collection/9',
            expires_at=datetime(2026, 3, 1, 12, 0),
        )
        kwargs.update(overrides)
        return client.create_discount_code(**kwargs)

    def test_returns_node_id(self):
        handler = graphql({'discountCodeBasicCreate': {
            'codeDiscountNode': {'id': 'gid://shopify/DiscountCodeNode/77'},
            'userErrors': [],
        }})

        assert self.create(client_with(handler)) == 'gid://shopify/DiscountCodeNode/77'

        discount = handler.requests[0]['variables']['basicCodeDiscount']
        assert discount['code'] == 'TEST-ABCD1234'
        assert discount['usageLimit'] == 1
        assert discount['customerSelection'] == {'customers': {'add': ['gid://shopify/Customer/5']}}
        assert discount['customerGets']['value']['discountAmount']['amount'] == '10.00'
        assert discount['customerGets']['items'] == {'collections': {'add': ['gid://shopify/Collection/9']}}
        assert discount['minimumRequirement'] is None
        assert discount['endsAt'] == '2026-03-01T12:00:00+00:00'

    def test_minimum_subtotal(self):
        handler = graphql({'discountCodeBasicCreate': {
            'codeDiscountNode': {'id': 'gid://shopify/DiscountCodeNode/77'},
            'userErrors': [],
        }})

        self.create(client_with(handler), min_subtotal=50)

        discount = handler.requests[0]['variables']['basicCodeDiscount']
        assert discount['minimumRequirement'] == {'subtotal': {'greaterThanOrEqualToSubtotal': '50.00'}}

    def test_user_errors_raise(self):
        handler = graphql({'discountCodeBasicCreate': {
            'codeDiscountNode': None,
            'userErrors': [{'field': ['code'], 'code': 'TAKEN', 'message': 'Code must be unique'}],
        }})

        with pytest.raises(RemoteServiceError) as exc_info:
            self.create(client_with(handler))

        assert 'Code must be unique' in exc_info.value.message
        assert exc_info.value.user_errors[0]['code'] == 'TAKEN'

    def test_graphql_errors_raise(self):
        with pytest.raises(RemoteServiceError):
            self.create(client_with(graphql(errors=[{'message': 'Throttled'}])))

    def test_http_error_raises(self):
        with pytest.raises(RemoteServiceError) as exc_info:
            self.create(client_with(graphql({}, status=503)))

        assert '503' in exc_info.value.message

    def test_timeout_raises(self):
        def handler(request):
            raise httpx.ReadTimeout('timed out', request=request)

        with pytest.raises(RemoteServiceError) as exc_info:
            self.create(client_with(handler))

        assert 'timed out' in exc_info.value.message


class TestGetShopifyClient:

    def test_not_installed(self, app):
        assert get_shopify_client(SHOP) is None

    def test_uninstalled(self, app):
        db.session.add(ShopInstallation(shop=SHOP, access_token=None))
        db.session.commit()

        assert get_shopify_client(SHOP) is None

    def test_installed(self, app):
        db.session.add(ShopInstallation(shop=SHOP, access_token='shpat_live'))
        db.session.commit()

        client = get_shopify_client(SHOP)

        assert client.access_token == 'shpat_live'
        assert client.graphql_url == f'https://{SHOP}/admin/api/2025-01/graphql.json'

    def test_factory_wins(self, app):
        sentinel = object()
        app.config['SHOPIFY_CLIENT_FACTORY'] = lambda shop: sentinel

        assert get_shopify_client(SHOP) is sentinel
