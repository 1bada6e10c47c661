"""
Tests for the admin and job endpoints.
"""
from rewards.extensions import db
from rewards.models.redemption import Redemption, RedemptionStatus
from rewards.services.ledger_service import get_balance
from rewards.services.redemption_service import RedemptionService
from rewards.utils.job_lock import acquire_lock

from conftest import SHOP, CUSTOMER_ID, make_session_token


def admin_headers(shop=SHOP):
    return {'Authorization': f'Bearer {make_session_token(shop=shop, sub="42")}'}


class TestAdminSettings:

    def test_requires_session(self, client):
        assert client.get('/api/admin/settings').status_code == 401

    def test_get_defaults(self, client):
        response = client.get('/api/admin/settings', headers=admin_headers())

        assert response.status_code == 200
        data = response.get_json()
        assert data['shop'] == SHOP
        assert data['settings']['redemption_steps'] == [500, 1000]
        assert data['settings']['restore_points_on_redemption_expiry'] is False

    def test_update_normalizes(self, client):
        response = client.put('/api/admin/settings', headers=admin_headers(), json={
            'earn_rate': '2',
            'redemption_steps': [1000, 250, 250],
            'excluded_customer_tags': 'Wholesale, Staff',
        })

        assert response.status_code == 200
        settings = response.get_json()['settings']
        assert settings['earn_rate'] == 2
        assert settings['redemption_steps'] == [250, 1000]
        assert settings['excluded_customer_tags'] == ['Wholesale', 'Staff']

    def test_update_unknown_key(self, client):
        response = client.put('/api/admin/settings', headers=admin_headers(), json={'bonus': 1})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_REQUEST'

    def test_update_empty_body(self, client):
        response = client.put('/api/admin/settings', headers=admin_headers(), json={})

        assert response.status_code == 400


class TestAdminCustomers:

    def test_adjust(self, client, funded_customer):
        response = client.post(
            f'/api/admin/customers/{CUSTOMER_ID}/adjust',
            headers=admin_headers(),
            json={'delta': '-200', 'reason': 'Duplicate order', 'sourceId': 'ticket-9'},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data['success'] is True
        assert data['applied'] == -200
        assert data['balance'] == 1000
        assert data['entry']['description'] == 'Duplicate order'

    def test_adjust_requires_delta(self, client, funded_customer):
        response = client.post(f'/api/admin/customers/{CUSTOMER_ID}/adjust', headers=admin_headers(), json={})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_AMOUNT'

    def test_adjust_is_scoped_to_token_shop(self, client, funded_customer):
        client.post(
            f'/api/admin/customers/{CUSTOMER_ID}/adjust',
            headers=admin_headers(shop='other.myshopify.com'),
            json={'delta': 50},
        )

        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200
        assert get_balance('other.myshopify.com', CUSTOMER_ID).balance == 50

    def test_reconcile(self, client, funded_customer):
        get_balance(SHOP, CUSTOMER_ID).balance = 5
        db.session.commit()

        response = client.post(f'/api/admin/customers/{CUSTOMER_ID}/reconcile', headers=admin_headers())

        data = response.get_json()
        assert data['success'] is True
        assert data['balance'] == 1200
        assert data['drift'] == 1195


class TestAdminVoid:

    def test_void_restores_points(self, client, fake_shopify, funded_customer):
        issued = RedemptionService(SHOP).issue_redemption_code(CUSTOMER_ID, 500)

        response = client.post(
            f"/api/admin/redemptions/{issued['redemptionId']}/void",
            headers=admin_headers(),
            json={'reason': 'Customer called'},
        )

        assert response.status_code == 200
        assert response.get_json()['redemption']['status'] == 'VOID'
        assert get_balance(SHOP, CUSTOMER_ID).balance == 1200
        fake_shopify.deactivate_discount.assert_called_once()

    def test_void_twice_conflicts(self, client, fake_shopify, funded_customer):
        issued = RedemptionService(SHOP).issue_redemption_code(CUSTOMER_ID, 500)
        url = f"/api/admin/redemptions/{issued['redemptionId']}/void"
        client.post(url, headers=admin_headers())

        response = client.post(url, headers=admin_headers())

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'INVALID_STATUS_TRANSITION'

    def test_void_unknown(self, client):
        response = client.post('/api/admin/redemptions/999/void', headers=admin_headers())

        assert response.status_code == 404


class TestJobsEndpoint:

    def test_missing_token(self, client):
        response = client.post('/jobs/expire')

        assert response.status_code == 401
        assert response.get_json()['error']['code'] == 'AUTH_REQUIRED'

    def test_bad_token(self, client):
        response = client.post('/jobs/expire', headers={'X-Job-Token': 'guess'})

        assert response.status_code == 403
        assert response.get_json()['error']['code'] == 'INVALID_TOKEN'

    def test_bearer_token_accepted(self, client):
        response = client.post('/jobs/expire', headers={'Authorization': 'Bearer test-job-token'})

        assert response.status_code == 200
        assert response.get_json()['ok'] is True

    def test_unconfigured_token_refused_when_not_allowed(self, app, client):
        app.config['JOB_TOKEN'] = ''
        app.config['ALLOW_UNAUTHENTICATED_JOBS'] = False

        response = client.post('/jobs/expire')

        assert response.status_code == 500
        assert response.get_json()['error']['code'] == 'JOB_TOKEN_NOT_SET'

    def test_unknown_job(self, client):
        response = client.post('/jobs/expire?job=expire-everything', headers={'X-Job-Token': 'test-job-token'})

        assert response.status_code == 400

    def test_runs_sweep(self, client, fake_shopify, funded_customer):
        issued = RedemptionService(SHOP).issue_redemption_code(CUSTOMER_ID, 500)
        redemption = db.session.get(Redemption, issued['redemptionId'])
        redemption.expires_at = redemption.issued_at
        db.session.commit()

        response = client.post(
            '/jobs/expire?job=expire-redemptions&restore=true',
            headers={'X-Job-Token': 'test-job-token'},
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data['job'] == 'expire-redemptions'
        assert data['expiredCount'] == 1
        assert data['pointsRestored'] == 500
        assert db.session.get(Redemption, issued['redemptionId']).status == RedemptionStatus.EXPIRED.value

    def test_contention(self, client):
        acquire_lock('expiry:expire-inactive', ttl_seconds=60)

        response = client.post('/jobs/expire?job=expire-inactive', headers={'X-Job-Token': 'test-job-token'})

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'JOB_ALREADY_RUNNING'


class TestHealth:

    def test_health(self, client):
        data = client.get('/health').get_json()

        assert data['status'] == 'healthy'
        assert data['service'] == 'rewards'
        assert data['scheduler'] is False
