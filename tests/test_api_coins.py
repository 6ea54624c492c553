"""
Tests for the coin ledger and merchant HTTP API.
"""
import pytest
from unittest.mock import patch

from coinledger.services.ledger_service import CoinLedger
from coinledger.utils.errors import ErrorCode, ledger_error_response
from coinledger.utils.exceptions import (
    CoinLedgerError,
    ConcurrentUpdateError,
    DuplicateError,
    InsufficientBalanceError,
    NoBalanceError,
    PersistenceError,
    ValidationError,
)


def award(client, amount=50, **extra):
    payload = {'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': amount}
    payload.update(extra)
    return client.post('/api/coins/award', json=payload)


class TestHealth:

    def test_health(self, client):
        """Test the health check endpoint."""
        response = client.get('/health')

        assert response.status_code == 200
        assert response.get_json()['status'] == 'healthy'


class TestMerchantConfigEndpoints:
    """Tests for /api/merchants/<merchant_id>/config and /tiers."""

    def test_create_and_read_program(self, client):
        """Test creating a coin program returns 201 and reads back with its tiers."""
        response = client.put('/api/merchants/seller-1/config', json={'coin_name': 'Beans', 'earn_rate': 2})
        assert response.status_code == 201
        assert response.get_json()['created'] is True

        response = client.get('/api/merchants/seller-1/config')
        data = response.get_json()['config']
        assert data['coin_name'] == 'Beans'
        assert data['earn_rate'] == 2.0
        assert data['min_redemption'] == 100.0
        assert data['tiers'] == []

    def test_update_program(self, client, sample_config):
        """Test updating an existing program returns 200."""
        response = client.put('/api/merchants/seller-42/config', json={'coins_expire_days': 30})

        assert response.status_code == 200
        assert response.get_json()['config']['coins_expire_days'] == 30

    def test_invalid_settings(self, client):
        """Test that invalid program settings return 400."""
        response = client.put('/api/merchants/seller-1/config', json={'redemption_rate': -1})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_REDEMPTION_RATE'

    def test_unknown_merchant(self, client):
        """Test reading an unconfigured merchant returns 404."""
        response = client.get('/api/merchants/nobody/config')

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'MERCHANT_NOT_FOUND'

    def test_replace_tiers(self, client, sample_config):
        """Test replacing the tier ladder."""
        response = client.put('/api/merchants/seller-42/tiers', json={'tiers': [
            {'tier_name': 'Bronze', 'tier_level': 1},
            {'tier_name': 'Silver', 'tier_level': 2, 'min_coins_earned': 100},
        ]})
        assert response.status_code == 200

        response = client.get('/api/merchants/seller-42/tiers')
        assert [t['tier_name'] for t in response.get_json()['tiers']] == ['Bronze', 'Silver']

    def test_default_tiers(self, client, sample_config):
        """Test seeding the default ladder with use_defaults."""
        response = client.put('/api/merchants/seller-42/tiers', json={'use_defaults': True})

        assert len(response.get_json()['tiers']) == 4

    def test_tiers_must_be_list(self, client, sample_config):
        """Test that a non-list tiers payload is rejected."""
        response = client.put('/api/merchants/seller-42/tiers', json={'tiers': 'gold'})

        assert response.status_code == 400

    def test_quote(self, client, sample_config):
        """Test quoting coins earned and max redeemable for a purchase."""
        response = client.get('/api/merchants/seller-42/quote?purchase_amount=20&available=5000')

        data = response.get_json()
        assert data['coins_earned'] == 20.0
        assert data['max_redeemable'] == 1000.0
        assert data['max_redeemable_value'] == 10.0


class TestCoinMutations:
    """Tests for award, redeem and refund endpoints."""

    def test_award(self, client, sample_config):
        """Test awarding coins over HTTP."""
        response = award(client, 50, description='Order #1001')

        assert response.status_code == 201
        data = response.get_json()
        assert data['duplicate'] is False
        assert data['balance']['current_balance'] == 50.0
        assert data['transaction']['description'] == 'Order #1001'

    def test_award_idempotency_header(self, client, sample_config):
        """Test that the Idempotency-Key header makes a repeat award a no-op."""
        first = client.post(
            '/api/coins/award',
            json={'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 50},
            headers={'Idempotency-Key': 'req-1'}
        )
        second = client.post(
            '/api/coins/award',
            json={'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 50},
            headers={'Idempotency-Key': 'req-1'}
        )

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()['duplicate'] is True
        assert second.get_json()['balance']['current_balance'] == 50.0

    def test_award_missing_field(self, client, sample_config):
        """Test that an award without a required field returns 400."""
        response = client.post('/api/coins/award', json={'holder_id': 'user-1', 'merchant_id': 'seller-42'})

        assert response.status_code == 400
        assert response.get_json()['error']['code'] == 'INVALID_AMOUNT'

    def test_award_requires_json_object(self, client, sample_config):
        """Test that a non-object JSON body is rejected."""
        response = client.post('/api/coins/award', data='nope', content_type='text/plain')

        assert response.status_code == 400

    def test_earn_for_purchase(self, client, sample_config):
        """Test earning coins from a purchase total."""
        response = client.post('/api/coins/earn', json={
            'holder_id': 'user-1', 'merchant_id': 'seller-42', 'purchase_amount': 12.5
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data['coins_earned'] == 12.5
        assert data['balance']['lifetime_purchases'] == 1

    def test_redeem(self, client, sample_config):
        """Test redeeming coins over HTTP."""
        award(client, 50)

        response = client.post('/api/coins/redeem', json={
            'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 20
        })

        assert response.status_code == 200
        data = response.get_json()
        assert data['balance']['current_balance'] == 30.0
        assert data['transaction']['amount'] == 20.0
        assert data['transaction']['direction'] == 'debit'
        assert data['redemption_value'] == 0.2

    def test_redeem_insufficient(self, client, sample_config):
        """Test that over-redeeming returns 422."""
        award(client, 30)

        response = client.post('/api/coins/redeem', json={
            'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 40
        })

        assert response.status_code == 422
        assert response.get_json()['error']['code'] == 'INSUFFICIENT_BALANCE'

    def test_redeem_no_balance(self, client, sample_config):
        """Test redeeming without a balance returns 404."""
        response = client.post('/api/coins/redeem', json={
            'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 10
        })

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NO_BALANCE'

    def test_refund(self, client, sample_config):
        """Test refunding spent coins over HTTP."""
        award(client, 50)
        client.post('/api/coins/redeem', json={'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 20})

        response = client.post('/api/coins/refund', json={
            'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 20
        })

        assert response.status_code == 200
        assert response.get_json()['balance']['current_balance'] == 50.0
        assert response.get_json()['balance']['total_spent'] == 0.0

    def test_concurrent_update_conflict(self, client, sample_config):
        """Test that exhausted retries return 409."""
        award(client, 50)

        with patch.object(CoinLedger, '_compare_and_swap', return_value=False):
            response = client.post('/api/coins/redeem', json={
                'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 20
            })

        assert response.status_code == 409
        assert response.get_json()['error']['code'] == 'CONCURRENT_UPDATE'

    def test_persistence_failure(self, client, sample_config):
        """Test that a database failure returns 503."""
        with patch.object(CoinLedger, 'award', side_effect=PersistenceError('Coin ledger write failed')):
            response = award(client, 50)

        assert response.status_code == 503
        assert response.get_json()['error']['code'] == 'PERSISTENCE_ERROR'


class TestCoinQueries:
    """Tests for balance, history, portfolio and tier endpoints."""

    def test_balance(self, client, sample_tiers):
        """Test reading a balance with its next tier."""
        award(client, 50)

        response = client.get('/api/coins/balance?holder_id=user-1&merchant_id=seller-42')

        assert response.status_code == 200
        data = response.get_json()
        assert data['balance']['current_balance'] == 50.0
        assert data['coin_name'] == 'Beans'
        assert data['redemption_value'] == 0.5
        assert data['next_tier']['tier_name'] == 'Silver'

    def test_balance_missing(self, client, sample_config):
        """Test that a missing balance returns 404."""
        response = client.get('/api/coins/balance?holder_id=user-1&merchant_id=seller-42')

        assert response.status_code == 404

    def test_balance_requires_holder(self, client, sample_config):
        """Test that the balance endpoint requires holder_id."""
        response = client.get('/api/coins/balance?merchant_id=seller-42')

        assert response.status_code == 400

    def test_history(self, client, sample_config):
        """Test paginated history."""
        award(client, 50)
        client.post('/api/coins/redeem', json={'holder_id': 'user-1', 'merchant_id': 'seller-42', 'amount': 20})

        response = client.get('/api/coins/history?holder_id=user-1&merchant_id=seller-42&limit=1')

        data = response.get_json()
        assert [t['type'] for t in data['transactions']] == ['spent']
        assert data['pagination']['total'] == 2
        assert data['pagination']['has_more'] is True

    def test_history_bad_type(self, client, sample_config):
        """Test that an unknown type filter returns 400."""
        response = client.get('/api/coins/history?holder_id=user-1&merchant_id=seller-42&type=gift')

        assert response.status_code == 400

    def test_portfolio(self, client, sample_config):
        """Test the holder portfolio and its total value."""
        client.put('/api/merchants/seller-7/config', json={'coin_name': 'Stars'})
        award(client, 30)
        client.post('/api/coins/award', json={'holder_id': 'user-1', 'merchant_id': 'seller-7', 'amount': 80})

        response = client.get('/api/coins/portfolio?holder_id=user-1')

        data = response.get_json()
        assert [b['coin_name'] for b in data['balances']] == ['Stars', 'Beans']
        assert data['total_value'] == pytest.approx(1.1)

    def test_evaluate_tier(self, client, sample_config):
        """Test explicit tier evaluation."""
        award(client, 150)
        client.put('/api/merchants/seller-42/tiers', json={'tiers': [
            {'tier_name': 'bronze', 'tier_level': 1},
            {'tier_name': 'silver', 'tier_level': 2, 'min_coins_earned': 100},
        ]})

        response = client.post('/api/coins/evaluate-tier', json={'holder_id': 'user-1', 'merchant_id': 'seller-42'})

        assert response.status_code == 200
        assert response.get_json()['tier'] == 'silver'

    def test_unknown_route(self, client):
        """Test that unknown routes use the JSON error envelope."""
        response = client.get('/api/coins/nothing-here')

        assert response.status_code == 404
        assert response.get_json()['error']['code'] == 'NOT_FOUND'


class TestErrorResponses:
    """Tests for mapping ledger exceptions to HTTP responses."""

    @pytest.mark.parametrize('error, status, code', [
        (ValidationError('amount must be positive', 'amount'), 400, 'INVALID_AMOUNT'),
        (NoBalanceError('user-1', 'seller-42'), 404, 'NO_BALANCE'),
        (InsufficientBalanceError(10, 20), 422, 'INSUFFICIENT_BALANCE'),
        (DuplicateError('Coin transaction', 'idempotency key k'), 409, 'DUPLICATE_ENTRY'),
        (ConcurrentUpdateError(1, 3), 409, 'CONCURRENT_UPDATE'),
        (PersistenceError('db down'), 503, 'PERSISTENCE_ERROR'),
        (CoinLedgerError('unexpected'), 500, 'INTERNAL_ERROR'),
    ])
    def test_status_and_code(self, app, error, status, code):
        """Test each exception maps to its status and error code."""
        response, status_code = ledger_error_response(error)

        assert status_code == status
        assert response.get_json()['error']['code'] == code

    def test_every_error_code_is_reachable(self):
        """Test the enum only holds codes that responses actually emit."""
        emitted = {
            'INVALID_REQUEST', 'NOT_FOUND', 'DUPLICATE_ENTRY', 'CONCURRENT_UPDATE',
            'INSUFFICIENT_BALANCE', 'INTERNAL_ERROR', 'PERSISTENCE_ERROR',
        }

        assert {member.value for member in ErrorCode} == emitted
