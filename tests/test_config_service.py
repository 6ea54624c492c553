"""
Tests for the Coin Configuration Store.

Tests cover:
- Program defaults and partial updates
- Settings validation (nothing written on failure)
- Tier ladder replacement and default seeding
- Pricing helpers
"""
import pytest
from decimal import Decimal
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from coinledger.extensions import db
from coinledger.models import CoinConfig, TierConfig
from coinledger.services.config_service import (
    DEFAULT_TIERS,
    coins_for_purchase,
    max_redeemable_coins,
    redemption_value,
)
from coinledger.utils.exceptions import MerchantNotFoundError, PersistenceError, ValidationError


class TestConfigure:
    """Tests for creating and updating programs."""

    def test_unspecified_fields_take_defaults(self, config_service):
        """Test that a new program fills unspecified fields with defaults."""
        config = config_service.configure('seller-1', {})

        assert config.earn_rate == Decimal('1.0')
        assert config.redemption_rate == Decimal('0.01')
        assert config.min_redemption == Decimal('100')
        assert config.max_redemption_pct == Decimal('50.0')
        assert config.coins_expire_days == 365
        assert config.coin_name == 'Coins'
        assert config.is_active is True

    def test_update_keeps_stored_values(self, config_service):
        """Test that an update keeps fields it does not mention."""
        config_service.configure('seller-1', {'earn_rate': 2, 'coin_name': 'Beans'})
        config = config_service.configure('seller-1', {'coins_expire_days': 30})

        assert config.earn_rate == Decimal('2')
        assert config.coin_name == 'Beans'
        assert config.coins_expire_days == 30
        assert CoinConfig.query.count() == 1

    def test_negative_rate_rejected_before_write(self, config_service):
        """Test that a negative rate is rejected and nothing is written."""
        with pytest.raises(ValidationError) as exc_info:
            config_service.configure('seller-1', {'earn_rate': -1})

        assert exc_info.value.code == 'INVALID_EARN_RATE'
        assert config_service.find('seller-1') is None

    def test_failed_update_leaves_program_unchanged(self, config_service, sample_config):
        """Test that a rejected update leaves the stored program intact."""
        with pytest.raises(ValidationError):
            config_service.configure('seller-42', {'redemption_rate': '-0.5', 'coin_name': 'Other'})

        db.session.expire_all()
        config = config_service.get('seller-42')
        assert config.redemption_rate == Decimal('0.01')
        assert config.coin_name == 'Beans'

    @pytest.mark.parametrize('settings', [
        {'coins_expire_days': 0},
        {'coins_expire_days': 1.7},
        {'coins_expire_days': True},
        {'max_redemption_pct': 150},
        {'business_type': 'bakery'},
        {'business_status': 'closed'},
        {'earn_rate': 'lots'},
        {'colour': 'red'},
        {'coin_name': None},
    ])
    def test_invalid_settings(self, config_service, settings):
        """Test each kind of invalid setting is rejected."""
        with pytest.raises(ValidationError):
            config_service.configure('seller-1', settings)

    def test_merchant_id_required(self, config_service):
        """Test that a blank merchant id is rejected."""
        with pytest.raises(ValidationError):
            config_service.configure('  ', {})

    def test_get_unknown_merchant(self, config_service):
        """Test get raises MerchantNotFoundError."""
        with pytest.raises(MerchantNotFoundError) as exc_info:
            config_service.get('nobody')

        assert exc_info.value.code == 'MERCHANT_NOT_FOUND'
        assert config_service.find('nobody') is None

    def test_database_failure_raises_persistence_error(self, config_service):
        """Test that a failed commit surfaces as PersistenceError."""
        with patch.object(db.session, 'commit', side_effect=OperationalError('commit', {}, Exception('db down'))):
            with pytest.raises(PersistenceError):
                config_service.configure('seller-1', {})


class TestTierLadder:
    """Tests for tier ladder management."""

    def test_tiers_returned_ascending(self, config_service, sample_config):
        """Test tiers come back ordered by level."""
        config_service.set_tiers('seller-42', [
            {'tier_name': 'Gold', 'tier_level': 3},
            {'tier_name': 'Bronze', 'tier_level': 1},
            {'tier_name': 'Silver', 'tier_level': 2},
        ])

        tiers = config_service.get_tiers('seller-42')
        assert [t.tier_name for t in tiers] == ['Bronze', 'Silver', 'Gold']

    def test_set_tiers_replaces_ladder(self, config_service, sample_tiers):
        """Test that set_tiers replaces the whole ladder."""
        config_service.set_tiers('seller-42', [{'tier_name': 'Member', 'tier_level': 1}])

        tiers = config_service.get_tiers('seller-42')
        assert [t.tier_name for t in tiers] == ['Member']
        assert TierConfig.query.count() == 1

    def test_duplicate_levels_rejected(self, config_service, sample_config):
        """Test that duplicate tier levels are rejected."""
        with pytest.raises(ValidationError):
            config_service.set_tiers('seller-42', [
                {'tier_name': 'Bronze', 'tier_level': 1},
                {'tier_name': 'Silver', 'tier_level': 1},
            ])

    def test_negative_threshold_rejected(self, config_service, sample_config):
        """Test that negative thresholds are rejected."""
        with pytest.raises(ValidationError):
            config_service.set_tiers('seller-42', [
                {'tier_name': 'Bronze', 'tier_level': 1, 'min_coins_earned': -5},
            ])

    def test_seed_default_tiers(self, config_service, sample_config):
        """Test seeding the four default tiers."""
        tiers = config_service.seed_default_tiers('seller-42')

        assert [t.key for t in tiers] == ['bronze', 'silver', 'gold', 'platinum']
        assert len(tiers) == len(DEFAULT_TIERS)
        assert tiers[1].min_coins_earned == Decimal('500')
        assert tiers[3].priority_support is True

    def test_seed_keeps_existing_ladder(self, config_service, sample_tiers):
        """Test seeding is skipped when tiers exist."""
        tiers = config_service.seed_default_tiers('seller-42')

        assert [t.key for t in tiers] == ['bronze', 'silver', 'gold']

    def test_tiers_for_unknown_merchant(self, config_service):
        """Test tier lookup for an unknown merchant."""
        with pytest.raises(MerchantNotFoundError):
            config_service.get_tiers('nobody')


class TestPricingHelpers:
    """Tests for purchase and redemption math."""

    def test_coins_for_purchase(self, config_service):
        """Test coins earned are floored to cents."""
        config = config_service.configure('seller-1', {'earn_rate': '1.5'})

        assert coins_for_purchase(config, '19.99') == Decimal('29.98')
        assert coins_for_purchase(config, 10, multiplier='2') == Decimal('30.00')

    def test_redemption_value(self, sample_config):
        """Test the currency value of coins."""
        assert redemption_value(sample_config, 250) == Decimal('2.50')

    def test_max_redeemable_limited_by_purchase_share(self, sample_config):
        """Test the percent-of-purchase cap."""
        # 50% of $10 is $5, worth 500 coins at 0.01
        assert max_redeemable_coins(sample_config, 10, 2000) == Decimal('500.00')

    def test_max_redeemable_limited_by_available(self, sample_config):
        """Test the cap at coins held."""
        assert max_redeemable_coins(sample_config, 100, 120) == Decimal('120')

    def test_max_redeemable_limited_by_per_visit_cap(self, config_service):
        """Test the per-visit cap."""
        config = config_service.configure('seller-1', {'max_redemption_per_visit': 300})

        assert max_redeemable_coins(config, 100, 5000) == Decimal('300')
