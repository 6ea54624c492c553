"""
Tests for the Tier Evaluator.

Tests cover:
- Highest fully-qualified tier wins
- All three thresholds must be met
- No demotion
- Merchants without a ladder
- Progress toward the next tier
"""
import pytest
from decimal import Decimal

from coinledger.extensions import db
from coinledger.models import CoinBalance
from coinledger.services.tier_service import (
    DEFAULT_TIER,
    TierEvaluator,
    next_tier,
    resolve_tier,
    tier_progress,
)
from coinledger.utils.exceptions import MerchantNotFoundError, NoBalanceError


@pytest.fixture
def coins_only_tiers(config_service, sample_config):
    """bronze(0,0,0), silver(100,0,0), gold(500,0,0)."""
    return config_service.set_tiers('seller-42', [
        {'tier_name': 'bronze', 'tier_level': 1},
        {'tier_name': 'silver', 'tier_level': 2, 'min_coins_earned': 100},
        {'tier_name': 'gold', 'tier_level': 3, 'min_coins_earned': 500},
    ])


def make_balance(**stats):
    values = {
        'holder_id': 'user-1',
        'merchant_config_id': 1,
        'total_earned': Decimal('0'),
        'lifetime_purchases': 0,
        'lifetime_spent': Decimal('0'),
        'current_tier': DEFAULT_TIER,
    }
    values.update(stats)
    return CoinBalance(**values)


class TestResolveTier:
    """Tests for the pure tier resolution helpers."""

    def test_highest_qualifying_tier_wins(self, coins_only_tiers):
        """Test the highest qualifying tier is chosen."""
        balance = make_balance(total_earned=Decimal('150'))

        assert resolve_tier(balance, coins_only_tiers) == 'silver'

    def test_exact_threshold_qualifies(self, coins_only_tiers):
        """Test meeting a threshold exactly qualifies."""
        balance = make_balance(total_earned=Decimal('500'))

        assert resolve_tier(balance, coins_only_tiers) == 'gold'

    def test_all_thresholds_required(self, sample_tiers):
        """Test every threshold must be met."""
        # Enough coins and purchases for gold, but not enough spend
        balance = make_balance(
            total_earned=Decimal('900'), lifetime_purchases=10, lifetime_spent=Decimal('50')
        )

        assert resolve_tier(balance, sample_tiers) == 'silver'

    def test_no_qualifying_tier_sits_on_lowest(self, config_service, sample_config):
        """Test a holder who qualifies for nothing sits on the lowest tier."""
        tiers = config_service.set_tiers('seller-42', [
            {'tier_name': 'Member', 'tier_level': 1, 'min_coins_earned': 10},
            {'tier_name': 'VIP', 'tier_level': 2, 'min_coins_earned': 1000},
        ])

        assert resolve_tier(make_balance(current_tier='member'), tiers) == 'member'
        assert resolve_tier(make_balance(), tiers) == 'member'

    def test_never_demotes(self, coins_only_tiers):
        """Test resolution never moves a holder down."""
        balance = make_balance(total_earned=Decimal('150'), current_tier='gold')

        assert resolve_tier(balance, coins_only_tiers) == 'gold'

    def test_no_ladder_keeps_current(self):
        """Test an empty ladder keeps the current tier."""
        assert resolve_tier(make_balance(current_tier='vip'), []) == 'vip'
        assert resolve_tier(make_balance(current_tier=None), []) == DEFAULT_TIER


class TestProgress:
    """Tests for next tier and progress."""

    def test_next_tier(self, coins_only_tiers):
        """Test finding the next tier up."""
        balance = make_balance(total_earned=Decimal('150'), current_tier='silver')

        assert next_tier(balance, coins_only_tiers).key == 'gold'

    def test_progress_toward_next_tier(self, coins_only_tiers):
        """Test progress toward the next tier."""
        balance = make_balance(total_earned=Decimal('250'), current_tier='silver')

        assert tier_progress(balance, coins_only_tiers) == 50

    def test_progress_limited_by_weakest_threshold(self, sample_tiers):
        """Test progress follows the least-met threshold."""
        balance = make_balance(
            total_earned=Decimal('100'), lifetime_purchases=1, lifetime_spent=Decimal('20')
        )

        # silver needs 2 purchases; coins and spend are already there
        assert tier_progress(balance, sample_tiers) == 50

    def test_progress_at_top(self, coins_only_tiers):
        """Test progress on the top tier."""
        balance = make_balance(total_earned=Decimal('900'), current_tier='gold')

        assert next_tier(balance, coins_only_tiers) is None
        assert tier_progress(balance, coins_only_tiers) == 100


class TestTierEvaluator:
    """Tests for evaluation through the ledger and directly."""

    def test_award_promotes_holder(self, ledger, coins_only_tiers):
        """Test an award promotes a qualifying holder."""
        result = ledger.award('user-1', 'seller-42', 150)

        assert result.balance.current_tier == 'silver'
        assert result.previous_tier == 'bronze'
        assert result.tier_changed is True

    def test_tier_never_drops_across_awards(self, ledger, coins_only_tiers):
        """Test the tier holds across later awards."""
        tiers_seen = []
        for amount in (50, 60, 20, 400, 5):
            result = ledger.award('user-1', 'seller-42', amount)
            tiers_seen.append(result.balance.current_tier)
            ledger.redeem('user-1', 'seller-42', amount)

        order = ['bronze', 'silver', 'gold']
        levels = [order.index(t) for t in tiers_seen]
        assert levels == sorted(levels)
        assert tiers_seen[-1] == 'gold'

    def test_evaluate_persists_change(self, ledger, config_service, sample_config):
        """Test evaluate persists a tier change."""
        ledger.award('user-1', 'seller-42', 150)
        assert ledger.get_balance('user-1', 'seller-42').current_tier == 'bronze'

        config_service.set_tiers('seller-42', [
            {'tier_name': 'bronze', 'tier_level': 1},
            {'tier_name': 'silver', 'tier_level': 2, 'min_coins_earned': 100},
        ])
        tier = TierEvaluator(db.session).evaluate('user-1', 'seller-42')

        assert tier == 'silver'
        db.session.expire_all()
        balance = ledger.get_balance('user-1', 'seller-42')
        assert balance.current_tier == 'silver'
        assert balance.tier_progress == 100

    def test_evaluate_without_ladder_is_noop(self, ledger, sample_config):
        """Test evaluate without a ladder keeps the default tier."""
        ledger.award('user-1', 'seller-42', 5000)

        tier = TierEvaluator(db.session).evaluate('user-1', 'seller-42')

        assert tier == DEFAULT_TIER
        assert ledger.get_balance('user-1', 'seller-42').current_tier == DEFAULT_TIER

    def test_evaluate_without_balance(self, sample_config):
        """Test evaluate with no balance."""
        with pytest.raises(NoBalanceError):
            TierEvaluator(db.session).evaluate('user-1', 'seller-42')

    def test_evaluate_unknown_merchant(self, app):
        """Test evaluate for an unconfigured merchant."""
        with pytest.raises(MerchantNotFoundError):
            TierEvaluator(db.session).evaluate('user-1', 'nobody')
