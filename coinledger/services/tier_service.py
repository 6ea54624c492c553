"""
Tier Evaluator.

Derives a holder's loyalty tier from lifetime statistics on their balance:
coins earned, purchase count and total spend. The merchant's ladder is
walked from lowest to highest level; the highest tier whose three
thresholds are all met wins.

Tiers are only re-evaluated after an award. Spending never lowers
lifetime stats, so redemption cannot demote a holder, and evaluation
itself never moves a holder down the ladder.
"""
import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models.balance import CoinBalance
from ..models.merchant import TierConfig
from ..utils.exceptions import NoBalanceError, PersistenceError
from .config_service import CoinConfigService

logger = logging.getLogger(__name__)

# Tier assigned when a merchant has no ladder configured
DEFAULT_TIER = 'bronze'


def qualifies(balance: CoinBalance, tier: TierConfig) -> bool:
    """True when the balance meets all three thresholds of the tier."""
    return (
        Decimal(balance.total_earned or 0) >= Decimal(tier.min_coins_earned or 0)
        and (balance.lifetime_purchases or 0) >= (tier.min_purchases or 0)
        and Decimal(balance.lifetime_spent or 0) >= Decimal(tier.min_total_spent or 0)
    )


def resolve_tier(balance: CoinBalance, tiers: List[TierConfig]) -> str:
    """
    Pick the tier name for a balance.

    Walks tiers ascending; later matches overwrite earlier ones. With no
    qualifying tier the holder sits on the lowest configured tier; with no
    ladder at all the stored tier (or DEFAULT_TIER) is kept. A result below
    the holder's current configured tier is ignored.
    """
    if not tiers:
        return balance.current_tier or DEFAULT_TIER

    ordered = sorted(tiers, key=lambda t: t.tier_level)
    new_tier = ordered[0]
    for tier in ordered:
        if qualifies(balance, tier):
            new_tier = tier

    current = next((t for t in ordered if t.key == (balance.current_tier or '').lower()), None)
    if current is not None and current.tier_level > new_tier.tier_level:
        return current.key
    return new_tier.key


def next_tier(balance: CoinBalance, tiers: List[TierConfig]) -> Optional[TierConfig]:
    """The first tier above the holder's current one, or None at the top."""
    ordered = sorted(tiers, key=lambda t: t.tier_level)
    current = next((t for t in ordered if t.key == (balance.current_tier or '').lower()), None)
    for tier in ordered:
        if current is None:
            if not qualifies(balance, tier):
                return tier
        elif tier.tier_level > current.tier_level:
            return tier
    return None


def tier_progress(balance: CoinBalance, tiers: List[TierConfig]) -> int:
    """
    Percent progress toward the next tier (0-100).

    Progress is limited by the least-complete threshold; 100 at the top
    of the ladder or with no ladder.
    """
    target = next_tier(balance, tiers)
    if target is None:
        return 100

    ratios = []
    pairs = (
        (Decimal(balance.total_earned or 0), Decimal(target.min_coins_earned or 0)),
        (Decimal(balance.lifetime_purchases or 0), Decimal(target.min_purchases or 0)),
        (Decimal(balance.lifetime_spent or 0), Decimal(target.min_total_spent or 0)),
    )
    for have, need in pairs:
        if need > 0:
            ratios.append(min(Decimal('1'), have / need))

    if not ratios:
        return 100
    return int(min(ratios) * 100)


class TierEvaluator:
    """
    Re-evaluates and persists holder tiers.

    Usage:
        evaluator = TierEvaluator(db.session)
        tier = evaluator.evaluate('user-1', 'seller-42')
    """

    def __init__(self, session, config_service: CoinConfigService = None):
        self.session = session
        self.configs = config_service or CoinConfigService(session)

    def evaluate(self, holder_id: str, merchant_id: str) -> str:
        """
        Re-evaluate a holder's tier and commit any change.

        Raises:
            MerchantNotFoundError: No program for merchant
            NoBalanceError: Holder has no balance with the merchant
            PersistenceError: Database failure
        """
        config = self.configs.get(merchant_id)
        balance = (
            self.session.query(CoinBalance)
            .filter_by(holder_id=str(holder_id), merchant_config_id=config.id)
            .first()
        )
        if not balance:
            raise NoBalanceError(holder_id, merchant_id)

        try:
            tier = self.apply(balance)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Tier evaluation failed for holder {holder_id} / merchant {merchant_id}: {e}")
            raise PersistenceError('Failed to update tier', e)
        return tier

    def apply(self, balance: CoinBalance) -> str:
        """
        Evaluate a balance and stage the tier change in the current unit of
        work without committing. Returns the resulting tier name.
        """
        tiers = self.configs.tiers_for_config(balance.merchant_config_id)
        new_tier = resolve_tier(balance, tiers)
        previous = balance.current_tier

        if new_tier != previous:
            balance.current_tier = new_tier
            logger.info(
                f"Tier change: holder {balance.holder_id} config {balance.merchant_config_id} "
                f"{previous or 'none'} -> {new_tier}"
            )

        progress = tier_progress(balance, tiers)
        if progress != balance.tier_progress:
            balance.tier_progress = progress

        self.session.flush()
        return new_tier
