"""
Coin Configuration Store.

Creates, updates and reads per-merchant coin programs and their tier
ladders. Every other ledger component reads from here.

Usage:
    service = CoinConfigService(db.session)
    config = service.configure('seller-42', {'earn_rate': 2, 'coin_name': 'Beans'})
    service.seed_default_tiers('seller-42')
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models.merchant import CoinConfig, TierConfig, BusinessType, BusinessStatus
from ..utils.exceptions import MerchantNotFoundError, PersistenceError, ValidationError
from ..utils.money import ZERO, floor_cents, to_decimal, whole_days

logger = logging.getLogger(__name__)


# Defaults applied when a program is created without explicit values
DEFAULT_SETTINGS: Dict[str, Any] = {
    'coin_name': 'Coins',
    'coin_symbol': '🪙',
    'brand_color': '#6366f1',
    'business_type': BusinessType.MARKETPLACE_SELLER.value,
    'business_status': BusinessStatus.ACTIVE.value,
    'earn_rate': Decimal('1.0'),
    'redemption_rate': Decimal('0.01'),
    'min_redemption': Decimal('100'),
    'max_redemption_pct': Decimal('50.0'),
    'coins_expire_days': 365,
    'current_funding': Decimal('0'),
    'is_active': True,
}

STRING_FIELDS = {'project_id', 'coin_name', 'coin_symbol', 'brand_color', 'logo_url', 'business_name'}
DECIMAL_FIELDS = {
    'earn_rate', 'redemption_rate', 'min_redemption', 'max_redemption_pct',
    'max_redemption_per_visit', 'fundraising_goal', 'current_funding',
}
NULLABLE_FIELDS = {
    'project_id', 'logo_url', 'business_name', 'max_redemption_per_visit', 'fundraising_goal',
}
ALLOWED_FIELDS = STRING_FIELDS | DECIMAL_FIELDS | {
    'business_type', 'business_status', 'coins_expire_days', 'is_active',
}

TIER_FIELDS = {
    'tier_name', 'tier_level', 'min_coins_earned', 'min_purchases', 'min_total_spent',
    'earn_multiplier', 'redemption_bonus_pct', 'exclusive_discounts', 'early_access',
    'free_shipping', 'priority_support', 'benefits_description', 'badge_icon', 'badge_color',
}

DEFAULT_TIERS: List[Dict[str, Any]] = [
    {
        'tier_name': 'Bronze', 'tier_level': 1,
        'min_coins_earned': 0, 'min_purchases': 0, 'min_total_spent': 0,
        'earn_multiplier': '1.0', 'redemption_bonus_pct': '0',
        'badge_icon': '🥉', 'badge_color': '#cd7f32',
        'benefits_description': 'Earn coins on every purchase',
    },
    {
        'tier_name': 'Silver', 'tier_level': 2,
        'min_coins_earned': 500, 'min_purchases': 5, 'min_total_spent': 50,
        'earn_multiplier': '1.25', 'redemption_bonus_pct': '5',
        'early_access': True,
        'badge_icon': '🥈', 'badge_color': '#c0c0c0',
        'benefits_description': '1.25x coins and early access to drops',
    },
    {
        'tier_name': 'Gold', 'tier_level': 3,
        'min_coins_earned': 2000, 'min_purchases': 20, 'min_total_spent': 250,
        'earn_multiplier': '1.5', 'redemption_bonus_pct': '10',
        'early_access': True, 'exclusive_discounts': True, 'free_shipping': True,
        'badge_icon': '🥇', 'badge_color': '#ffd700',
        'benefits_description': '1.5x coins, free shipping and exclusive discounts',
    },
    {
        'tier_name': 'Platinum', 'tier_level': 4,
        'min_coins_earned': 5000, 'min_purchases': 50, 'min_total_spent': 1000,
        'earn_multiplier': '2.0', 'redemption_bonus_pct': '15',
        'early_access': True, 'exclusive_discounts': True, 'free_shipping': True,
        'priority_support': True,
        'badge_icon': '💎', 'badge_color': '#e5e4e2',
        'benefits_description': 'Double coins and every perk we offer',
    },
]


class CoinConfigService:
    """
    Per-merchant coin program settings.

    The session is injected so callers decide the unit of work (request
    session, CLI session, test session).
    """

    def __init__(self, session):
        self.session = session

    # ==================== Program settings ====================

    def find(self, merchant_id: str) -> Optional[CoinConfig]:
        """Get a merchant's program, or None."""
        return self.session.query(CoinConfig).filter_by(merchant_id=str(merchant_id)).first()

    def get(self, merchant_id: str) -> CoinConfig:
        """
        Get a merchant's program.

        Raises:
            MerchantNotFoundError: If the merchant has no coin program
        """
        config = self.find(merchant_id)
        if not config:
            raise MerchantNotFoundError(merchant_id)
        return config

    def configure(self, merchant_id: str, settings: Dict[str, Any] = None) -> CoinConfig:
        """
        Create or update a merchant's coin program.

        Unspecified fields take DEFAULT_SETTINGS on create and keep their
        stored value on update. All values are validated before anything
        is written.

        Args:
            merchant_id: Seller / business identifier
            settings: Partial settings dict (see ALLOWED_FIELDS)

        Returns:
            The persisted CoinConfig

        Raises:
            ValidationError: Unknown field or invalid value
            PersistenceError: Database failure (nothing committed)
        """
        if not merchant_id or not str(merchant_id).strip():
            raise ValidationError('merchant_id is required', 'merchant_id')

        cleaned = self._clean_settings(settings or {})

        config = self.find(merchant_id)
        is_new = config is None

        merged = dict(DEFAULT_SETTINGS) if is_new else {
            field: getattr(config, field) for field in ALLOWED_FIELDS
        }
        merged.update(cleaned)
        self._validate_program(merged)

        if is_new:
            config = CoinConfig(merchant_id=str(merchant_id).strip())
            self.session.add(config)

        for field, value in merged.items():
            if field in ALLOWED_FIELDS:
                setattr(config, field, value)

        try:
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to save coin program for merchant {merchant_id}: {e}")
            raise PersistenceError('Failed to save coin program', e)

        logger.info(
            f"Coin program {'created' if is_new else 'updated'} for merchant {merchant_id}: "
            f"earn_rate={config.earn_rate} redemption_rate={config.redemption_rate} "
            f"expire_days={config.coins_expire_days}"
        )
        return config

    def _clean_settings(self, settings: Dict[str, Any]) -> Dict[str, Any]:
        """Type-coerce raw settings, rejecting unknown fields."""
        unknown = set(settings) - ALLOWED_FIELDS
        if unknown:
            raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

        cleaned = {}
        for field, value in settings.items():
            if value is None:
                if field not in NULLABLE_FIELDS:
                    raise ValidationError(f'{field} cannot be null', field)
                cleaned[field] = None
            elif field in DECIMAL_FIELDS:
                cleaned[field] = to_decimal(value, field)
            elif field == 'coins_expire_days':
                cleaned[field] = whole_days(value, field)
            elif field == 'is_active':
                cleaned[field] = bool(value)
            else:
                cleaned[field] = str(value).strip()
        return cleaned

    def _validate_program(self, values: Dict[str, Any]) -> None:
        if values['earn_rate'] < ZERO:
            raise ValidationError('earn_rate cannot be negative', 'earn_rate')
        if values['redemption_rate'] < ZERO:
            raise ValidationError('redemption_rate cannot be negative', 'redemption_rate')
        if values['min_redemption'] < ZERO:
            raise ValidationError('min_redemption cannot be negative', 'min_redemption')
        if not ZERO <= values['max_redemption_pct'] <= Decimal('100'):
            raise ValidationError('max_redemption_pct must be between 0 and 100', 'max_redemption_pct')
        if values['coins_expire_days'] <= 0:
            raise ValidationError('coins_expire_days must be greater than 0', 'coins_expire_days')
        per_visit = values.get('max_redemption_per_visit')
        if per_visit is not None and per_visit <= ZERO:
            raise ValidationError('max_redemption_per_visit must be positive', 'max_redemption_per_visit')
        for field in ('fundraising_goal', 'current_funding'):
            if values.get(field) is not None and values[field] < ZERO:
                raise ValidationError(f'{field} cannot be negative', field)
        if values['business_type'] not in {t.value for t in BusinessType}:
            raise ValidationError(f"Invalid business_type: {values['business_type']}", 'business_type')
        if values['business_status'] not in {s.value for s in BusinessStatus}:
            raise ValidationError(f"Invalid business_status: {values['business_status']}", 'business_status')
        if not values['coin_name']:
            raise ValidationError('coin_name cannot be empty', 'coin_name')

    # ==================== Tier ladder ====================

    def get_tiers(self, merchant_id: str) -> List[TierConfig]:
        """Tier ladder ascending by level (empty if none configured)."""
        config = self.get(merchant_id)
        return self.tiers_for_config(config.id)

    def tiers_for_config(self, merchant_config_id: int) -> List[TierConfig]:
        return (
            self.session.query(TierConfig)
            .filter_by(merchant_config_id=merchant_config_id)
            .order_by(TierConfig.tier_level.asc())
            .all()
        )

    def set_tiers(self, merchant_id: str, tiers: Iterable[Dict[str, Any]]) -> List[TierConfig]:
        """
        Replace a merchant's tier ladder.

        Raises:
            MerchantNotFoundError: No program for merchant
            ValidationError: Duplicate levels/names or invalid thresholds
        """
        config = self.get(merchant_id)
        rows = [self._build_tier(config.id, data) for data in tiers]

        levels = [row.tier_level for row in rows]
        if len(levels) != len(set(levels)):
            raise ValidationError('tier_level values must be unique', 'tier_level')
        names = [row.key for row in rows]
        if len(names) != len(set(names)):
            raise ValidationError('tier_name values must be unique', 'tier_name')

        try:
            self.session.query(TierConfig).filter_by(merchant_config_id=config.id).delete()
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to save tiers for merchant {merchant_id}: {e}")
            raise PersistenceError('Failed to save tier ladder', e)

        logger.info(f"Tier ladder saved for merchant {merchant_id}: {', '.join(names) or '(empty)'}")
        return self.tiers_for_config(config.id)

    def seed_default_tiers(self, merchant_id: str) -> List[TierConfig]:
        """Install the bronze/silver/gold/platinum ladder if the merchant has none."""
        existing = self.get_tiers(merchant_id)
        if existing:
            return existing
        return self.set_tiers(merchant_id, DEFAULT_TIERS)

    def _build_tier(self, merchant_config_id: int, data: Dict[str, Any]) -> TierConfig:
        unknown = set(data) - TIER_FIELDS
        if unknown:
            raise ValidationError(f"Unknown tier fields: {', '.join(sorted(unknown))}")

        name = str(data.get('tier_name') or '').strip()
        if not name:
            raise ValidationError('tier_name is required', 'tier_name')

        try:
            level = int(data.get('tier_level'))
            min_purchases = int(data.get('min_purchases', 0))
        except (TypeError, ValueError):
            raise ValidationError(f'Tier {name}: tier_level and min_purchases must be integers')

        min_coins = to_decimal(data.get('min_coins_earned', 0), 'min_coins_earned')
        min_spent = to_decimal(data.get('min_total_spent', 0), 'min_total_spent')
        multiplier = to_decimal(data.get('earn_multiplier', '1.0'), 'earn_multiplier')
        bonus_pct = to_decimal(data.get('redemption_bonus_pct', 0), 'redemption_bonus_pct')

        if min_coins < ZERO or min_spent < ZERO or min_purchases < 0:
            raise ValidationError(f'Tier {name}: thresholds cannot be negative')
        if multiplier < ZERO or bonus_pct < ZERO:
            raise ValidationError(f'Tier {name}: perks cannot be negative')

        return TierConfig(
            merchant_config_id=merchant_config_id,
            tier_name=name,
            tier_level=level,
            min_coins_earned=min_coins,
            min_purchases=min_purchases,
            min_total_spent=min_spent,
            earn_multiplier=multiplier,
            redemption_bonus_pct=bonus_pct,
            exclusive_discounts=bool(data.get('exclusive_discounts', False)),
            early_access=bool(data.get('early_access', False)),
            free_shipping=bool(data.get('free_shipping', False)),
            priority_support=bool(data.get('priority_support', False)),
            benefits_description=data.get('benefits_description'),
            badge_icon=data.get('badge_icon') or '🥉',
            badge_color=data.get('badge_color') or '#cd7f32',
        )


# ==================== Pricing helpers ====================

def coins_for_purchase(config: CoinConfig, purchase_amount, multiplier=1) -> Decimal:
    """Coins earned for a purchase: purchase * earn_rate * multiplier, floored to cents."""
    purchase = to_decimal(purchase_amount, 'purchase_amount')
    if purchase < ZERO:
        raise ValidationError('purchase_amount cannot be negative', 'purchase_amount')
    return floor_cents(purchase * Decimal(config.earn_rate) * to_decimal(multiplier, 'multiplier'))


def redemption_value(config: CoinConfig, coins) -> Decimal:
    """Currency value of a number of coins."""
    return floor_cents(to_decimal(coins, 'coins') * Decimal(config.redemption_rate))


def max_redeemable_coins(config: CoinConfig, purchase_amount, available) -> Decimal:
    """
    Most coins a holder may apply to a purchase.

    Bounded by what they hold, the per-visit cap, and the coins worth
    max_redemption_pct of the purchase.
    """
    purchase = to_decimal(purchase_amount, 'purchase_amount')
    limit = to_decimal(available, 'available')

    if config.max_redemption_per_visit is not None:
        limit = min(limit, Decimal(config.max_redemption_per_visit))

    rate = Decimal(config.redemption_rate)
    if rate > ZERO:
        value_cap = purchase * Decimal(config.max_redemption_pct) / Decimal('100')
        limit = min(limit, floor_cents(value_cap / rate))

    return max(limit, ZERO)
