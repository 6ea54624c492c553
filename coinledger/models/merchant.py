"""
Merchant coin program models.

A merchant (marketplace seller, turnkey business, or crowdfunding project)
runs one coin program described by CoinConfig, and optionally a ladder of
TierConfig rows that holders climb through lifetime activity.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from ..extensions import db


class BusinessType(str, Enum):
    """Kind of business running the coin program."""
    MARKETPLACE_SELLER = 'marketplace_seller'
    TURNKEY_BUSINESS = 'turnkey_business'
    CROWDFUNDING = 'crowdfunding'


class BusinessStatus(str, Enum):
    """Lifecycle status of the business."""
    PLANNING = 'planning'
    FUNDRAISING = 'fundraising'
    ACTIVE = 'active'
    SUSPENDED = 'suspended'


def _float(value):
    return float(value) if value is not None else None


class CoinConfig(db.Model):
    """
    Loyalty coin program settings for one merchant.

    earn_rate is coins per currency unit spent; redemption_rate is the
    currency value of a single coin.
    """
    __tablename__ = 'merchant_coin_configs'

    id = db.Column(db.Integer, primary_key=True)
    merchant_id = db.Column(db.String(100), unique=True, nullable=False)
    project_id = db.Column(db.String(100))

    # Branding
    coin_name = db.Column(db.String(50), nullable=False, default='Coins')
    coin_symbol = db.Column(db.String(10), nullable=False, default='🪙')
    brand_color = db.Column(db.String(20), default='#6366f1')
    logo_url = db.Column(db.String(500))
    business_name = db.Column(db.String(255))
    business_type = db.Column(db.String(30), nullable=False, default=BusinessType.MARKETPLACE_SELLER.value)
    business_status = db.Column(db.String(20), nullable=False, default=BusinessStatus.ACTIVE.value)

    # Economics
    earn_rate = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal('1.0'))
    redemption_rate = db.Column(db.Numeric(10, 4), nullable=False, default=Decimal('0.01'))
    min_redemption = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('100'))
    max_redemption_pct = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('50.0'))
    max_redemption_per_visit = db.Column(db.Numeric(14, 2))
    coins_expire_days = db.Column(db.Integer, nullable=False, default=365)

    # Crowdfunding
    fundraising_goal = db.Column(db.Numeric(14, 2))
    current_funding = db.Column(db.Numeric(14, 2), default=Decimal('0'))

    is_active = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    tiers = db.relationship(
        'TierConfig',
        backref='config',
        lazy='dynamic',
        order_by='TierConfig.tier_level',
        cascade='all, delete-orphan'
    )

    def __repr__(self):
        return f'<CoinConfig {self.merchant_id}: {self.coin_name}>'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'merchant_id': self.merchant_id,
            'project_id': self.project_id,
            'coin_name': self.coin_name,
            'coin_symbol': self.coin_symbol,
            'brand_color': self.brand_color,
            'logo_url': self.logo_url,
            'business_name': self.business_name,
            'business_type': self.business_type,
            'business_status': self.business_status,
            'earn_rate': _float(self.earn_rate),
            'redemption_rate': _float(self.redemption_rate),
            'min_redemption': _float(self.min_redemption),
            'max_redemption_pct': _float(self.max_redemption_pct),
            'max_redemption_per_visit': _float(self.max_redemption_per_visit),
            'coins_expire_days': self.coins_expire_days,
            'fundraising_goal': _float(self.fundraising_goal),
            'current_funding': _float(self.current_funding),
            'is_active': self.is_active,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class TierConfig(db.Model):
    """
    One rung of a merchant's tier ladder.

    A holder qualifies for a tier when all three lifetime thresholds are met.
    tier_level gives the total order (1 = lowest).
    """
    __tablename__ = 'merchant_coin_tiers'

    id = db.Column(db.Integer, primary_key=True)
    merchant_config_id = db.Column(
        db.Integer, db.ForeignKey('merchant_coin_configs.id', ondelete='CASCADE'), nullable=False
    )

    tier_name = db.Column(db.String(50), nullable=False)
    tier_level = db.Column(db.Integer, nullable=False)

    # Thresholds (lifetime stats)
    min_coins_earned = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    min_purchases = db.Column(db.Integer, nullable=False, default=0)
    min_total_spent = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))

    # Perks
    earn_multiplier = db.Column(db.Numeric(4, 2), nullable=False, default=Decimal('1.0'))
    redemption_bonus_pct = db.Column(db.Numeric(5, 2), nullable=False, default=Decimal('0'))
    exclusive_discounts = db.Column(db.Boolean, default=False)
    early_access = db.Column(db.Boolean, default=False)
    free_shipping = db.Column(db.Boolean, default=False)
    priority_support = db.Column(db.Boolean, default=False)
    benefits_description = db.Column(db.String(500))
    badge_icon = db.Column(db.String(20), default='🥉')
    badge_color = db.Column(db.String(20), default='#cd7f32')

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint('merchant_config_id', 'tier_level', name='uq_merchant_coin_tiers_level'),
        db.Index('ix_merchant_coin_tiers_config_level', 'merchant_config_id', 'tier_level'),
    )

    def __repr__(self):
        return f'<TierConfig {self.tier_name} (level {self.tier_level})>'

    @property
    def key(self) -> str:
        """Normalized tier name stored on balances."""
        return (self.tier_name or '').strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'tier_name': self.tier_name,
            'tier_level': self.tier_level,
            'min_coins_earned': _float(self.min_coins_earned),
            'min_purchases': self.min_purchases,
            'min_total_spent': _float(self.min_total_spent),
            'earn_multiplier': _float(self.earn_multiplier),
            'redemption_bonus_pct': _float(self.redemption_bonus_pct),
            'exclusive_discounts': bool(self.exclusive_discounts),
            'early_access': bool(self.early_access),
            'free_shipping': bool(self.free_shipping),
            'priority_support': bool(self.priority_support),
            'benefits_description': self.benefits_description,
            'badge_icon': self.badge_icon,
            'badge_color': self.badge_color,
        }
