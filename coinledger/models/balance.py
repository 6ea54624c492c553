"""
Coin balance model.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from ..extensions import db


class CoinBalance(db.Model):
    """
    Running coin balance for one holder in one merchant's program.

    Design notes:
    - One row per (holder, merchant config), created lazily on first award
    - current_balance = total_earned - total_spent - total_expired, never negative
    - version is bumped by every balance mutation; writers update with
      WHERE version = <value they read> so concurrent writers cannot both commit
    - current_tier is derived from lifetime stats, not from current_balance
    """
    __tablename__ = 'merchant_coin_balances'

    id = db.Column(db.Integer, primary_key=True)
    holder_id = db.Column(db.String(100), nullable=False)
    merchant_config_id = db.Column(
        db.Integer, db.ForeignKey('merchant_coin_configs.id'), nullable=False
    )

    # Totals
    total_earned = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    total_spent = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    total_expired = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    current_balance = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))

    # Tier
    current_tier = db.Column(db.String(50), nullable=False, default='bronze')
    tier_progress = db.Column(db.Integer, nullable=False, default=0)  # % toward next tier

    # Lifetime activity
    lifetime_purchases = db.Column(db.Integer, nullable=False, default=0)
    lifetime_spent = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))

    last_earned_at = db.Column(db.DateTime)
    last_spent_at = db.Column(db.DateTime)

    version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    config = db.relationship('CoinConfig', backref=db.backref('balances', lazy='dynamic'))

    __table_args__ = (
        db.UniqueConstraint('holder_id', 'merchant_config_id', name='uq_merchant_coin_balances_holder'),
        db.CheckConstraint('current_balance >= 0', name='ck_merchant_coin_balances_non_negative'),
        db.Index('ix_merchant_coin_balances_holder_balance', 'holder_id', 'current_balance'),
    )

    def __repr__(self):
        return f'<CoinBalance holder={self.holder_id} config={self.merchant_config_id} bal={self.current_balance}>'

    @property
    def is_consistent(self) -> bool:
        """True when the running balance matches the cumulative totals."""
        expected = (self.total_earned or 0) - (self.total_spent or 0) - (self.total_expired or 0)
        return expected == (self.current_balance or 0) and (self.current_balance or 0) >= 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'holder_id': self.holder_id,
            'merchant_config_id': self.merchant_config_id,
            'total_earned': float(self.total_earned or 0),
            'total_spent': float(self.total_spent or 0),
            'total_expired': float(self.total_expired or 0),
            'current_balance': float(self.current_balance or 0),
            'current_tier': self.current_tier,
            'tier_progress': self.tier_progress or 0,
            'lifetime_purchases': self.lifetime_purchases or 0,
            'lifetime_spent': float(self.lifetime_spent or 0),
            'last_earned_at': self.last_earned_at.isoformat() if self.last_earned_at else None,
            'last_spent_at': self.last_spent_at.isoformat() if self.last_spent_at else None,
        }
