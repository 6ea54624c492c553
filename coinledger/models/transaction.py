"""
Coin transaction model - the append-only history of balance mutations.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from ..extensions import db


class CoinTransactionType(str, Enum):
    """Types of coin transactions."""
    EARNED = 'earned'                   # Purchase reward (positive)
    SPENT = 'spent'                     # Redeemed at checkout (negative)
    EXPIRED = 'expired'                 # Lot reached its expiry (negative)
    BONUS = 'bonus'                     # Promotional bonus (positive)
    REFUND = 'refund'                   # Coins returned after a cancelled order (positive)
    DONATION_REWARD = 'donation_reward' # Reward for a donation (positive)
    CROWDFUND = 'crowdfund'             # Coins issued for crowdfunding support (positive)


AWARD_TYPES = frozenset({
    CoinTransactionType.EARNED.value,
    CoinTransactionType.BONUS.value,
    CoinTransactionType.DONATION_REWARD.value,
    CoinTransactionType.CROWDFUND.value,
})

DEBIT_TYPES = frozenset({
    CoinTransactionType.SPENT.value,
    CoinTransactionType.EXPIRED.value,
})


class CoinTransaction(db.Model):
    """
    Immutable record of a single balance mutation.

    Design notes:
    - amount is signed: + for awards and refunds, - for spend and expiry
    - balance_after = balance_before + amount, always
    - Positive rows are "lots": remaining_amount tracks the coins of the lot
      not yet consumed by redemption or expiry. remaining_amount and
      expiry_processed are the only columns ever written after insert.
    - idempotency_key is unique per merchant program when present
    """
    __tablename__ = 'merchant_coin_transactions'

    id = db.Column(db.Integer, primary_key=True)
    balance_id = db.Column(db.Integer, db.ForeignKey('merchant_coin_balances.id'), nullable=False)
    holder_id = db.Column(db.String(100), nullable=False)
    merchant_config_id = db.Column(
        db.Integer, db.ForeignKey('merchant_coin_configs.id'), nullable=False
    )

    type = db.Column(db.String(30), nullable=False)  # CoinTransactionType
    amount = db.Column(db.Numeric(14, 2), nullable=False)
    balance_before = db.Column(db.Numeric(14, 2), nullable=False)
    balance_after = db.Column(db.Numeric(14, 2), nullable=False)

    description = db.Column(db.String(500))
    order_id = db.Column(db.String(100))
    donation_id = db.Column(db.String(100))
    status = db.Column(db.String(20), nullable=False, default='completed')

    # Lot bookkeeping
    expires_at = db.Column(db.DateTime)
    remaining_amount = db.Column(db.Numeric(14, 2), nullable=False, default=Decimal('0'))
    expiry_processed = db.Column(db.Boolean, nullable=False, default=False)

    idempotency_key = db.Column(db.String(100))
    related_transaction_id = db.Column(db.Integer, db.ForeignKey('merchant_coin_transactions.id'))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    # Relationships
    balance = db.relationship('CoinBalance', backref=db.backref('transactions', lazy='dynamic'))
    related_transaction = db.relationship('CoinTransaction', remote_side=[id])

    __table_args__ = (
        db.UniqueConstraint(
            'merchant_config_id', 'idempotency_key', name='uq_merchant_coin_transactions_idempotency'
        ),
        db.Index('ix_merchant_coin_transactions_holder_created', 'holder_id', 'merchant_config_id', 'created_at'),
        db.Index('ix_merchant_coin_transactions_expires', 'expires_at', 'expiry_processed'),
    )

    def __repr__(self):
        return f'<CoinTransaction {self.id}: {self.type} {self.amount:+} for {self.holder_id}>'

    @property
    def is_credit(self) -> bool:
        return self.type not in DEBIT_TYPES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses; amount is reported unsigned."""
        return {
            'id': self.id,
            'type': self.type,
            'amount': float(abs(self.amount)),
            'direction': 'credit' if self.is_credit else 'debit',
            'description': self.description,
            'balance_before': float(self.balance_before),
            'balance_after': float(self.balance_after),
            'order_id': self.order_id,
            'donation_id': self.donation_id,
            'status': self.status,
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
