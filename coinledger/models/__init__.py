"""
Database models for the merchant coin ledger.
"""
from .merchant import CoinConfig, TierConfig, BusinessType, BusinessStatus
from .balance import CoinBalance
from .transaction import CoinTransaction, CoinTransactionType, AWARD_TYPES, DEBIT_TYPES

__all__ = [
    'CoinConfig',
    'TierConfig',
    'BusinessType',
    'BusinessStatus',
    'CoinBalance',
    'CoinTransaction',
    'CoinTransactionType',
    'AWARD_TYPES',
    'DEBIT_TYPES',
]
