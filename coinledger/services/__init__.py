"""
Business logic services for the merchant coin ledger.
"""
from .config_service import CoinConfigService, coins_for_purchase, redemption_value, max_redeemable_coins
from .tier_service import TierEvaluator, DEFAULT_TIER
from .transaction_log import TransactionLog
from .ledger_service import CoinLedger, LedgerResult

__all__ = [
    'CoinConfigService',
    'coins_for_purchase',
    'redemption_value',
    'max_redeemable_coins',
    'TierEvaluator',
    'DEFAULT_TIER',
    'TransactionLog',
    'CoinLedger',
    'LedgerResult',
]
