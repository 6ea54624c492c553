"""
Transaction Log - read-only access to coin transaction history.
"""
from typing import List, Optional

from ..models.transaction import CoinTransaction, CoinTransactionType
from ..utils.exceptions import ValidationError
from .config_service import CoinConfigService

DEFAULT_LIMIT = 50


class TransactionLog:
    """
    Newest-first history of a holder's transactions with one merchant.

    Transactions are never edited or deleted here; expiry is recorded as
    new 'expired' rows by the ledger.
    """

    def __init__(self, session, config_service: CoinConfigService = None, max_limit: int = 200):
        self.session = session
        self.configs = config_service or CoinConfigService(session)
        self.max_limit = max_limit

    def history(
        self,
        holder_id: str,
        merchant_id: str,
        limit: int = DEFAULT_LIMIT,
        offset: int = 0,
        transaction_type: str = None
    ) -> List[CoinTransaction]:
        """
        Get a holder's transactions, newest first.

        Args:
            holder_id: Coin holder
            merchant_id: Merchant whose program to read
            limit: Max rows (capped at max_limit)
            offset: Rows to skip
            transaction_type: Optional CoinTransactionType filter

        Raises:
            MerchantNotFoundError: No program for merchant
            ValidationError: Bad paging or type filter
        """
        query = self._query(holder_id, merchant_id, transaction_type)

        if limit is None or limit <= 0:
            raise ValidationError('limit must be positive', 'limit')
        if offset is None or offset < 0:
            raise ValidationError('offset cannot be negative', 'offset')

        return (
            query.order_by(CoinTransaction.created_at.desc(), CoinTransaction.id.desc())
            .limit(min(limit, self.max_limit))
            .offset(offset)
            .all()
        )

    def count(self, holder_id: str, merchant_id: str, transaction_type: str = None) -> int:
        return self._query(holder_id, merchant_id, transaction_type).count()

    def get(self, transaction_id: int) -> Optional[CoinTransaction]:
        return self.session.get(CoinTransaction, transaction_id)

    def _query(self, holder_id, merchant_id, transaction_type):
        config = self.configs.get(merchant_id)

        query = self.session.query(CoinTransaction).filter(
            CoinTransaction.holder_id == str(holder_id),
            CoinTransaction.merchant_config_id == config.id,
        )

        if transaction_type:
            if transaction_type not in {t.value for t in CoinTransactionType}:
                raise ValidationError(f'Unknown transaction type: {transaction_type}', 'transaction_type')
            query = query.filter(CoinTransaction.type == transaction_type)

        return query
