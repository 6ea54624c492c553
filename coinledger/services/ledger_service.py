"""
Balance Ledger for merchant loyalty coins.

Awards, redeems, refunds and expires coins on a per-(holder, merchant)
balance while appending an immutable CoinTransaction for every mutation.

CONSISTENCY:
- current_balance = total_earned - total_spent - total_expired, never < 0
- Every transaction satisfies balance_after = balance_before + amount
- The balance update and its transaction insert commit together or not at all

CONCURRENCY:
The ledger is stateless between calls and any number of processes may call
it at once, so it never relies on in-process locks. Each balance carries a
version counter; writers read the row, compute the new values and issue

    UPDATE merchant_coin_balances SET ..., version = version + 1
    WHERE id = :id AND version = :version_read

A zero rowcount means another writer committed first. The ledger re-reads
the row, re-checks its preconditions (a redeem that no longer fits the
balance fails with InsufficientBalanceError) and tries again, up to
max_retries times.

Usage:
    ledger = CoinLedger(db.session)
    ledger.award('user-1', 'seller-42', 50, description='Order #1001')
    ledger.redeem('user-1', 'seller-42', 20, order_id='1002')
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..models.balance import CoinBalance
from ..models.merchant import BusinessStatus, CoinConfig
from ..models.transaction import AWARD_TYPES, CoinTransaction, CoinTransactionType
from ..utils.exceptions import (
    CoinLedgerError,
    ConcurrentUpdateError,
    DuplicateError,
    InsufficientBalanceError,
    NoBalanceError,
    PersistenceError,
    ValidationError,
)
from ..utils.money import ZERO, positive_amount, quantize, to_decimal, whole_days
from .config_service import CoinConfigService, coins_for_purchase
from .tier_service import DEFAULT_TIER, TierEvaluator

logger = logging.getLogger(__name__)


MAX_CAS_RETRIES = 3
DEFAULT_REDEEM_DESCRIPTION = 'Redeemed at checkout'

AWARD_DESCRIPTIONS = {
    CoinTransactionType.EARNED.value: 'Coins earned',
    CoinTransactionType.BONUS.value: 'Bonus coins',
    CoinTransactionType.DONATION_REWARD.value: 'Thank you for your donation',
    CoinTransactionType.CROWDFUND.value: 'Crowdfunding reward',
}


@dataclass
class LedgerResult:
    """Outcome of a balance mutation."""
    transaction: CoinTransaction
    balance: CoinBalance
    duplicate: bool = False
    previous_tier: Optional[str] = None

    @property
    def tier_changed(self) -> bool:
        return self.previous_tier is not None and self.previous_tier != self.balance.current_tier

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'duplicate': self.duplicate,
            'transaction': self.transaction.to_dict(),
            'balance': self.balance.to_dict(),
            'tier_changed': self.tier_changed,
        }


# Plan: given a freshly read balance, return (column changes, transaction to insert)
Plan = Callable[[CoinBalance, datetime], Tuple[Dict[str, Any], CoinTransaction]]


class CoinLedger:
    """
    Per-(holder, merchant) coin balances and their transaction history.

    The session is injected; the ledger holds no state of its own beyond
    its collaborators.
    """

    def __init__(
        self,
        session,
        config_service: CoinConfigService = None,
        tier_evaluator: TierEvaluator = None,
        max_retries: int = MAX_CAS_RETRIES
    ):
        self.session = session
        self.configs = config_service or CoinConfigService(session)
        self.tiers = tier_evaluator or TierEvaluator(session, self.configs)
        self.max_retries = max(1, int(max_retries))

    # ==================== Queries ====================

    def get_balance(self, holder_id: str, merchant_id: str) -> Optional[CoinBalance]:
        """Holder's balance with a merchant, or None."""
        config = self.configs.find(merchant_id)
        if not config:
            return None
        return self._fetch_balance(holder_id, config.id)

    def get_portfolio(self, holder_id: str) -> List[Tuple[CoinBalance, CoinConfig]]:
        """All balances with coins left, largest first, each with its program."""
        rows = (
            self.session.query(CoinBalance, CoinConfig)
            .join(CoinConfig, CoinBalance.merchant_config_id == CoinConfig.id)
            .filter(
                CoinBalance.holder_id == str(holder_id),
                CoinBalance.current_balance > 0,
            )
            .order_by(CoinBalance.current_balance.desc(), CoinBalance.id.asc())
            .all()
        )
        return [(balance, config) for balance, config in rows]

    def portfolio_value(self, holder_id: str) -> Decimal:
        """Currency value of everything the holder can redeem."""
        total = ZERO
        for balance, config in self.get_portfolio(holder_id):
            total += Decimal(balance.current_balance) * Decimal(config.redemption_rate)
        return quantize(total)

    def program_stats(self, merchant_id: str) -> Dict[str, Any]:
        """Aggregate totals and tier distribution for one merchant's program."""
        config = self.configs.get(merchant_id)

        holders, earned, spent, expired, outstanding = (
            self.session.query(
                func.count(CoinBalance.id),
                func.coalesce(func.sum(CoinBalance.total_earned), 0),
                func.coalesce(func.sum(CoinBalance.total_spent), 0),
                func.coalesce(func.sum(CoinBalance.total_expired), 0),
                func.coalesce(func.sum(CoinBalance.current_balance), 0),
            )
            .filter(CoinBalance.merchant_config_id == config.id)
            .one()
        )

        tiers = (
            self.session.query(CoinBalance.current_tier, func.count(CoinBalance.id))
            .filter(CoinBalance.merchant_config_id == config.id)
            .group_by(CoinBalance.current_tier)
            .all()
        )

        outstanding = quantize(to_decimal(outstanding))
        return {
            'merchant_id': config.merchant_id,
            'coin_name': config.coin_name,
            'holders': holders,
            'total_earned': quantize(to_decimal(earned)),
            'total_spent': quantize(to_decimal(spent)),
            'total_expired': quantize(to_decimal(expired)),
            'outstanding': outstanding,
            'outstanding_value': quantize(outstanding * Decimal(config.redemption_rate)),
            'tiers': {tier: count for tier, count in tiers},
        }

    # ==================== Mutations ====================

    def award(
        self,
        holder_id: str,
        merchant_id: str,
        amount,
        transaction_type: str = CoinTransactionType.EARNED.value,
        description: str = None,
        order_id: str = None,
        donation_id: str = None,
        expires_in_days: int = None,
        idempotency_key: str = None,
        purchase_amount=None
    ) -> LedgerResult:
        """
        Award coins to a holder, creating their balance on first use.

        Args:
            holder_id: Coin holder
            merchant_id: Merchant whose program issues the coins
            amount: Coins to award (must be > 0)
            transaction_type: earned, bonus, donation_reward or crowdfund
            description: Human-readable description
            order_id: Linked order
            donation_id: Linked donation
            expires_in_days: Override of the program's coins_expire_days
            idempotency_key: Repeat calls with the same key are no-ops
            purchase_amount: Purchase total; counts toward lifetime stats

        Returns:
            LedgerResult (duplicate=True if the key was already used)

        Raises:
            ValidationError, MerchantNotFoundError, DuplicateError,
            PersistenceError
        """
        amount = positive_amount(amount)
        if transaction_type not in AWARD_TYPES:
            raise ValidationError(
                f"Cannot award coins as '{transaction_type}'. "
                f"Allowed: {', '.join(sorted(AWARD_TYPES))}",
                'type'
            )
        purchase = self._optional_purchase(purchase_amount)
        holder_id = self._holder(holder_id)

        config = self.configs.get(merchant_id)
        if not config.is_active or config.business_status == BusinessStatus.SUSPENDED.value:
            raise ValidationError(f'Coin program for merchant {merchant_id} is not active', 'merchant_id')

        expire_days = config.coins_expire_days if expires_in_days is None else expires_in_days
        expire_days = whole_days(expire_days, 'expires_in_days')
        if expire_days <= 0:
            raise ValidationError('expires_in_days must be greater than 0', 'expires_in_days')

        if idempotency_key:
            existing = self._find_by_key(config.id, idempotency_key)
            if existing:
                return self._duplicate_result(existing, holder_id)

        def plan(balance: CoinBalance, now: datetime):
            before = Decimal(balance.current_balance)
            after = before + amount
            changes = {
                'total_earned': Decimal(balance.total_earned) + amount,
                'current_balance': after,
                'last_earned_at': now,
            }
            if purchase is not None:
                changes['lifetime_purchases'] = (balance.lifetime_purchases or 0) + 1
                changes['lifetime_spent'] = Decimal(balance.lifetime_spent) + purchase

            transaction = CoinTransaction(
                balance_id=balance.id,
                holder_id=holder_id,
                merchant_config_id=config.id,
                type=transaction_type,
                amount=amount,
                balance_before=before,
                balance_after=after,
                description=description or AWARD_DESCRIPTIONS[transaction_type],
                order_id=order_id,
                donation_id=donation_id,
                expires_at=now + timedelta(days=expire_days),
                remaining_amount=amount,
                idempotency_key=idempotency_key,
                created_at=now,
            )
            return changes, transaction

        result = self._mutate(
            holder_id,
            config,
            plan,
            create_balance=True,
            after_write=lambda balance, tx: self.tiers.apply(balance),
            idempotency_key=idempotency_key,
        )

        if not result.duplicate:
            logger.info(
                f"Coins awarded: holder {holder_id} +{amount} {config.coin_name} "
                f"({transaction_type}) merchant {config.merchant_id}. "
                f"Balance: {result.balance.current_balance}, tier: {result.balance.current_tier}"
            )
        return result

    def award_for_purchase(
        self,
        holder_id: str,
        merchant_id: str,
        purchase_amount,
        order_id: str = None,
        idempotency_key: str = None
    ) -> Optional[LedgerResult]:
        """
        Award the coins a purchase earns at the holder's tier multiplier.

        Returns None when the purchase earns nothing (e.g. earn_rate 0).
        """
        config = self.configs.get(merchant_id)
        purchase = self._optional_purchase(purchase_amount)
        if purchase is None:
            raise ValidationError('purchase_amount is required', 'purchase_amount')

        multiplier = self.earn_multiplier(holder_id, config)
        coins = coins_for_purchase(config, purchase, multiplier)
        if coins <= ZERO:
            logger.info(f"Purchase of {purchase} earns no coins with merchant {merchant_id}")
            return None

        description = f'Earned on purchase of {purchase}'
        if multiplier != Decimal('1'):
            description += f' ({multiplier}x tier bonus)'

        return self.award(
            holder_id,
            merchant_id,
            coins,
            CoinTransactionType.EARNED.value,
            description=description,
            order_id=order_id,
            idempotency_key=idempotency_key,
            purchase_amount=purchase,
        )

    def earn_multiplier(self, holder_id: str, config: CoinConfig) -> Decimal:
        """Earn multiplier of the holder's current tier (1 if none)."""
        balance = self._fetch_balance(holder_id, config.id)
        current = balance.current_tier if balance else DEFAULT_TIER
        for tier in self.configs.tiers_for_config(config.id):
            if tier.key == current:
                return Decimal(tier.earn_multiplier)
        return Decimal('1')

    def redeem(
        self,
        holder_id: str,
        merchant_id: str,
        amount,
        order_id: str = None,
        description: str = None,
        purchase_amount=None
    ) -> LedgerResult:
        """
        Spend coins from a holder's balance.

        When purchase_amount is given the program's checkout rules apply
        (minimum redemption, per-visit cap, max share of the purchase).
        Tier is never re-evaluated on redemption.

        Raises:
            ValidationError: Bad amount or checkout rule violated
            MerchantNotFoundError: No program for merchant
            NoBalanceError: Holder has no balance with the merchant
            InsufficientBalanceError: Amount exceeds balance at commit time
            PersistenceError: Database failure (nothing committed)
        """
        amount = positive_amount(amount)
        purchase = self._optional_purchase(purchase_amount)
        holder_id = self._holder(holder_id)
        config = self.configs.get(merchant_id)

        if purchase is not None:
            self._check_checkout_rules(config, amount, purchase)

        def plan(balance: CoinBalance, now: datetime):
            before = Decimal(balance.current_balance)
            if before < amount:
                raise InsufficientBalanceError(before, amount)
            after = before - amount
            changes = {
                'total_spent': Decimal(balance.total_spent) + amount,
                'current_balance': after,
                'last_spent_at': now,
            }
            transaction = CoinTransaction(
                balance_id=balance.id,
                holder_id=holder_id,
                merchant_config_id=config.id,
                type=CoinTransactionType.SPENT.value,
                amount=-amount,
                balance_before=before,
                balance_after=after,
                description=description or DEFAULT_REDEEM_DESCRIPTION,
                order_id=order_id,
                remaining_amount=ZERO,
                created_at=now,
            )
            return changes, transaction

        result = self._mutate(
            holder_id,
            config,
            plan,
            after_write=lambda balance, tx: self._consume_lots(balance.id, amount),
        )

        logger.info(
            f"Coins redeemed: holder {holder_id} -{amount} {config.coin_name} "
            f"merchant {config.merchant_id}. Balance: {result.balance.current_balance}"
        )
        return result

    def refund(
        self,
        holder_id: str,
        merchant_id: str,
        amount,
        order_id: str = None,
        description: str = None
    ) -> LedgerResult:
        """
        Return spent coins to a holder (e.g. cancelled order).

        Reduces total_spent by the refunded amount. With an order_id, the
        refund cannot exceed what was spent on that order less earlier
        refunds for it. The refunded coins form a new lot that expires
        after the program's coins_expire_days.

        Raises:
            ValidationError: Refund larger than what was spent
            MerchantNotFoundError, NoBalanceError, PersistenceError
        """
        amount = positive_amount(amount)
        holder_id = self._holder(holder_id)
        config = self.configs.get(merchant_id)

        def plan(balance: CoinBalance, now: datetime):
            spent = Decimal(balance.total_spent)
            if amount > spent:
                raise ValidationError(
                    f'Refund of {amount} exceeds coins spent ({spent})', 'amount'
                )
            if order_id:
                refundable = self._refundable_for_order(balance.id, order_id)
                if amount > refundable:
                    raise ValidationError(
                        f'Refund of {amount} exceeds refundable coins for order {order_id} ({refundable})',
                        'amount'
                    )

            before = Decimal(balance.current_balance)
            after = before + amount
            changes = {
                'total_spent': spent - amount,
                'current_balance': after,
            }
            transaction = CoinTransaction(
                balance_id=balance.id,
                holder_id=holder_id,
                merchant_config_id=config.id,
                type=CoinTransactionType.REFUND.value,
                amount=amount,
                balance_before=before,
                balance_after=after,
                description=description or (f'Refund for order {order_id}' if order_id else 'Coins refunded'),
                order_id=order_id,
                remaining_amount=amount,
                expires_at=now + timedelta(days=config.coins_expire_days),
                created_at=now,
            )
            return changes, transaction

        result = self._mutate(holder_id, config, plan)

        logger.info(
            f"Coins refunded: holder {holder_id} +{amount} {config.coin_name} "
            f"merchant {config.merchant_id}. Balance: {result.balance.current_balance}"
        )
        return result

    def expire_due(self, now: datetime = None, merchant_id: str = None) -> Dict[str, Any]:
        """
        Expire every coin lot whose expires_at has passed.

        Should be run periodically (e.g. daily cron job). Writes one
        'expired' transaction per lot and moves the coins to total_expired.

        Args:
            now: Cutoff (defaults to utcnow)
            merchant_id: Restrict to one merchant's program

        Returns:
            Dict with expiration results
        """
        cutoff = now or datetime.utcnow()

        query = self._due_lots(cutoff, merchant_id).with_entities(CoinTransaction.balance_id)
        balance_ids = sorted({row.balance_id for row in query.distinct().all()})

        results = {
            'balances_processed': 0,
            'transactions_created': 0,
            'total_expired': ZERO,
            'errors': []
        }

        for balance_id in balance_ids:
            try:
                expired, created = self._expire_balance(balance_id, cutoff)
            except CoinLedgerError as e:
                results['errors'].append({'balance_id': balance_id, 'error': e.message})
                continue

            if expired > ZERO:
                results['balances_processed'] += 1
                results['transactions_created'] += created
                results['total_expired'] += expired

        logger.info(
            f"Coin expiration completed: {results['total_expired']} coins expired "
            f"across {results['balances_processed']} balances"
        )

        return {
            'success': len(results['errors']) == 0,
            **results
        }

    def due_for_expiry(self, now: datetime = None, merchant_id: str = None) -> Dict[str, Any]:
        """Preview what expire_due would expire, without writing anything."""
        cutoff = now or datetime.utcnow()
        lots, balances, coins = self._due_lots(cutoff, merchant_id).with_entities(
            func.count(CoinTransaction.id),
            func.count(func.distinct(CoinTransaction.balance_id)),
            func.coalesce(func.sum(CoinTransaction.remaining_amount), 0),
        ).one()
        return {
            'lots': lots,
            'balances': balances,
            'total_coins': quantize(to_decimal(coins)),
            'as_of': cutoff,
        }

    # ==================== Internals ====================

    def _due_lots(self, cutoff: datetime, merchant_id: str = None):
        query = self.session.query(CoinTransaction).filter(
            CoinTransaction.amount > 0,
            CoinTransaction.expires_at.isnot(None),
            CoinTransaction.expires_at <= cutoff,
            CoinTransaction.remaining_amount > 0,
            CoinTransaction.expiry_processed.is_(False),
        )
        if merchant_id:
            config = self.configs.get(merchant_id)
            query = query.filter(CoinTransaction.merchant_config_id == config.id)
        return query

    def _mutate(
        self,
        holder_id: str,
        config: CoinConfig,
        plan: Plan,
        create_balance: bool = False,
        after_write: Callable[[CoinBalance, CoinTransaction], Any] = None,
        idempotency_key: str = None
    ) -> LedgerResult:
        """
        Run read -> plan -> conditional update -> insert -> commit, retrying
        when a concurrent writer wins the conditional update.
        """
        balance = None
        try:
            for attempt in range(1, self.max_retries + 1):
                balance = self._load_balance(holder_id, config, create=create_balance)
                if balance is None:
                    raise NoBalanceError(holder_id, config.merchant_id)

                previous_tier = balance.current_tier
                now = datetime.utcnow()
                changes, transaction = plan(balance, now)

                if not self._compare_and_swap(balance, changes, now):
                    logger.warning(
                        f"Concurrent update on balance {balance.id} "
                        f"(attempt {attempt}/{self.max_retries}), retrying"
                    )
                    continue

                self.session.add(transaction)
                self.session.flush()
                self.session.refresh(balance)

                if after_write:
                    after_write(balance, transaction)

                self.session.commit()
                return LedgerResult(transaction, balance, previous_tier=previous_tier)

            raise ConcurrentUpdateError(balance.id if balance else None, self.max_retries)

        except IntegrityError as e:
            self.session.rollback()
            if idempotency_key:
                existing = self._find_by_key(config.id, idempotency_key)
                if existing:
                    return self._duplicate_result(existing, holder_id)
            logger.error(f"Ledger integrity error for holder {holder_id} merchant {config.merchant_id}: {e}")
            raise PersistenceError('Coin ledger write rejected by the database', e)
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Ledger write failed for holder {holder_id} merchant {config.merchant_id}: {e}")
            raise PersistenceError('Coin ledger write failed', e)
        except CoinLedgerError:
            self.session.rollback()
            raise

    def _compare_and_swap(self, balance: CoinBalance, changes: Dict[str, Any], now: datetime) -> bool:
        """Apply changes only if nobody bumped the version since we read it."""
        result = self.session.execute(
            update(CoinBalance)
            .where(
                CoinBalance.id == balance.id,
                CoinBalance.version == balance.version,
            )
            .values(version=balance.version + 1, updated_at=now, **changes)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _fetch_balance(self, holder_id: str, merchant_config_id: int) -> Optional[CoinBalance]:
        return (
            self.session.query(CoinBalance)
            .filter_by(holder_id=str(holder_id), merchant_config_id=merchant_config_id)
            .populate_existing()
            .first()
        )

    def _load_balance(self, holder_id: str, config: CoinConfig, create: bool = False) -> Optional[CoinBalance]:
        """Read the balance fresh from the database, creating it if asked."""
        balance = self._fetch_balance(holder_id, config.id)
        if balance is not None or not create:
            return balance

        balance = CoinBalance(
            holder_id=holder_id,
            merchant_config_id=config.id,
            total_earned=ZERO,
            total_spent=ZERO,
            total_expired=ZERO,
            current_balance=ZERO,
            current_tier=DEFAULT_TIER,
            tier_progress=0,
            lifetime_purchases=0,
            lifetime_spent=ZERO,
            version=0,
        )
        self.session.add(balance)
        try:
            self.session.flush()
        except IntegrityError:
            # Another writer created the row first; nothing of ours is pending yet
            self.session.rollback()
            balance = self._fetch_balance(holder_id, config.id)
        else:
            logger.info(f"Coin balance created: holder {holder_id} merchant {config.merchant_id}")
        return balance

    def _consume_lots(self, balance_id: int, amount: Decimal) -> Decimal:
        """
        Draw down remaining_amount on positive lots, soonest-expiring first.

        Returns the amount consumed (less than requested only if the lots
        and the balance have drifted apart).
        """
        lots = (
            self.session.query(CoinTransaction)
            .filter(
                CoinTransaction.balance_id == balance_id,
                CoinTransaction.remaining_amount > 0,
            )
            .order_by(
                CoinTransaction.expires_at.is_(None),
                CoinTransaction.expires_at.asc(),
                CoinTransaction.created_at.asc(),
                CoinTransaction.id.asc(),
            )
            .populate_existing()
            .all()
        )

        to_consume = amount
        for lot in lots:
            if to_consume <= ZERO:
                break
            available = Decimal(lot.remaining_amount)
            take = min(available, to_consume)
            lot.remaining_amount = available - take
            to_consume -= take

        if to_consume > ZERO:
            logger.warning(f"Balance {balance_id}: lots short by {to_consume} coins while consuming {amount}")

        self.session.flush()
        return amount - to_consume

    def _expire_balance(self, balance_id: int, cutoff: datetime) -> Tuple[Decimal, int]:
        """Expire the due lots of one balance. Returns (coins expired, rows written)."""
        try:
            for attempt in range(1, self.max_retries + 1):
                balance = (
                    self.session.query(CoinBalance)
                    .filter_by(id=balance_id)
                    .populate_existing()
                    .first()
                )
                if balance is None:
                    return ZERO, 0

                lots = (
                    self._due_lots(cutoff)
                    .filter(CoinTransaction.balance_id == balance_id)
                    .order_by(CoinTransaction.expires_at.asc(), CoinTransaction.id.asc())
                    .populate_existing()
                    .all()
                )

                running = Decimal(balance.current_balance)
                entries = []
                for lot in lots:
                    portion = min(Decimal(lot.remaining_amount), running)
                    if portion > ZERO:
                        entries.append((lot, portion, running, running - portion))
                        running -= portion

                total = Decimal(balance.current_balance) - running
                now = datetime.utcnow()

                if total > ZERO:
                    changes = {
                        'total_expired': Decimal(balance.total_expired) + total,
                        'current_balance': running,
                    }
                    if not self._compare_and_swap(balance, changes, now):
                        logger.warning(
                            f"Concurrent update on balance {balance_id} during expiry "
                            f"(attempt {attempt}/{self.max_retries}), retrying"
                        )
                        continue

                for lot, portion, before, after in entries:
                    self.session.add(CoinTransaction(
                        balance_id=balance.id,
                        holder_id=balance.holder_id,
                        merchant_config_id=balance.merchant_config_id,
                        type=CoinTransactionType.EXPIRED.value,
                        amount=-portion,
                        balance_before=before,
                        balance_after=after,
                        description=(
                            f'Coins expired (earned {lot.created_at.strftime("%Y-%m-%d")})'
                            if lot.created_at else 'Coins expired'
                        ),
                        related_transaction_id=lot.id,
                        remaining_amount=ZERO,
                        created_at=now,
                    ))

                for lot in lots:
                    lot.remaining_amount = ZERO
                    lot.expiry_processed = True

                self.session.commit()

                if total > ZERO:
                    logger.info(
                        f"Expired {total} coins from {len(entries)} lots for holder "
                        f"{balance.holder_id} (balance {balance_id})"
                    )
                return total, len(entries)

            raise ConcurrentUpdateError(balance_id, self.max_retries)

        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error(f"Failed to expire coins for balance {balance_id}: {e}")
            raise PersistenceError('Coin expiry failed', e)
        except CoinLedgerError:
            self.session.rollback()
            raise

    def _refundable_for_order(self, balance_id: int, order_id: str) -> Decimal:
        spent, refunded = (
            self.session.query(
                func.coalesce(func.sum(case(
                    (CoinTransaction.type == CoinTransactionType.SPENT.value, CoinTransaction.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (CoinTransaction.type == CoinTransactionType.REFUND.value, CoinTransaction.amount),
                    else_=0,
                )), 0),
            )
            .filter(
                CoinTransaction.balance_id == balance_id,
                CoinTransaction.order_id == str(order_id),
            )
            .one()
        )
        return max(ZERO, quantize(-to_decimal(spent) - to_decimal(refunded)))

    def _find_by_key(self, merchant_config_id: int, idempotency_key: str) -> Optional[CoinTransaction]:
        return (
            self.session.query(CoinTransaction)
            .filter_by(merchant_config_id=merchant_config_id, idempotency_key=str(idempotency_key))
            .first()
        )

    def _duplicate_result(self, existing: CoinTransaction, holder_id: str) -> LedgerResult:
        if existing.holder_id != holder_id:
            raise DuplicateError('Coin transaction', f'idempotency key {existing.idempotency_key}')
        balance = self.session.get(CoinBalance, existing.balance_id)
        self.session.refresh(balance)
        logger.info(
            f"Duplicate award ignored: key {existing.idempotency_key} already applied "
            f"as transaction {existing.id}"
        )
        return LedgerResult(existing, balance, duplicate=True)

    def _check_checkout_rules(self, config: CoinConfig, amount: Decimal, purchase: Decimal) -> None:
        if amount < Decimal(config.min_redemption):
            raise ValidationError(
                f'Minimum redemption is {config.min_redemption} {config.coin_name}', 'amount'
            )
        if config.max_redemption_per_visit is not None and amount > Decimal(config.max_redemption_per_visit):
            raise ValidationError(
                f'Maximum redemption per visit is {config.max_redemption_per_visit} {config.coin_name}',
                'amount'
            )
        value = amount * Decimal(config.redemption_rate)
        cap = purchase * Decimal(config.max_redemption_pct) / Decimal('100')
        if value > cap:
            raise ValidationError(
                f'Coins can cover at most {config.max_redemption_pct}% of the purchase', 'amount'
            )

    @staticmethod
    def _optional_purchase(purchase_amount) -> Optional[Decimal]:
        if purchase_amount is None:
            return None
        purchase = quantize(to_decimal(purchase_amount, 'purchase_amount'))
        if purchase < ZERO:
            raise ValidationError('purchase_amount cannot be negative', 'purchase_amount')
        return purchase

    @staticmethod
    def _holder(holder_id) -> str:
        if holder_id is None or not str(holder_id).strip():
            raise ValidationError('holder_id is required', 'holder_id')
        return str(holder_id).strip()
