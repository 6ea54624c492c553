"""
Coin Ledger API.

Handles:
- Awarding, redeeming and refunding coins
- Balance, history and portfolio queries
- Manual tier re-evaluation
"""
from datetime import datetime
from flask import Blueprint, request, jsonify, current_app

from ..extensions import db
from ..services.config_service import redemption_value
from ..services.ledger_service import CoinLedger
from ..services.tier_service import TierEvaluator, next_tier
from ..services.transaction_log import TransactionLog
from ..utils.exceptions import NoBalanceError, ValidationError
from ..models.transaction import CoinTransactionType

coins_bp = Blueprint('coins', __name__)


def get_ledger() -> CoinLedger:
    return CoinLedger(db.session, max_retries=current_app.config.get('LEDGER_CAS_RETRIES', 3))


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _require(data: dict, *fields):
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f'{field} is required', field)
    return [data[field] for field in fields]


# ==============================================================================
# MUTATIONS
# ==============================================================================

@coins_bp.route('/award', methods=['POST'])
def award_coins():
    """
    Award coins to a holder.

    Request body:
    {
        "holder_id": "user-1",
        "merchant_id": "seller-42",
        "amount": 50,
        "type": "earned",               # earned, bonus, donation_reward, crowdfund
        "description": "Order #1001",   # optional
        "order_id": "1001",             # optional
        "donation_id": null,            # optional
        "expires_in_days": 90,          # optional, defaults to program setting
        "purchase_amount": 25.00,       # optional, counts toward tier stats
        "idempotency_key": "order-1001" # optional (or Idempotency-Key header)
    }

    Returns 201 when written, 200 when the idempotency key was already used.
    """
    data = _json_body()
    holder_id, merchant_id, amount = _require(data, 'holder_id', 'merchant_id', 'amount')

    result = get_ledger().award(
        holder_id,
        merchant_id,
        amount,
        transaction_type=data.get('type', CoinTransactionType.EARNED.value),
        description=data.get('description'),
        order_id=data.get('order_id'),
        donation_id=data.get('donation_id'),
        expires_in_days=data.get('expires_in_days'),
        idempotency_key=data.get('idempotency_key') or request.headers.get('Idempotency-Key'),
        purchase_amount=data.get('purchase_amount'),
    )

    return jsonify(result.to_dict()), 200 if result.duplicate else 201


@coins_bp.route('/earn', methods=['POST'])
def earn_for_purchase():
    """
    Award the coins a purchase earns at the holder's tier multiplier.

    Request body:
    {
        "holder_id": "user-1",
        "merchant_id": "seller-42",
        "purchase_amount": 80.00,
        "order_id": "1001",              # optional
        "idempotency_key": "order-1001"  # optional
    }
    """
    data = _json_body()
    holder_id, merchant_id, purchase_amount = _require(data, 'holder_id', 'merchant_id', 'purchase_amount')

    result = get_ledger().award_for_purchase(
        holder_id,
        merchant_id,
        purchase_amount,
        order_id=data.get('order_id'),
        idempotency_key=data.get('idempotency_key') or request.headers.get('Idempotency-Key'),
    )

    if result is None:
        return jsonify({'success': True, 'coins_earned': 0, 'transaction': None}), 200

    body = result.to_dict()
    body['coins_earned'] = body['transaction']['amount']
    return jsonify(body), 200 if result.duplicate else 201


@coins_bp.route('/redeem', methods=['POST'])
def redeem_coins():
    """
    Redeem coins from a holder's balance.

    Request body:
    {
        "holder_id": "user-1",
        "merchant_id": "seller-42",
        "amount": 20,
        "order_id": "1002",         # optional
        "description": "...",       # optional
        "purchase_amount": 40.00    # optional, enables checkout limits
    }

    Returns 422 when the balance does not cover the amount.
    """
    data = _json_body()
    holder_id, merchant_id, amount = _require(data, 'holder_id', 'merchant_id', 'amount')

    ledger = get_ledger()
    result = ledger.redeem(
        holder_id,
        merchant_id,
        amount,
        order_id=data.get('order_id'),
        description=data.get('description'),
        purchase_amount=data.get('purchase_amount'),
    )

    body = result.to_dict()
    config = ledger.configs.get(merchant_id)
    body['redemption_value'] = float(redemption_value(config, abs(result.transaction.amount)))
    return jsonify(body)


@coins_bp.route('/refund', methods=['POST'])
def refund_coins():
    """
    Return spent coins to a holder.

    Request body:
    {
        "holder_id": "user-1",
        "merchant_id": "seller-42",
        "amount": 20,
        "order_id": "1002",     # optional, caps refund at coins spent on it
        "description": "..."    # optional
    }
    """
    data = _json_body()
    holder_id, merchant_id, amount = _require(data, 'holder_id', 'merchant_id', 'amount')

    result = get_ledger().refund(
        holder_id,
        merchant_id,
        amount,
        order_id=data.get('order_id'),
        description=data.get('description'),
    )
    return jsonify(result.to_dict())


@coins_bp.route('/evaluate-tier', methods=['POST'])
def evaluate_tier():
    """Re-evaluate a holder's tier with a merchant."""
    data = _json_body()
    holder_id, merchant_id = _require(data, 'holder_id', 'merchant_id')

    tier = TierEvaluator(db.session).evaluate(holder_id, merchant_id)
    balance = get_ledger().get_balance(holder_id, merchant_id)

    return jsonify({
        'holder_id': holder_id,
        'merchant_id': merchant_id,
        'tier': tier,
        'tier_progress': balance.tier_progress if balance else 0,
    })


# ==============================================================================
# QUERIES
# ==============================================================================

@coins_bp.route('/balance', methods=['GET'])
def get_balance():
    """
    Get a holder's balance with one merchant.

    Query params:
        holder_id: Coin holder (required)
        merchant_id: Merchant (required)
    """
    holder_id, merchant_id = _require(request.args, 'holder_id', 'merchant_id')

    ledger = get_ledger()
    config = ledger.configs.get(merchant_id)
    balance = ledger.get_balance(holder_id, merchant_id)
    if not balance:
        raise NoBalanceError(holder_id, merchant_id)

    upcoming = next_tier(balance, ledger.configs.tiers_for_config(config.id))

    return jsonify({
        'balance': balance.to_dict(),
        'coin_name': config.coin_name,
        'coin_symbol': config.coin_symbol,
        'redemption_value': float(redemption_value(config, balance.current_balance)),
        'next_tier': upcoming.to_dict() if upcoming else None,
        'as_of': datetime.utcnow().isoformat()
    })


@coins_bp.route('/history', methods=['GET'])
def get_history():
    """
    Get a holder's transaction history with one merchant, newest first.

    Query params:
        holder_id: Coin holder (required)
        merchant_id: Merchant (required)
        limit: Max rows (default DEFAULT_HISTORY_LIMIT, capped at MAX_HISTORY_LIMIT)
        offset: Rows to skip (default 0)
        type: Filter by transaction type
    """
    holder_id, merchant_id = _require(request.args, 'holder_id', 'merchant_id')

    limit = request.args.get('limit', current_app.config.get('DEFAULT_HISTORY_LIMIT', 50), type=int)
    offset = request.args.get('offset', 0, type=int)
    transaction_type = request.args.get('type')

    log = TransactionLog(db.session, max_limit=current_app.config.get('MAX_HISTORY_LIMIT', 200))
    transactions = log.history(holder_id, merchant_id, limit, offset, transaction_type)
    total = log.count(holder_id, merchant_id, transaction_type)

    return jsonify({
        'transactions': [t.to_dict() for t in transactions],
        'pagination': {
            'limit': min(limit, log.max_limit),
            'offset': offset,
            'total': total,
            'has_more': offset + len(transactions) < total
        }
    })


@coins_bp.route('/portfolio', methods=['GET'])
def get_portfolio():
    """
    Get every non-empty balance a holder has across merchants.

    Query params:
        holder_id: Coin holder (required)
    """
    holder_id, = _require(request.args, 'holder_id')

    ledger = get_ledger()
    entries = []
    for balance, config in ledger.get_portfolio(holder_id):
        entries.append({
            'merchant_id': config.merchant_id,
            'business_name': config.business_name,
            'coin_name': config.coin_name,
            'coin_symbol': config.coin_symbol,
            'brand_color': config.brand_color,
            'balance': float(balance.current_balance),
            'tier': balance.current_tier,
            'value': float(redemption_value(config, balance.current_balance)),
        })

    return jsonify({
        'holder_id': holder_id,
        'balances': entries,
        'total_value': float(ledger.portfolio_value(holder_id))
    })
