"""
Merchant coin program API.

Endpoints for configuring a merchant's coin program and tier ladder:
- Program settings (earn/redemption rates, expiry, branding)
- Tier ladder management
- Checkout quotes (coins earned, max redeemable)
"""
from flask import Blueprint, request, jsonify

from ..extensions import db
from ..services.config_service import (
    CoinConfigService,
    coins_for_purchase,
    max_redeemable_coins,
    redemption_value,
)
from ..utils.cache import cache, invalidate, DEFAULT_TIMEOUT
from ..utils.exceptions import ValidationError
from ..utils.money import to_decimal


merchants_bp = Blueprint('merchants', __name__)


@cache.memoize(timeout=DEFAULT_TIMEOUT)
def merchant_program(merchant_id):
    """Serialized program and ladder. Invalidated on every write."""
    service = CoinConfigService(db.session)
    config = service.get(merchant_id)
    data = config.to_dict()
    data['tiers'] = [tier.to_dict() for tier in service.tiers_for_config(config.id)]
    return data


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


# ==================== Program settings ====================

@merchants_bp.route('/<merchant_id>/config', methods=['GET'])
def get_config(merchant_id):
    """Get a merchant's coin program, including its tier ladder."""
    return jsonify({'config': merchant_program(merchant_id)})


@merchants_bp.route('/<merchant_id>/config', methods=['PUT'])
def put_config(merchant_id):
    """
    Create or update a merchant's coin program.

    Request body (all optional, unspecified fields keep defaults/stored values):
    {
        "coin_name": "Beans",
        "earn_rate": 2,
        "redemption_rate": 0.01,
        "min_redemption": 100,
        "max_redemption_pct": 50,
        "coins_expire_days": 365,
        "business_type": "marketplace_seller"
    }
    """
    settings = _json_body()
    service = CoinConfigService(db.session)
    is_new = service.find(merchant_id) is None

    config = service.configure(merchant_id, settings)
    invalidate(merchant_program, merchant_id)

    return jsonify({'success': True, 'created': is_new, 'config': config.to_dict()}), 201 if is_new else 200


# ==================== Tier ladder ====================

@merchants_bp.route('/<merchant_id>/tiers', methods=['GET'])
def get_tiers(merchant_id):
    tiers = CoinConfigService(db.session).get_tiers(merchant_id)
    return jsonify({'merchant_id': merchant_id, 'tiers': [t.to_dict() for t in tiers]})


@merchants_bp.route('/<merchant_id>/tiers', methods=['PUT'])
def put_tiers(merchant_id):
    """
    Replace a merchant's tier ladder.

    Request body:
    {
        "tiers": [
            {"tier_name": "Bronze", "tier_level": 1},
            {"tier_name": "Silver", "tier_level": 2, "min_coins_earned": 500,
             "min_purchases": 5, "min_total_spent": 50, "earn_multiplier": 1.25}
        ]
    }

    Or {"use_defaults": true} to install the standard four-tier ladder when
    none exists.
    """
    data = _json_body()
    service = CoinConfigService(db.session)

    if data.get('use_defaults'):
        tiers = service.seed_default_tiers(merchant_id)
    else:
        rows = data.get('tiers')
        if not isinstance(rows, list):
            raise ValidationError('tiers must be a list', 'tiers')
        if not all(isinstance(row, dict) for row in rows):
            raise ValidationError('Each tier must be an object', 'tiers')
        tiers = service.set_tiers(merchant_id, rows)

    invalidate(merchant_program, merchant_id)

    return jsonify({
        'success': True,
        'merchant_id': merchant_id,
        'tiers': [t.to_dict() for t in tiers]
    })


# ==================== Checkout quote ====================

@merchants_bp.route('/<merchant_id>/quote', methods=['GET'])
def quote(merchant_id):
    """
    Quote coins for a purchase.

    Query params:
        purchase_amount: Purchase total (required)
        available: Coins the holder has (optional, for max redeemable)
    """
    config = CoinConfigService(db.session).get(merchant_id)

    raw_purchase = request.args.get('purchase_amount')
    if raw_purchase is None:
        raise ValidationError('purchase_amount is required', 'purchase_amount')
    purchase = to_decimal(raw_purchase, 'purchase_amount')

    result = {
        'merchant_id': merchant_id,
        'purchase_amount': float(purchase),
        'coins_earned': float(coins_for_purchase(config, purchase)),
    }

    raw_available = request.args.get('available')
    if raw_available is not None:
        max_coins = max_redeemable_coins(config, purchase, to_decimal(raw_available, 'available'))
        result['max_redeemable'] = float(max_coins)
        result['max_redeemable_value'] = float(redemption_value(config, max_coins))

    return jsonify(result)
