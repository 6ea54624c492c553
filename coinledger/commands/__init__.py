"""
CLI Commands for the coin ledger.

Usage:
    flask coins expire                            # Expire due coins, all merchants
    flask coins expire --merchant-id seller-42    # One merchant
    flask coins expire --dry-run                  # Preview only
    flask coins seed-tiers --merchant-id seller-42
    flask coins stats --merchant-id seller-42
"""
from .coins import init_app as init_coin_commands


def init_app(app):
    """Register all CLI commands with the Flask app."""
    init_coin_commands(app)
