"""
CLI Commands for coin maintenance.

These commands can be run manually or via cron jobs:

# Coin expiration (run daily at midnight)
0 0 * * * cd /app && flask coins expire

# Install the default tier ladder for a new merchant
flask coins seed-tiers --merchant-id=seller-42
"""
import click
from flask import current_app
from flask.cli import with_appcontext

from ..extensions import db
from ..services.ledger_service import CoinLedger
from ..utils.exceptions import CoinLedgerError, NotFoundError


@click.group('coins')
def coins_cli():
    """Coin ledger maintenance commands."""
    pass


def _ledger() -> CoinLedger:
    return CoinLedger(db.session, max_retries=current_app.config.get('LEDGER_CAS_RETRIES', 3))


@coins_cli.command('expire')
@click.option('--merchant-id', help='Specific merchant (or all if not specified)')
@click.option('--dry-run', is_flag=True, help='Preview without expiring coins')
@with_appcontext
def expire_coins(merchant_id, dry_run):
    """
    Expire coins that have passed their expiration date.

    Run this daily.
    """
    ledger = _ledger()
    scope = f"merchant {merchant_id}" if merchant_id else "all merchants"

    try:
        if dry_run:
            preview = ledger.due_for_expiry(merchant_id=merchant_id)
            click.echo(f"\n[DRY RUN] Coins due to expire for {scope}:")
            click.echo(f"  Lots: {preview['lots']}")
            click.echo(f"  Balances affected: {preview['balances']}")
            click.echo(f"  Total coins: {preview['total_coins']:.2f}")
            return

        result = ledger.expire_due(merchant_id=merchant_id)
    except NotFoundError as e:
        raise click.ClickException(e.message)

    click.echo(f"\nExpired coins for {scope}:")
    click.echo(f"  Balances processed: {result['balances_processed']}")
    click.echo(f"  Transactions created: {result['transactions_created']}")
    click.echo(f"  Total expired: {result['total_expired']:.2f}")

    if result['errors']:
        click.echo(f"  Errors: {len(result['errors'])}")
        for error in result['errors'][:5]:
            click.echo(f"    - Balance {error['balance_id']}: {error['error']}")


@coins_cli.command('seed-tiers')
@click.option('--merchant-id', required=True, help='Merchant ID')
@with_appcontext
def seed_tiers(merchant_id):
    """
    Install the default bronze/silver/gold/platinum ladder.

    Does nothing if the merchant already has tiers.
    """
    ledger = _ledger()
    try:
        tiers = ledger.configs.seed_default_tiers(merchant_id)
    except CoinLedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"\nTiers for merchant {merchant_id}:")
    for tier in tiers:
        click.echo(
            f"  {tier.tier_level}. {tier.tier_name}: {tier.min_coins_earned} coins, "
            f"{tier.min_purchases} purchases, {tier.min_total_spent} spent "
            f"({tier.earn_multiplier}x)"
        )


@coins_cli.command('stats')
@click.option('--merchant-id', required=True, help='Merchant ID')
@with_appcontext
def program_stats(merchant_id):
    """
    Show coin program statistics.
    """
    try:
        stats = _ledger().program_stats(merchant_id)
    except CoinLedgerError as e:
        raise click.ClickException(e.message)

    click.echo(f"\n{stats['coin_name']} stats for merchant {merchant_id}:")
    click.echo(f"  Holders: {stats['holders']}")
    click.echo(f"  Earned: {stats['total_earned']:.2f}")
    click.echo(f"  Spent: {stats['total_spent']:.2f}")
    click.echo(f"  Expired: {stats['total_expired']:.2f}")
    click.echo(f"  Outstanding: {stats['outstanding']:.2f} (value {stats['outstanding_value']:.2f})")

    if stats['tiers']:
        click.echo(f"\n  Tiers:")
        for tier, count in sorted(stats['tiers'].items()):
            click.echo(f"    {tier}: {count}")


def init_app(app):
    """Register CLI commands with the Flask app."""
    app.cli.add_command(coins_cli)
