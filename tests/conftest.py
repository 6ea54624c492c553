"""
Shared pytest fixtures for the coin ledger.

Every test gets a fresh in-memory SQLite database inside a pushed app
context, so fixtures and the code under test share one session.
"""
import pytest

from coinledger import create_app
from coinledger.extensions import db
from coinledger.services.config_service import CoinConfigService
from coinledger.services.ledger_service import CoinLedger


@pytest.fixture
def app():
    """Create application for testing."""
    app = create_app('testing')

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """Create CLI runner."""
    return app.test_cli_runner()


@pytest.fixture
def config_service(app):
    return CoinConfigService(db.session)


@pytest.fixture
def sample_config(config_service):
    """A merchant program with default economics and custom branding."""
    return config_service.configure('seller-42', {
        'coin_name': 'Beans',
        'coin_symbol': 'B',
        'business_name': 'Corner Coffee',
    })


@pytest.fixture
def sample_tiers(config_service, sample_config):
    """A small three-tier ladder keyed on all three thresholds."""
    return config_service.set_tiers('seller-42', [
        {'tier_name': 'Bronze', 'tier_level': 1},
        {
            'tier_name': 'Silver', 'tier_level': 2,
            'min_coins_earned': 100, 'min_purchases': 2, 'min_total_spent': 20,
            'earn_multiplier': '1.5',
        },
        {
            'tier_name': 'Gold', 'tier_level': 3,
            'min_coins_earned': 500, 'min_purchases': 5, 'min_total_spent': 100,
            'earn_multiplier': '2.0',
        },
    ])


@pytest.fixture
def ledger(app):
    """Ledger bound to the test session."""
    return CoinLedger(db.session)
