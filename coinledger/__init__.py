"""
Merchant Coin Ledger
Flask application factory
"""
import os
import logging
from flask import Flask
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from .extensions import db, migrate
from .config import get_config, validate_config
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def create_app(config_name: str = None, test_config: dict = None) -> Flask:
    """
    Application factory for creating Flask app instances.

    Args:
        config_name: Configuration environment (development, production, testing)
        test_config: Optional mapping applied on top of the config class

    Returns:
        Configured Flask application
    """
    if config_name is None:
        config_name = os.getenv('FLASK_ENV', 'development')

    # Setup logging before anything else
    setup_logging()

    validate_config(config_name)

    app = Flask(__name__)
    app.config.from_object(get_config(config_name))
    if test_config:
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Initialize caching (Redis with graceful fallback)
    from .utils.cache import init_cache
    init_cache(app)

    CORS(
        app,
        origins=app.config.get('CORS_ORIGINS', []),
        supports_credentials=True,
        allow_headers=['Content-Type', 'Authorization', 'Idempotency-Key']
    )

    # Register blueprints
    register_blueprints(app)

    # Register CLI commands
    from .commands import init_app as init_commands
    init_commands(app)

    # Register error handlers
    register_error_handlers(app)

    # Health check endpoint
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'service': 'coinledger'}

    logger.info(f'Coin ledger app created ({config_name})')
    return app


def register_blueprints(app: Flask) -> None:
    """Register all API blueprints."""
    from .api.merchants import merchants_bp
    from .api.coins import coins_bp

    # Merchant program and tier ladder routes
    app.register_blueprint(merchants_bp, url_prefix='/api/merchants')

    # Coin ledger routes
    app.register_blueprint(coins_bp, url_prefix='/api/coins')


def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from .utils.errors import ErrorCode, error_response, internal_error, ledger_error_response
    from .utils.exceptions import CoinLedgerError

    @app.errorhandler(CoinLedgerError)
    def coin_ledger_error(error):
        return ledger_error_response(error)

    @app.errorhandler(HTTPException)
    def http_error(error):
        return error_response(
            error.description or error.name,
            ErrorCode.NOT_FOUND if error.code == 404 else ErrorCode.INVALID_REQUEST,
            error.code,
            log_error=False
        )

    @app.errorhandler(500)
    def server_error(error):
        return internal_error(details={'error': str(error)})
