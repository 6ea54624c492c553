"""
Cache for read-mostly merchant data.

Merchant program settings and tier ladders are read on every ledger call
but change rarely, so serialized copies are memoized with Flask-Caching.
Balances and transactions are never cached.

Backend selection:
    CACHE_TYPE already set  -> used as is (tests use NullCache)
    REDIS_URL reachable     -> RedisCache, keys prefixed 'coinledger:'
    otherwise               -> SimpleCache (per process)
"""
import os
import logging
from flask_caching import Cache

logger = logging.getLogger(__name__)

cache = Cache()

DEFAULT_TIMEOUT = 300  # 5 minutes
KEY_PREFIX = 'coinledger:'


def _redis_reachable(redis_url: str) -> bool:
    import redis

    try:
        redis.from_url(redis_url, socket_connect_timeout=2).ping()
    except redis.RedisError as e:
        logger.warning('[CoinLedger] Redis unavailable (%s), using simple cache', e)
        return False
    return True


def init_cache(app) -> str:
    """
    Bind the cache to the app.

    Returns:
        The CACHE_TYPE in use
    """
    app.config.setdefault('CACHE_DEFAULT_TIMEOUT', DEFAULT_TIMEOUT)

    if not app.config.get('CACHE_TYPE'):
        redis_url = os.getenv('REDIS_URL')
        if redis_url and _redis_reachable(redis_url):
            app.config['CACHE_TYPE'] = 'RedisCache'
            app.config['CACHE_REDIS_URL'] = redis_url
            app.config['CACHE_KEY_PREFIX'] = KEY_PREFIX
        else:
            app.config['CACHE_TYPE'] = 'SimpleCache'

    cache.init_app(app)
    logger.info('[CoinLedger] Cache backend: %s', app.config['CACHE_TYPE'])
    return app.config['CACHE_TYPE']


def invalidate(func, *args) -> None:
    """Drop a memoized result after the data behind it changed."""
    cache.delete_memoized(func, *args)
