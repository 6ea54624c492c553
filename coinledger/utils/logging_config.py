"""
Logging configuration for the coin ledger.

Configures the root logger once per process. Modules obtain loggers with
logging.getLogger(__name__). Services use module loggers so they behave the
same inside and outside an app context.
"""
import logging
import os
import sys

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

_configured = False


def setup_logging(level: str = None) -> None:
    """
    Configure root logging to stdout.

    Args:
        level: Log level name; defaults to LOG_LEVEL env var or INFO
    """
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv('LOG_LEVEL', 'INFO')).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )

    # SQL echo is noisy; only show it when explicitly debugging
    logging.getLogger('sqlalchemy.engine').setLevel(
        logging.INFO if os.getenv('SQL_DEBUG') == 'true' else logging.WARNING
    )
    _configured = True
