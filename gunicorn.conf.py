"""
Gunicorn configuration for the coin ledger.

    gunicorn -c gunicorn.conf.py run:app
"""
import os

bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"

# Workers share nothing; balance updates are coordinated in the database
workers = int(os.getenv('GUNICORN_WORKERS', '2'))
worker_class = 'sync'
timeout = 60
keepalive = 5

# Logging
accesslog = '-'  # stdout
errorlog = '-'   # stderr
loglevel = os.getenv('LOG_LEVEL', 'info').lower()
capture_output = True

proc_name = 'coinledger'

preload_app = True

graceful_timeout = 30


def on_starting(server):
    server.log.info("Starting coin ledger server...")


def on_exit(server):
    server.log.info("Coin ledger server shutting down...")
