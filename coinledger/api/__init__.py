"""
HTTP API blueprints for the coin ledger.
"""
