"""
Persistence layer for the click ledger.
"""
