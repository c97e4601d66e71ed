"""
Click ledger package: the users and clicks relations and their operations.
"""

from .click_ledger import ClickLedger

__all__ = ["ClickLedger"]
