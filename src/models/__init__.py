"""
Models package - Data models for the custody engine.

Contains:
- Account: Wallet account identified by its canonical address
- SignableTransaction: Transient transaction awaiting a signature
"""

from .account import Account, normalize_address, ADDRESS_SIZE
from .transaction import SignableTransaction

__all__ = [
    "Account",
    "normalize_address",
    "ADDRESS_SIZE",
    "SignableTransaction",
]
