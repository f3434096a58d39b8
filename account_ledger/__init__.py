"""
Account Ledger Service

A banking-account ledger with typed accounts, exact Decimal arithmetic and
atomic, rule-checked money movements (deposit, withdraw, transfer).
"""

__version__ = "1.0.0"
