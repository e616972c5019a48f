"""
Tuition Kernel - installment billing ledger

Keeps four balances moving together for every billing mutation:
- Student debt
- Cash register money-on-hand
- Payment plan installment schedule and aggregates
- Auto-generated commission / VAT / refund-audit expenses
"""

__version__ = "0.1.0"
