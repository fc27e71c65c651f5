"""
SACCO Ledger Engine

Loan and transaction ledger for a savings-and-credit cooperative: vetted
balance mutations, loan lifecycle with guarantors, flat monthly interest,
and periodic welfare / overdue-interest batch jobs. All money is Decimal.
"""

__version__ = "1.0.0"
