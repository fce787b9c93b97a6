"""
Installment Book

Back office for a loan-collection business: daily, monthly and fixed-target
loans kept in physical collection files, a one-entry-per-day payment ledger,
and the arrears calculator that tells the cashier what each borrower owes.
"""

__version__ = "1.0.0"
