"""Personal finance bookkeeping: accounts, transactions, budgets and bills."""

__version__ = "0.1.0"
