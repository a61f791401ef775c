from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple

ACCOUNT_TYPES = ("cash", "bank", "credit", "investment")
TRANSACTION_TYPES = ("income", "expense")
BUDGET_PERIODS = ("weekly", "monthly", "yearly")
SPEND_PERIODS = ("week", "month", "year")

COLLECTIONS = ("accounts", "transactions", "budgets", "bills", "categories")


@dataclass(frozen=True)
class Account:
    id: str
    name: str
    type: str        # cash | bank | credit | investment
    balance: Decimal
    currency: str


@dataclass(frozen=True)
class Category:
    id: str
    name: str
    type: str        # income | expense
    icon: str = ""
    color: str = ""


@dataclass(frozen=True)
class Transaction:
    id: str
    account_id: str
    category_id: str
    amount: Decimal  # always positive, sign comes from type
    description: str
    date: str        # YYYY-MM-DD
    type: str
    created_at: str = ""

    @property
    def signed_amount(self) -> Decimal:
        return self.amount if self.type == "income" else -self.amount


@dataclass(frozen=True)
class Budget:
    id: str
    category_id: str
    amount: Decimal
    period: str      # weekly | monthly | yearly
    start_date: str
    end_date: str


@dataclass(frozen=True)
class Bill:
    id: str
    name: str
    amount: Decimal
    due_date: int    # day of month, 1-31
    account_id: str
    category_id: str
    is_active: bool = True
    last_paid_date: Optional[str] = None


@dataclass(frozen=True)
class User:
    id: str
    name: str
    email: str
    created_at: str


@dataclass(frozen=True)
class Snapshot:
    accounts: Tuple[Account, ...] = field(default_factory=tuple)
    categories: Tuple[Category, ...] = field(default_factory=tuple)
    transactions: Tuple[Transaction, ...] = field(default_factory=tuple)
    budgets: Tuple[Budget, ...] = field(default_factory=tuple)
    bills: Tuple[Bill, ...] = field(default_factory=tuple)


EMPTY_SNAPSHOT = Snapshot()
