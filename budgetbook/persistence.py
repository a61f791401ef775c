"""Persistence adapter between domain objects and backend rows.

Rows use snake_case columns and carry the owner in ``user_id``; categories
are a shared table without an owner. Optional and numeric columns are
normalised here, once, so the domain never sees ``""`` or ``None`` for
amounts, nor ``""`` for a missing ``last_paid_date``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from budgetbook.backend import Backend, Row
from budgetbook.domain import Account, Bill, Budget, Category, Snapshot, Transaction
from budgetbook.errors import PersistenceError
from budgetbook.logging_setup import get_logger

logger = get_logger("budgetbook.persistence")


def _decimal(value: Any) -> Decimal:
    if value is None or value == "":
        return Decimal(0)
    return Decimal(str(value))


def _optional(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


# -- accounts

def account_values(account: Account) -> Row:
    return {
        "name": account.name,
        "type": account.type,
        "balance": account.balance,
        "currency": account.currency,
    }


def account_from_row(row: Row) -> Account:
    return Account(
        id=str(row["id"]),
        name=row["name"],
        type=row["type"],
        balance=_decimal(row.get("balance")),
        currency=row.get("currency") or "IDR",
    )


# -- categories

def category_from_row(row: Row) -> Category:
    return Category(
        id=str(row["id"]),
        name=row["name"],
        type=row["type"],
        icon=row.get("icon") or "",
        color=row.get("color") or "",
    )


# -- transactions

def transaction_from_row(row: Row) -> Transaction:
    return Transaction(
        id=str(row["id"]),
        account_id=str(row["account_id"]),
        category_id=str(row["category_id"]),
        amount=_decimal(row.get("amount")),
        description=row.get("description") or "",
        date=str(row["date"])[:10],
        type=row["type"],
        created_at=_optional(row.get("created_at")) or "",
    )


# -- budgets

def budget_from_row(row: Row) -> Budget:
    return Budget(
        id=str(row["id"]),
        category_id=str(row["category_id"]),
        amount=_decimal(row.get("amount")),
        period=row["period"],
        start_date=str(row["start_date"])[:10],
        end_date=str(row["end_date"])[:10],
    )


# -- bills

def bill_values(bill: Bill) -> Row:
    return {
        "name": bill.name,
        "amount": bill.amount,
        "due_date": bill.due_date,
        "account_id": bill.account_id,
        "category_id": bill.category_id,
        "is_active": bill.is_active,
        "last_paid_date": bill.last_paid_date,
    }


def bill_from_row(row: Row) -> Bill:
    return Bill(
        id=str(row["id"]),
        name=row["name"],
        amount=_decimal(row.get("amount")),
        due_date=int(row["due_date"]),
        account_id=str(row["account_id"]),
        category_id=str(row["category_id"]),
        is_active=bool(row.get("is_active", True)),
        last_paid_date=_optional(row.get("last_paid_date")),
    )


class Repository:
    """Async CRUD per entity over a ``Backend``.

    Backend calls are blocking, so each one runs in a worker thread. ``create_*``
    returns the entity as stored, with the identifier the backend assigned.
    Backend failures are logged and re-raised as ``PersistenceError``.
    """

    def __init__(self, backend: Backend):
        self.backend = backend

    async def _call(self, action: str, fn: Callable, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except PersistenceError as exc:
            logger.error("%s failed: %s", action, exc)
            raise

    async def _list(self, table: str, from_row: Callable[[Row], Any], **query) -> tuple:
        rows = await self._call(f"list {table}", self.backend.select, table, **query)
        return tuple(from_row(r) for r in rows)

    async def load_snapshot(self, owner_id: str) -> Snapshot:
        accounts, transactions, budgets, bills, categories = await asyncio.gather(
            self.list_accounts(owner_id),
            self.list_transactions(owner_id),
            self.list_budgets(owner_id),
            self.list_bills(owner_id),
            self.list_categories(),
        )
        return Snapshot(
            accounts=accounts,
            categories=categories,
            transactions=transactions,
            budgets=budgets,
            bills=bills,
        )

    async def list_accounts(self, owner_id: str) -> tuple[Account, ...]:
        return await self._list("accounts", account_from_row, user_id=owner_id)

    async def list_categories(self) -> tuple[Category, ...]:
        return await self._list("categories", category_from_row)

    async def list_transactions(self, owner_id: str) -> tuple[Transaction, ...]:
        return await self._list(
            "transactions", transaction_from_row,
            order_by=("date", "created_at"), descending=True, user_id=owner_id,
        )

    async def list_budgets(self, owner_id: str) -> tuple[Budget, ...]:
        return await self._list("budgets", budget_from_row, user_id=owner_id)

    async def list_bills(self, owner_id: str) -> tuple[Bill, ...]:
        return await self._list("bills", bill_from_row, user_id=owner_id)

    async def _create(self, table: str, from_row: Callable[[Row], Any], row: Row):
        created = await self._call(f"create {table}", self.backend.insert, table, row)
        return from_row(created)

    async def create_account(self, owner_id: str, fields: dict) -> Account:
        return await self._create("accounts", account_from_row, {"user_id": owner_id, **fields})

    async def create_category(self, fields: dict) -> Category:
        return await self._create("categories", category_from_row, dict(fields))

    async def create_transaction(self, owner_id: str, fields: dict) -> Transaction:
        row = {"user_id": owner_id, "created_at": utc_now(), **fields}
        return await self._create("transactions", transaction_from_row, row)

    async def create_budget(self, owner_id: str, fields: dict) -> Budget:
        return await self._create("budgets", budget_from_row, {"user_id": owner_id, **fields})

    async def create_bill(self, owner_id: str, fields: dict) -> Bill:
        return await self._create("bills", bill_from_row, {"user_id": owner_id, **fields})

    async def update_account(self, account: Account) -> None:
        await self._call(
            "update accounts", self.backend.update, "accounts", account.id, account_values(account)
        )

    async def update_bill(self, bill: Bill) -> None:
        await self._call("update bills", self.backend.update, "bills", bill.id, bill_values(bill))

    async def delete_account(self, account_id: str) -> None:
        await self._call("delete accounts", self.backend.delete, "accounts", account_id)

    async def delete_transaction(self, tx_id: str) -> None:
        await self._call("delete transactions", self.backend.delete, "transactions", tx_id)

    async def delete_bill(self, bill_id: str) -> None:
        await self._call("delete bills", self.backend.delete, "bills", bill_id)
