"""Intent handlers: validate, persist, then apply the confirmed change.

``FinanceService`` is what UI code talks to. Every write intent follows the
same order:

1. validate the payload (``Left`` with ``validation_error``, nothing sent);
2. check references against the current snapshot (``Left`` with
   ``<kind>_not_found``);
3. await the repository; a ``PersistenceError`` propagates to the caller and
   the snapshot stays as it was;
4. persist any account balance the change moves, undoing the earlier remote
   steps if that fails;
5. apply the store transition with the confirmed entity, unless the service
   was closed meanwhile (``NotAuthenticatedError``; the store now belongs to
   another session).

Writes take per-collection locks in ``COLLECTIONS`` order, so changes are
confirmed in the order they were dispatched.
"""

import asyncio
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import replace
from datetime import date as date_cls
from typing import Any, Awaitable, Callable, Optional

from budgetbook import transforms as tf
from budgetbook import validation
from budgetbook.config import Settings
from budgetbook.domain import COLLECTIONS, Account, Bill, Snapshot, Transaction
from budgetbook.errors import NotAuthenticatedError, PersistenceError
from budgetbook.functional import (
    Either,
    Right,
    require,
    safe_account,
    safe_bill,
    safe_category,
    safe_transaction,
)
from budgetbook.logging_setup import get_logger
from budgetbook.persistence import Repository
from budgetbook.store import FinanceStore

logger = get_logger("budgetbook.services")

Undo = Callable[[], Awaitable[Any]]


class FinanceService:
    def __init__(
        self,
        store: FinanceStore,
        repository: Repository,
        owner_id: str,
        settings: Optional[Settings] = None,
    ):
        self.store = store
        self.repository = repository
        self.owner_id = owner_id
        self.settings = settings or Settings()
        self._locks = {name: asyncio.Lock() for name in COLLECTIONS}
        self._closed = False

    @property
    def snapshot(self) -> Snapshot:
        return self.store.snapshot

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """End this service's session; pending writes no longer reach the store."""
        self._closed = True

    def _ensure_open(self) -> None:
        if self._closed:
            logger.info("session of user %s ended; change not applied", self.owner_id)
            raise NotAuthenticatedError(f"session of user {self.owner_id} has ended")

    @asynccontextmanager
    async def _writing(self, *collections: str):
        async with AsyncExitStack() as stack:
            for name in sorted(collections, key=COLLECTIONS.index):
                await stack.enter_async_context(self._locks[name])
            yield

    async def _undo(self, steps: list[Undo]) -> None:
        for step in reversed(steps):
            try:
                await step()
            except PersistenceError as exc:
                logger.error("rollback step failed: %s", exc)

    async def _persist_balance(self, after: Snapshot, account_id: str, undo: list[Undo]) -> None:
        """Write the account balance found in ``after``; on failure run ``undo`` and re-raise."""
        account = safe_account(after, account_id).get_or_else(None)
        before = safe_account(self.snapshot, account_id).get_or_else(None)
        try:
            await self.repository.update_account(account)
        except PersistenceError:
            await self._undo(undo)
            raise
        undo.append(lambda: self.repository.update_account(before))

    def _warn_category_mismatch(self, category_id: str, tx_type: str) -> None:
        category = safe_category(self.snapshot, category_id).get_or_else(None)
        if category is None:
            logger.warning("transaction references unknown category %s", category_id)
        elif category.type != tx_type:
            logger.warning(
                "%s transaction filed under %s category %s", tx_type, category.type, category.name
            )

    async def refresh(self) -> Snapshot:
        snapshot = await self.repository.load_snapshot(self.owner_id)
        self._ensure_open()
        return self.store.replace_all(
            accounts=snapshot.accounts,
            categories=snapshot.categories,
            transactions=snapshot.transactions,
            budgets=snapshot.budgets,
            bills=snapshot.bills,
        )

    # -- accounts

    async def add_account(self, **fields) -> Either[dict, Account]:
        checked = validation.validate_account(fields, self.settings.currency)
        if checked.is_left():
            return checked
        async with self._writing("accounts"):
            account = await self.repository.create_account(
                self.owner_id, checked.get_or_else(None)
            )
            self._ensure_open()
            self.store.add_account(account)
        return Right(account)

    async def update_account(self, account: Account) -> Either[dict, Account]:
        checked = validation.validate_account(account.__dict__, self.settings.currency)
        if checked.is_left():
            return checked
        account = replace(account, **checked.get_or_else(None))
        async with self._writing("accounts"):
            found = require(safe_account(self.snapshot, account.id), "account", account.id)
            if found.is_left():
                return found
            await self.repository.update_account(account)
            self._ensure_open()
            self.store.update_account(account)
        return Right(account)

    async def delete_account(self, account_id: str) -> Either[dict, str]:
        async with self._writing("accounts"):
            await self.repository.delete_account(account_id)
            self._ensure_open()
            self.store.delete_account(account_id)
        return Right(account_id)

    async def adjust_balance(self, account_id: str, delta: Any) -> Either[dict, Account]:
        """Move a balance without recording a transaction."""
        amount = validation.to_decimal(delta)
        if amount is None:
            return validation.invalid("delta", f"delta is not a number: {delta!r}")
        async with self._writing("accounts"):
            result = tf.update_account_balance(self.snapshot, account_id, amount)
            if result.is_left():
                return result
            await self._persist_balance(result.get_or_else(None), account_id, [])
            self._ensure_open()
            self.store.update_account_balance(account_id, amount)
        return Right(safe_account(self.snapshot, account_id).get_or_else(None))

    # -- transactions

    async def add_transaction(self, **fields) -> Either[dict, Transaction]:
        checked = validation.validate_transaction(fields)
        if checked.is_left():
            return checked
        draft = checked.get_or_else(None)
        async with self._writing("accounts", "transactions"):
            found = require(
                safe_account(self.snapshot, draft["account_id"]), "account", draft["account_id"]
            )
            if found.is_left():
                return found
            self._warn_category_mismatch(draft["category_id"], draft["type"])

            tx = await self.repository.create_transaction(self.owner_id, draft)
            undo: list[Undo] = [lambda: self.repository.delete_transaction(tx.id)]
            after = tf.add_transaction(self.snapshot, tx).get_or_else(None)
            await self._persist_balance(after, tx.account_id, undo)
            self._ensure_open()
            self.store.add_transaction(tx)
        return Right(tx)

    async def delete_transaction(self, tx_id: str) -> Either[dict, str]:
        async with self._writing("accounts", "transactions"):
            tx = safe_transaction(self.snapshot, tx_id).get_or_else(None)
            if tx is None:
                return Right(tx_id)
            undo: list[Undo] = []
            after = tf.delete_transaction(self.snapshot, tx_id)
            if safe_account(after, tx.account_id).is_some():
                await self._persist_balance(after, tx.account_id, undo)
            try:
                await self.repository.delete_transaction(tx_id)
            except PersistenceError:
                await self._undo(undo)
                raise
            self._ensure_open()
            self.store.delete_transaction(tx_id)
        return Right(tx_id)

    # -- budgets and categories

    async def add_budget(self, **fields) -> Either[dict, Any]:
        checked = validation.validate_budget(fields)
        if checked.is_left():
            return checked
        draft = checked.get_or_else(None)
        async with self._writing("budgets"):
            found = require(
                safe_category(self.snapshot, draft["category_id"]), "category", draft["category_id"]
            )
            if found.is_left():
                return found
            budget = await self.repository.create_budget(self.owner_id, draft)
            self._ensure_open()
            self.store.add_budget(budget)
        return Right(budget)

    async def add_category(self, **fields) -> Either[dict, Any]:
        checked = validation.validate_category(fields)
        if checked.is_left():
            return checked
        async with self._writing("categories"):
            category = await self.repository.create_category(checked.get_or_else(None))
            self._ensure_open()
            self.store.add_category(category)
        return Right(category)

    # -- bills

    def _check_bill_refs(self, draft: dict) -> Either[dict, dict]:
        return (
            require(safe_account(self.snapshot, draft["account_id"]), "account", draft["account_id"])
            .bind(lambda _: require(
                safe_category(self.snapshot, draft["category_id"]), "category", draft["category_id"]
            ))
            .map(lambda _: draft)
        )

    async def add_bill(self, **fields) -> Either[dict, Bill]:
        checked = validation.validate_bill(fields)
        if checked.is_left():
            return checked
        async with self._writing("bills"):
            refs = self._check_bill_refs(checked.get_or_else(None))
            if refs.is_left():
                return refs
            bill = await self.repository.create_bill(self.owner_id, refs.get_or_else(None))
            self._ensure_open()
            self.store.add_bill(bill)
        return Right(bill)

    async def update_bill(self, bill: Bill) -> Either[dict, Bill]:
        checked = validation.validate_bill(bill.__dict__)
        if checked.is_left():
            return checked
        bill = replace(bill, **checked.get_or_else(None))
        async with self._writing("bills"):
            found = require(safe_bill(self.snapshot, bill.id), "bill", bill.id)
            if found.is_left():
                return found
            await self.repository.update_bill(bill)
            self._ensure_open()
            self.store.update_bill(bill)
        return Right(bill)

    async def delete_bill(self, bill_id: str) -> Either[dict, str]:
        async with self._writing("bills"):
            await self.repository.delete_bill(bill_id)
            self._ensure_open()
            self.store.delete_bill(bill_id)
        return Right(bill_id)

    async def pay_bill(self, bill_id: str, date: Optional[str] = None) -> Either[dict, Transaction]:
        """Record the bill's payment transaction and mark it paid on ``date``."""
        paid_on = validation.to_iso_date(date or date_cls.today())
        if paid_on is None:
            return validation.invalid("date", f"Invalid date: {date!r}")
        async with self._writing("accounts", "transactions", "bills"):
            found = require(safe_bill(self.snapshot, bill_id), "bill", bill_id)
            if found.is_left():
                return found
            bill = found.get_or_else(None)
            account = require(safe_account(self.snapshot, bill.account_id), "account", bill.account_id)
            if account.is_left():
                return account

            draft = tf.bill_payment(bill, "", paid_on).__dict__
            draft = {k: v for k, v in draft.items() if k not in ("id", "created_at")}
            tx = await self.repository.create_transaction(self.owner_id, draft)
            undo: list[Undo] = [lambda: self.repository.delete_transaction(tx.id)]

            after = tf.pay_bill(self.snapshot, bill_id, tx.id, paid_on, tx.created_at).get_or_else(None)
            await self._persist_balance(after, bill.account_id, undo)
            try:
                await self.repository.update_bill(replace(bill, last_paid_date=paid_on))
            except PersistenceError:
                await self._undo(undo)
                raise
            self._ensure_open()
            self.store.pay_bill(bill_id, tx.id, paid_on, tx.created_at)
        return Right(tx)
