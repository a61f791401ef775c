from decimal import Decimal
from typing import Optional

from budgetbook import events
from budgetbook import transforms as tf
from budgetbook.domain import (
    EMPTY_SNAPSHOT,
    Account,
    Bill,
    Budget,
    Category,
    Snapshot,
    Transaction,
)
from budgetbook.events import EventBus
from budgetbook.functional import Either, Right
from budgetbook.logging_setup import get_logger

logger = get_logger("budgetbook.store")

EMPTY = "empty"
LOADED = "loaded"


class FinanceStore:
    """Holds the snapshot of one session and applies one transition at a time.

    Every method runs a pure function from ``budgetbook.transforms``; when the
    transition succeeds the new snapshot replaces the old one and the matching
    event is published on ``bus`` with the new snapshot in its payload. A
    ``Left`` result leaves the snapshot as it was and publishes nothing.
    """

    def __init__(self, snapshot: Optional[Snapshot] = None, bus: Optional[EventBus] = None):
        self.bus = bus or EventBus()
        self._snapshot = snapshot or EMPTY_SNAPSHOT
        self._status = EMPTY if snapshot is None else LOADED

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def status(self) -> str:
        return self._status

    def _commit(self, name: str, new: Snapshot, **payload) -> Snapshot:
        self._snapshot = new
        self._status = LOADED
        logger.debug("applied %s", name)
        self.bus.publish(name, {"snapshot": new, **payload})
        return new

    def _commit_either(
        self, name: str, result: Either[dict, Snapshot], **payload
    ) -> Either[dict, Snapshot]:
        if result.is_left():
            logger.warning("%s rejected: %s", name, result.get_error()["message"])
            return result
        return Right(self._commit(name, result.get_or_else(None), **payload))

    def replace_all(self, **collections) -> Snapshot:
        return self._commit(
            events.SNAPSHOT_REPLACED, tf.replace_all(self._snapshot, **collections)
        )

    def clear(self) -> None:
        self._snapshot = EMPTY_SNAPSHOT
        self._status = EMPTY
        self.bus.publish(events.SNAPSHOT_CLEARED, {"snapshot": EMPTY_SNAPSHOT})

    def add_account(self, account: Account) -> Snapshot:
        return self._commit(
            events.ACCOUNT_ADDED, tf.add_account(self._snapshot, account), account=account
        )

    def update_account(self, account: Account) -> Either[dict, Snapshot]:
        return self._commit_either(
            events.ACCOUNT_UPDATED, tf.update_account(self._snapshot, account), account=account
        )

    def delete_account(self, account_id: str) -> Snapshot:
        return self._commit(
            events.ACCOUNT_DELETED,
            tf.delete_account(self._snapshot, account_id),
            account_id=account_id,
        )

    def add_transaction(self, tx: Transaction) -> Either[dict, Snapshot]:
        return self._commit_either(
            events.TRANSACTION_ADDED, tf.add_transaction(self._snapshot, tx), transaction=tx
        )

    def delete_transaction(self, tx_id: str) -> Snapshot:
        new = tf.delete_transaction(self._snapshot, tx_id)
        if new is self._snapshot:
            return new
        return self._commit(events.TRANSACTION_DELETED, new, transaction_id=tx_id)

    def add_budget(self, budget: Budget) -> Snapshot:
        return self._commit(
            events.BUDGET_ADDED, tf.add_budget(self._snapshot, budget), budget=budget
        )

    def add_bill(self, bill: Bill) -> Snapshot:
        return self._commit(events.BILL_ADDED, tf.add_bill(self._snapshot, bill), bill=bill)

    def add_category(self, category: Category) -> Snapshot:
        return self._commit(
            events.CATEGORY_ADDED, tf.add_category(self._snapshot, category), category=category
        )

    def update_bill(self, bill: Bill) -> Either[dict, Snapshot]:
        return self._commit_either(
            events.BILL_UPDATED, tf.update_bill(self._snapshot, bill), bill=bill
        )

    def delete_bill(self, bill_id: str) -> Snapshot:
        return self._commit(
            events.BILL_DELETED, tf.delete_bill(self._snapshot, bill_id), bill_id=bill_id
        )

    def pay_bill(
        self, bill_id: str, transaction_id: str, date: str, created_at: Optional[str] = None
    ) -> Either[dict, Snapshot]:
        result = tf.pay_bill(self._snapshot, bill_id, transaction_id, date, created_at)
        # the payment is the newest transaction of the new snapshot
        payment = result.map(lambda s: s.transactions[0]).get_or_else(None)
        return self._commit_either(
            events.BILL_PAID, result, bill_id=bill_id, transaction=payment
        )

    def update_account_balance(self, account_id: str, delta: Decimal) -> Either[dict, Snapshot]:
        return self._commit_either(
            events.BALANCE_ADJUSTED,
            tf.update_account_balance(self._snapshot, account_id, delta),
            account_id=account_id,
            delta=delta,
        )
