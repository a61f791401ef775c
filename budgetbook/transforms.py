from dataclasses import replace
from decimal import Decimal
from typing import Optional

from budgetbook.domain import (
    COLLECTIONS,
    Account,
    Bill,
    Budget,
    Category,
    Snapshot,
    Transaction,
)
from budgetbook.functional import (
    Either,
    require,
    safe_account,
    safe_bill,
    safe_transaction,
)


def replace_all(snapshot: Snapshot, **collections) -> Snapshot:
    unknown = set(collections) - set(COLLECTIONS)
    if unknown:
        raise TypeError(f"unknown collections: {sorted(unknown)}")
    return replace(snapshot, **{k: tuple(v) for k, v in collections.items()})


def _adjust_balance(
    accounts: tuple[Account, ...], account_id: str, delta: Decimal
) -> tuple[Account, ...]:
    return tuple(
        replace(a, balance=a.balance + delta) if a.id == account_id else a
        for a in accounts
    )


def add_account(snapshot: Snapshot, account: Account) -> Snapshot:
    return replace(snapshot, accounts=snapshot.accounts + (account,))


def update_account(snapshot: Snapshot, account: Account) -> Either[dict, Snapshot]:
    return require(safe_account(snapshot, account.id), "account", account.id).map(
        lambda _: replace(
            snapshot,
            accounts=tuple(account if a.id == account.id else a for a in snapshot.accounts),
        )
    )


def delete_account(snapshot: Snapshot, account_id: str) -> Snapshot:
    return replace(
        snapshot, accounts=tuple(a for a in snapshot.accounts if a.id != account_id)
    )


def add_transaction(snapshot: Snapshot, tx: Transaction) -> Either[dict, Snapshot]:
    # newest first; the list is never re-sorted here
    return require(safe_account(snapshot, tx.account_id), "account", tx.account_id).map(
        lambda _: replace(
            snapshot,
            transactions=(tx,) + snapshot.transactions,
            accounts=_adjust_balance(snapshot.accounts, tx.account_id, tx.signed_amount),
        )
    )


def delete_transaction(snapshot: Snapshot, tx_id: str) -> Snapshot:
    tx = safe_transaction(snapshot, tx_id).get_or_else(None)
    if tx is None:
        return snapshot
    return replace(
        snapshot,
        transactions=tuple(t for t in snapshot.transactions if t.id != tx_id),
        accounts=_adjust_balance(snapshot.accounts, tx.account_id, -tx.signed_amount),
    )


def add_budget(snapshot: Snapshot, budget: Budget) -> Snapshot:
    return replace(snapshot, budgets=snapshot.budgets + (budget,))


def add_bill(snapshot: Snapshot, bill: Bill) -> Snapshot:
    return replace(snapshot, bills=snapshot.bills + (bill,))


def add_category(snapshot: Snapshot, category: Category) -> Snapshot:
    return replace(snapshot, categories=snapshot.categories + (category,))


def update_bill(snapshot: Snapshot, bill: Bill) -> Either[dict, Snapshot]:
    return require(safe_bill(snapshot, bill.id), "bill", bill.id).map(
        lambda _: replace(
            snapshot,
            bills=tuple(bill if b.id == bill.id else b for b in snapshot.bills),
        )
    )


def delete_bill(snapshot: Snapshot, bill_id: str) -> Snapshot:
    return replace(snapshot, bills=tuple(b for b in snapshot.bills if b.id != bill_id))


def bill_payment(
    bill: Bill, transaction_id: str, date: str, created_at: Optional[str] = None
) -> Transaction:
    return Transaction(
        id=transaction_id,
        account_id=bill.account_id,
        category_id=bill.category_id,
        amount=bill.amount,
        description=f"Payment for {bill.name}",
        date=date,
        type="expense",
        created_at=created_at or date,
    )


def pay_bill(
    snapshot: Snapshot,
    bill_id: str,
    transaction_id: str,
    date: str,
    created_at: Optional[str] = None,
) -> Either[dict, Snapshot]:
    def _pay(bill: Bill) -> Either[dict, Snapshot]:
        paid = add_transaction(snapshot, bill_payment(bill, transaction_id, date, created_at))
        return paid.map(
            lambda s: replace(
                s,
                bills=tuple(
                    replace(b, last_paid_date=date) if b.id == bill_id else b
                    for b in s.bills
                ),
            )
        )

    return require(safe_bill(snapshot, bill_id), "bill", bill_id).bind(_pay)


def update_account_balance(
    snapshot: Snapshot, account_id: str, delta: Decimal
) -> Either[dict, Snapshot]:
    # bypasses the transaction history, so balance == sum(history) no longer holds
    return require(safe_account(snapshot, account_id), "account", account_id).map(
        lambda _: replace(
            snapshot, accounts=_adjust_balance(snapshot.accounts, account_id, delta)
        )
    )


def snapshot_to_dict(snapshot: Snapshot) -> dict:
    def _row(entity) -> dict:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in entity.__dict__.items()
        }

    return {name: [_row(e) for e in getattr(snapshot, name)] for name in COLLECTIONS}
