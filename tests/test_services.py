import asyncio
from dataclasses import replace
from decimal import Decimal

import pytest

from budgetbook import events
from budgetbook.backend import InMemoryBackend
from budgetbook.errors import NotAuthenticatedError, PersistenceError
from budgetbook.events import make_json_mirror
from budgetbook.persistence import Repository
from budgetbook.services import FinanceService
from budgetbook.store import FinanceStore

OWNER = "u1"


class FlakyBackend(InMemoryBackend):
    """Fails every call to the tables listed in ``fail`` for the given operation."""

    def __init__(self):
        super().__init__()
        self.fail = set()

    def insert(self, table, row):
        if ("insert", table) in self.fail:
            raise PersistenceError(f"insert into {table} refused")
        return super().insert(table, row)

    def update(self, table, row_id, values):
        if ("update", table) in self.fail:
            raise PersistenceError(f"update of {table} refused")
        return super().update(table, row_id, values)

    def delete(self, table, row_id):
        if ("delete", table) in self.fail:
            raise PersistenceError(f"delete from {table} refused")
        return super().delete(table, row_id)


def seeded_backend():
    backend = FlakyBackend()
    backend.insert("categories", {"id": "food", "name": "Food", "type": "expense", "icon": "", "color": ""})
    backend.insert("categories", {"id": "salary", "name": "Salary", "type": "income", "icon": "", "color": ""})
    backend.insert("categories", {"id": "util", "name": "Utilities", "type": "expense", "icon": "", "color": ""})
    backend.insert("accounts", {
        "id": "a1", "user_id": OWNER, "name": "Wallet", "type": "cash",
        "balance": Decimal("1000"), "currency": "IDR",
    })
    backend.insert("bills", {
        "id": "bill1", "user_id": OWNER, "name": "Internet", "amount": Decimal("300"),
        "due_date": 5, "account_id": "a1", "category_id": "util", "is_active": True,
        "last_paid_date": None,
    })
    return backend


async def make_service(backend=None):
    backend = backend or seeded_backend()
    service = FinanceService(FinanceStore(), Repository(backend), OWNER)
    await service.refresh()
    return service, backend


def tx_fields(amount="100", type="expense", account_id="a1", category_id="food", date="2025-09-05"):
    return dict(
        account_id=account_id, category_id=category_id, amount=amount,
        description="test", date=date, type=type,
    )


def stored_balance(backend, account_id="a1"):
    (row,) = [r for r in backend.select("accounts") if r["id"] == account_id]
    return Decimal(str(row["balance"]))


@pytest.mark.asyncio
async def test_refresh_loads_owner_snapshot():
    service, _ = await make_service()
    assert [a.id for a in service.snapshot.accounts] == ["a1"]
    assert len(service.snapshot.categories) == 3
    assert service.store.status == "loaded"


@pytest.mark.asyncio
async def test_add_transaction_confirms_then_applies():
    service, backend = await make_service()
    result = await service.add_transaction(**tx_fields("250"))

    assert result.is_right()
    tx = result.get_or_else(None)
    assert service.snapshot.transactions[0] == tx
    assert service.snapshot.accounts[0].balance == Decimal("750")
    assert stored_balance(backend) == Decimal("750")
    assert backend.select("transactions")[0]["id"] == tx.id


@pytest.mark.asyncio
async def test_invalid_payload_never_reaches_backend():
    service, backend = await make_service()
    result = await service.add_transaction(**tx_fields("-5"))

    assert result.get_error()["error"] == "validation_error"
    assert backend.select("transactions") == []


@pytest.mark.asyncio
async def test_unknown_account_is_left_without_remote_call():
    service, backend = await make_service()
    before = service.snapshot
    result = await service.add_transaction(**tx_fields(account_id="ghost"))

    assert result.get_error()["error"] == "account_not_found"
    assert service.snapshot is before
    assert backend.select("transactions") == []


@pytest.mark.asyncio
async def test_remote_failure_leaves_snapshot_unchanged():
    service, backend = await make_service()
    backend.fail.add(("insert", "transactions"))
    before = service.snapshot

    with pytest.raises(PersistenceError):
        await service.add_transaction(**tx_fields())
    assert service.snapshot is before


@pytest.mark.asyncio
async def test_balance_failure_removes_created_transaction():
    service, backend = await make_service()
    backend.fail.add(("update", "accounts"))
    before = service.snapshot

    with pytest.raises(PersistenceError):
        await service.add_transaction(**tx_fields())

    assert service.snapshot is before
    assert backend.select("transactions") == []
    assert stored_balance(backend) == Decimal("1000")


@pytest.mark.asyncio
async def test_concurrent_writes_confirm_in_dispatch_order():
    service, backend = await make_service()
    results = await asyncio.gather(*(
        service.add_transaction(**tx_fields(str(10 * (i + 1)))) for i in range(5)
    ))

    ids = [r.get_or_else(None).id for r in results]
    # newest first
    assert [t.id for t in service.snapshot.transactions] == list(reversed(ids))
    assert service.snapshot.accounts[0].balance == Decimal("850")
    assert stored_balance(backend) == Decimal("850")


@pytest.mark.asyncio
async def test_delete_transaction_restores_balance_everywhere():
    service, backend = await make_service()
    tx = (await service.add_transaction(**tx_fields("400"))).get_or_else(None)

    result = await service.delete_transaction(tx.id)

    assert result.is_right()
    assert service.snapshot.transactions == ()
    assert service.snapshot.accounts[0].balance == Decimal("1000")
    assert stored_balance(backend) == Decimal("1000")
    assert (await service.delete_transaction(tx.id)).is_right()


@pytest.mark.asyncio
async def test_failed_delete_restores_stored_balance():
    service, backend = await make_service()
    tx = (await service.add_transaction(**tx_fields("400"))).get_or_else(None)
    backend.fail.add(("delete", "transactions"))

    with pytest.raises(PersistenceError):
        await service.delete_transaction(tx.id)

    assert stored_balance(backend) == Decimal("600")
    assert service.snapshot.transactions[0].id == tx.id


@pytest.mark.asyncio
async def test_refresh_after_writes_matches_history():
    service, backend = await make_service()
    await service.add_transaction(**tx_fields("500", type="income", category_id="salary"))
    await service.add_transaction(**tx_fields("120"))
    expected = service.snapshot

    await service.refresh()

    assert service.snapshot.accounts == expected.accounts
    assert {t.id for t in service.snapshot.transactions} == {t.id for t in expected.transactions}


@pytest.mark.asyncio
async def test_pay_bill_records_payment():
    service, backend = await make_service()
    result = await service.pay_bill("bill1", "2025-09-05")

    tx = result.get_or_else(None)
    assert tx.description == "Payment for Internet"
    assert tx.amount == Decimal("300")
    assert service.snapshot.transactions[0].id == tx.id
    assert service.snapshot.bills[0].last_paid_date == "2025-09-05"
    assert service.snapshot.accounts[0].balance == Decimal("700")
    assert stored_balance(backend) == Decimal("700")
    assert backend.select("bills")[0]["last_paid_date"] == "2025-09-05"


@pytest.mark.asyncio
async def test_pay_unknown_bill_is_left():
    service, backend = await make_service()
    before = service.snapshot
    result = await service.pay_bill("nope", "2025-09-05")

    assert result.get_error()["error"] == "bill_not_found"
    assert service.snapshot is before
    assert backend.select("transactions") == []


@pytest.mark.asyncio
async def test_pay_bill_rolls_back_when_bill_update_fails():
    service, backend = await make_service()
    backend.fail.add(("update", "bills"))

    with pytest.raises(PersistenceError):
        await service.pay_bill("bill1", "2025-09-05")

    assert backend.select("transactions") == []
    assert stored_balance(backend) == Decimal("1000")
    assert service.snapshot.bills[0].last_paid_date is None


@pytest.mark.asyncio
async def test_bill_crud():
    service, backend = await make_service()
    added = await service.add_bill(
        name="Water", amount="200", due_date=15, account_id="a1", category_id="util",
    )
    bill = added.get_or_else(None)
    assert bill.id in {b.id for b in service.snapshot.bills}

    updated = await service.update_bill(replace(bill, amount=Decimal("250")))
    assert updated.is_right()
    assert [b.amount for b in service.snapshot.bills if b.id == bill.id] == [Decimal("250")]

    missing = await service.update_bill(replace(bill, id="ghost"))
    assert missing.get_error()["error"] == "bill_not_found"

    await service.delete_bill(bill.id)
    assert bill.id not in {b.id for b in service.snapshot.bills}
    assert bill.id not in {r["id"] for r in backend.select("bills")}


@pytest.mark.asyncio
async def test_add_bill_checks_references():
    service, _ = await make_service()
    result = await service.add_bill(
        name="Gym", amount="90", due_date=1, account_id="a1", category_id="gym",
    )
    assert result.get_error()["error"] == "category_not_found"


@pytest.mark.asyncio
async def test_add_budget_and_category():
    service, _ = await make_service()
    budget = await service.add_budget(
        category_id="food", amount="500", period="monthly",
        start_date="2025-09-01", end_date="2025-09-30",
    )
    assert service.snapshot.budgets == (budget.get_or_else(None),)

    bad = await service.add_budget(
        category_id="food", amount="500", period="monthly",
        start_date="2025-09-30", end_date="2025-09-01",
    )
    assert bad.get_error()["error"] == "validation_error"

    category = await service.add_category(name="Gifts", type="income")
    assert service.snapshot.categories[-1] == category.get_or_else(None)


@pytest.mark.asyncio
async def test_account_lifecycle_and_adjustment():
    service, backend = await make_service()
    account = (await service.add_account(name="Savings", type="bank", balance="50")).get_or_else(None)
    assert account.currency == "IDR"

    renamed = await service.update_account(replace(account, name="Rainy day"))
    assert renamed.is_right()

    adjusted = await service.adjust_balance(account.id, "-20")
    assert adjusted.get_or_else(None).balance == Decimal("30")
    assert stored_balance(backend, account.id) == Decimal("30")
    assert (await service.adjust_balance("ghost", 1)).get_error()["error"] == "account_not_found"

    await service.delete_account(account.id)
    assert [a.id for a in service.snapshot.accounts] == ["a1"]


@pytest.mark.asyncio
async def test_category_type_mismatch_only_warns(caplog):
    service, _ = await make_service()
    result = await service.add_transaction(**tx_fields(type="income", category_id="food"))

    assert result.is_right()
    assert "income transaction filed under expense category Food" in caplog.text


@pytest.mark.asyncio
async def test_failing_mirror_does_not_fail_the_write(tmp_path):
    service, backend = await make_service()
    service.store.bus.subscribe(events.ACCOUNT_ADDED, make_json_mirror(str(tmp_path / "missing" / "m.json")))

    result = await service.add_account(name="W", type="cash", balance="0")

    assert result.is_right()
    assert "W" in [a.name for a in service.snapshot.accounts]
    assert len(backend.select("accounts", user_id=OWNER)) == 2


@pytest.mark.asyncio
async def test_closed_service_leaves_store_alone():
    service, backend = await make_service()
    before = service.snapshot
    service.close()

    with pytest.raises(NotAuthenticatedError):
        await service.add_transaction(**tx_fields())
    with pytest.raises(NotAuthenticatedError):
        await service.refresh()
    assert service.snapshot is before


@pytest.mark.asyncio
async def test_deactivating_bill_from_edit_form():
    service, backend = await make_service()
    (bill,) = service.snapshot.bills

    result = await service.update_bill(replace(bill, amount=320.0, due_date=6, is_active=False))

    assert result.is_right()
    (changed,) = service.snapshot.bills
    assert changed.is_active is False
    assert changed.amount == Decimal("320")
    assert backend.select("bills")[0]["is_active"] is False


@pytest.mark.asyncio
async def test_backend_failure_surfaces_as_persistence_error():
    service, backend = await make_service()
    backend.fail.add(("delete", "bills"))

    with pytest.raises(PersistenceError):
        await service.delete_bill("bill1")
    assert [b.id for b in service.snapshot.bills] == ["bill1"]
