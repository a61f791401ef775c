from decimal import Decimal

import pytest

from budgetbook import transforms as tf
from budgetbook.domain import Account, Bill, Budget, Category, Snapshot, Transaction


def make_acc(id, balance, type="bank"):
    return Account(id=id, name=id.upper(), type=type, balance=Decimal(balance), currency="IDR")


def make_tx(id, acc_id, amount, type="expense", cat_id="food", date="2025-09-05"):
    return Transaction(
        id=id, account_id=acc_id, category_id=cat_id, amount=Decimal(amount),
        description="", date=date, type=type, created_at=date + "T10:00:00+00:00",
    )


def make_bill(id="bill1", acc_id="a1", amount="200", due=10, last_paid=None):
    return Bill(
        id=id, name="Internet", amount=Decimal(amount), due_date=due,
        account_id=acc_id, category_id="util", is_active=True, last_paid_date=last_paid,
    )


def make_snapshot(**kwargs):
    base = {
        "accounts": (make_acc("a1", "1000"), make_acc("a2", "50")),
        "categories": (Category("food", "Food", "expense"), Category("util", "Utilities", "expense")),
    }
    base.update(kwargs)
    return Snapshot(**base)


def test_add_transaction_prepends_and_adjusts_balance():
    s = make_snapshot(transactions=(make_tx("t0", "a1", "10"),))
    result = tf.add_transaction(s, make_tx("t1", "a1", "200"))

    assert result.is_right()
    new = result.get_or_else(None)
    assert [t.id for t in new.transactions] == ["t1", "t0"]
    assert new.accounts[0].balance == Decimal("800")
    assert new.accounts[1].balance == Decimal("50")
    # input snapshot untouched
    assert s.accounts[0].balance == Decimal("1000")


def test_income_increases_balance():
    s = make_snapshot()
    new = tf.add_transaction(s, make_tx("t1", "a2", "25", type="income")).get_or_else(None)
    assert new.accounts[1].balance == Decimal("75")


def test_add_transaction_unknown_account_is_left():
    s = make_snapshot()
    result = tf.add_transaction(s, make_tx("t1", "missing", "5"))

    assert result.is_left()
    assert result.get_error()["error"] == "account_not_found"
    assert result.get_error()["account_id"] == "missing"


def test_delete_transaction_reverses_balance():
    s = tf.add_transaction(make_snapshot(), make_tx("t1", "a1", "300")).get_or_else(None)
    new = tf.delete_transaction(s, "t1")

    assert new.transactions == ()
    assert new.accounts[0].balance == Decimal("1000")


def test_delete_transaction_absent_is_noop():
    s = make_snapshot()
    assert tf.delete_transaction(s, "nope") is s


def test_balance_equals_history_after_mixed_changes():
    s = make_snapshot(accounts=(make_acc("a1", "0"),))
    for tx in (
        make_tx("t1", "a1", "500", type="income"),
        make_tx("t2", "a1", "120"),
        make_tx("t3", "a1", "30"),
    ):
        s = tf.add_transaction(s, tx).get_or_else(None)
    s = tf.delete_transaction(s, "t2")

    expected = sum((t.signed_amount for t in s.transactions), Decimal(0))
    assert s.accounts[0].balance == expected == Decimal("470")


def test_replace_all_keeps_unsupplied_collections():
    s = make_snapshot(bills=(make_bill(),))
    new = tf.replace_all(s, accounts=[make_acc("x", "1")])

    assert [a.id for a in new.accounts] == ["x"]
    assert new.bills == s.bills
    assert isinstance(new.accounts, tuple)


def test_replace_all_rejects_unknown_collection():
    with pytest.raises(TypeError):
        tf.replace_all(make_snapshot(), users=[])


def test_update_and_delete_account():
    s = make_snapshot()
    renamed = Account("a1", "Main", "bank", Decimal("1000"), "IDR")
    new = tf.update_account(s, renamed).get_or_else(None)
    assert new.accounts[0].name == "Main"

    missing = tf.update_account(s, Account("zz", "Z", "cash", Decimal(0), "IDR"))
    assert missing.get_error()["error"] == "account_not_found"

    assert [a.id for a in tf.delete_account(s, "a1").accounts] == ["a2"]


def test_add_budget_bill_category_append():
    s = make_snapshot()
    budget = Budget("b1", "food", Decimal("100"), "monthly", "2025-09-01", "2025-09-30")
    s = tf.add_budget(s, budget)
    s = tf.add_bill(s, make_bill())
    s = tf.add_category(s, Category("gift", "Gifts", "income"))

    assert s.budgets == (budget,)
    assert s.bills[0].id == "bill1"
    assert s.categories[-1].id == "gift"
    assert s.accounts[0].balance == Decimal("1000")


def test_update_bill_replaces_whole_record():
    s = make_snapshot(bills=(make_bill(),))
    changed = make_bill(amount="250", due=12)
    new = tf.update_bill(s, changed).get_or_else(None)
    assert new.bills == (changed,)

    result = tf.update_bill(s, make_bill(id="other"))
    assert result.get_error()["error"] == "bill_not_found"


def test_delete_bill():
    s = make_snapshot(bills=(make_bill(), make_bill(id="bill2")))
    assert [b.id for b in tf.delete_bill(s, "bill1").bills] == ["bill2"]
    assert tf.delete_bill(s, "none").bills == s.bills


def test_pay_bill_records_payment_and_marks_paid():
    s = make_snapshot(bills=(make_bill(),))
    new = tf.pay_bill(s, "bill1", "tx-pay", "2025-09-10", "2025-09-10T08:00:00+00:00").get_or_else(None)

    tx = new.transactions[0]
    assert tx.id == "tx-pay"
    assert tx.description == "Payment for Internet"
    assert tx.type == "expense"
    assert tx.amount == Decimal("200")
    assert tx.category_id == "util"
    assert new.accounts[0].balance == Decimal("800")
    assert new.bills[0].last_paid_date == "2025-09-10"


def test_pay_bill_equals_add_transaction_plus_mark():
    s = make_snapshot(bills=(make_bill(),))
    paid = tf.pay_bill(s, "bill1", "p1", "2025-09-10").get_or_else(None)
    manual = tf.add_transaction(s, tf.bill_payment(s.bills[0], "p1", "2025-09-10")).get_or_else(None)

    assert paid.transactions == manual.transactions
    assert paid.accounts == manual.accounts


def test_pay_bill_unknown_bill_leaves_snapshot():
    s = make_snapshot()
    result = tf.pay_bill(s, "ghost", "p1", "2025-09-10")
    assert result.is_left()
    assert result.get_error()["error"] == "bill_not_found"


def test_pay_bill_missing_account():
    s = make_snapshot(bills=(make_bill(acc_id="gone"),))
    result = tf.pay_bill(s, "bill1", "p1", "2025-09-10")
    assert result.get_error()["error"] == "account_not_found"


def test_update_account_balance_skips_history():
    s = make_snapshot()
    new = tf.update_account_balance(s, "a2", Decimal("-75")).get_or_else(None)
    assert new.accounts[1].balance == Decimal("-25")
    assert new.transactions == ()

    assert tf.update_account_balance(s, "zz", Decimal(1)).is_left()


def test_snapshot_to_dict_serialises_decimals():
    data = tf.snapshot_to_dict(make_snapshot(bills=(make_bill(),)))
    assert data["accounts"][0]["balance"] == "1000"
    assert data["bills"][0]["last_paid_date"] is None
    assert set(data) == {"accounts", "transactions", "budgets", "bills", "categories"}


def test_expense_scenario_from_one_million():
    s = Snapshot(accounts=(make_acc("A", "1000000"),))
    tx = Transaction("t1", "A", "C", Decimal("200000"), "x", "2025-01-01", "expense")
    new = tf.add_transaction(s, tx).get_or_else(None)

    assert new.accounts[0].balance == Decimal("800000")
    assert len(new.transactions) == 1


def test_pay_bill_scenario():
    bill = Bill("B1", "Rent", Decimal("50000"), 10, "A", "C", is_active=True)
    s = Snapshot(accounts=(make_acc("A", "1000000"),), bills=(bill,))
    new = tf.pay_bill(s, "B1", "T1", "2025-01-10").get_or_else(None)

    assert new.accounts[0].balance == Decimal("950000")
    assert new.bills[0].last_paid_date == "2025-01-10"
    assert len(new.transactions) == 1
    assert new.transactions[0].amount == Decimal("50000")
    assert "Rent" in new.transactions[0].description


def test_added_account_reads_back_unchanged():
    acc = make_acc("srv-9", "-250")
    assert tf.add_account(Snapshot(), acc).accounts == (acc,)
