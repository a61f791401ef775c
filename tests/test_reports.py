from datetime import date
from decimal import Decimal

import pytest

from budgetbook.domain import Budget, Category, Snapshot, Transaction
from budgetbook.reports import (
    BudgetService,
    ReportService,
    default_aggregators,
    default_budget_service,
    monthly_totals,
    top_spending_categories,
    totals_by_category,
    transactions_frame,
)

CATEGORIES = (
    Category("salary", "Salary", "income"),
    Category("food", "Food", "expense"),
    Category("fuel", "Transport", "expense"),
    Category("fun", "Entertainment", "expense"),
)


def make_tx(id, amount, date, cat_id, type="expense"):
    return Transaction(id, "a1", cat_id, Decimal(amount), "", date, type)


TRANSACTIONS = (
    make_tx("t1", "5000", "2025-09-01", "salary", type="income"),
    make_tx("t2", "1500", "2025-09-05", "food"),
    make_tx("t3", "300", "2025-09-10", "fuel"),
    make_tx("t4", "700", "2025-08-20", "fun"),
    make_tx("t5", "200", "2025-07-02", "food"),
)


def test_transactions_frame_signs_amounts():
    df = transactions_frame(TRANSACTIONS)
    assert list(df["signed_amount"][:2]) == [5000.0, -1500.0]
    assert str(df["date"].dtype).startswith("datetime64")

    empty = transactions_frame(())
    assert empty.empty
    assert "signed_amount" in empty.columns


def test_totals_by_category_with_period():
    today = date(2025, 9, 13)
    assert totals_by_category(TRANSACTIONS, "expense") == {
        "food": Decimal("1700"), "fuel": Decimal("300"), "fun": Decimal("700"),
    }
    assert totals_by_category(TRANSACTIONS, "expense", "week", today) == {"fuel": Decimal("300")}
    assert totals_by_category(TRANSACTIONS, "income", "month", today) == {"salary": Decimal("5000")}


def test_top_spending_is_lazy_and_ordered():
    top = top_spending_categories(TRANSACTIONS, CATEGORIES, k=2)
    assert next(top) == ("Food", Decimal("1700"))
    assert list(top) == [("Entertainment", Decimal("700"))]
    assert list(top_spending_categories(TRANSACTIONS, CATEGORIES, k=0)) == []


def test_monthly_totals_fill_empty_months():
    table = monthly_totals(TRANSACTIONS, months=4, today=date(2025, 9, 30))

    assert list(table.index) == ["2025-06", "2025-07", "2025-08", "2025-09"]
    assert table.loc["2025-06", "expense"] == 0.0
    assert table.loc["2025-07", "expense"] == 200.0
    assert table.loc["2025-09", "income"] == 5000.0
    assert table.loc["2025-09", "net"] == pytest.approx(3200.0)


def test_monthly_totals_without_transactions():
    table = monthly_totals((), months=2, today=date(2025, 1, 15))
    assert list(table.index) == ["2024-12", "2025-01"]
    assert table["net"].sum() == 0.0


def test_report_service_runs_aggregators_in_order():
    snapshot = Snapshot(categories=CATEGORIES, transactions=TRANSACTIONS)
    report = ReportService(default_aggregators()).period_report(snapshot, "month", date(2025, 9, 12))

    assert report["period"] == "month"
    assert report["count"] == 4
    assert [s["aggregator"] for s in report["steps"]] == [
        "totals", "income_by_category", "expense_by_category", "top_spending",
    ]
    result = report["result"]
    assert result["income"] == Decimal("5000")
    assert result["expense"] == Decimal("2500")
    assert result["expense_by_category"]["Entertainment"] == Decimal("700")
    assert result["top_spending"][0] == ("Food", Decimal("1500"))


def test_report_aggregators_see_earlier_results():
    def savings_rate(transactions, categories, acc):
        return {"savings_rate": float(acc["net"] / acc["income"])}

    snapshot = Snapshot(categories=CATEGORIES, transactions=TRANSACTIONS[:3])
    report = ReportService(default_aggregators() + [savings_rate]).period_report(snapshot)

    assert report["period"] == "all"
    assert report["result"]["savings_rate"] == pytest.approx(0.64)


def test_budget_overview():
    snapshot = Snapshot(
        categories=CATEGORIES,
        transactions=TRANSACTIONS,
        budgets=(
            Budget("b-food", "food", Decimal("1000"), "monthly", "2025-09-01", "2025-09-30"),
            Budget("b-fuel", "fuel", Decimal("1000"), "monthly", "2025-09-01", "2025-09-30"),
            Budget("b-pay", "salary", Decimal("10"), "monthly", "2025-09-01", "2025-09-30"),
        ),
    )
    report = default_budget_service().overview(snapshot, date(2025, 9, 12))

    rows = {r["budget_id"]: r for r in report["result"]["utilization"]}
    assert rows["b-food"]["status"] == "over"
    assert rows["b-fuel"]["status"] == "ok"
    assert rows["b-food"]["active"] is True
    assert report["result"]["warnings"] == ["Food: budget exceeded (150%)"]
    messages = [m for v in report["validation"] for m in v["messages"]]
    assert messages == ["budget b-pay is set on income category salary"]


def test_budget_validator_errors_are_reported():
    def broken(snapshot, today):
        raise RuntimeError("boom")

    report = BudgetService([broken], []).overview(Snapshot(), date(2025, 1, 1))
    assert report["validation"][0]["messages"] == ["validator_error: boom"]
    assert report["result"] == {}
