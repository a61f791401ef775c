"""Read-only reports over transactions and budgets.

Frame builders use pandas for the month/category grouping behind the charts;
``ReportService`` and ``BudgetService`` run injected step functions and keep
every step's output in the report next to the merged result.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pandas as pd

from budgetbook.domain import Category, Snapshot, Transaction
from budgetbook.logging_setup import get_logger
from budgetbook.metrics import (
    budget_status,
    budget_utilization,
    by_type,
    parse_date,
    period_start,
    shift_months,
    since,
)

logger = get_logger("budgetbook.reports")

FRAME_COLUMNS = [
    "id", "date", "account_id", "category_id", "type", "amount", "signed_amount", "description",
]


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    rows = [
        {
            "id": t.id,
            "date": t.date,
            "account_id": t.account_id,
            "category_id": t.category_id,
            "type": t.type,
            "amount": float(t.amount),
            "signed_amount": float(t.signed_amount),
            "description": t.description,
        }
        for t in transactions
    ]
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["date"] = pd.to_datetime(df["date"], errors="coerce")
    return df


def in_period(
    transactions: Iterable[Transaction], period: Optional[str], today: Optional[date] = None
) -> Iterator[Transaction]:
    """Transactions of the last week/month/year; all of them when ``period`` is None."""
    if period is None:
        yield from transactions
        return
    keep = since(period_start(period, today or date.today()))
    for t in transactions:
        if keep(t):
            yield t


def totals_by_category(
    transactions: Iterable[Transaction],
    tx_type: str,
    period: Optional[str] = None,
    today: Optional[date] = None,
) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = defaultdict(Decimal)
    is_type = by_type(tx_type)
    for t in in_period(transactions, period, today):
        if is_type(t):
            totals[t.category_id] += t.amount
    return dict(totals)


def top_spending_categories(
    transactions: Iterable[Transaction], categories: Iterable[Category], k: int = 5
) -> Iterator[Tuple[str, Decimal]]:
    names = {c.id: c.name for c in categories}
    totals = totals_by_category(transactions, "expense")

    ordered = sorted(
        ((names.get(cid, cid), total) for cid, total in totals.items()),
        key=lambda item: item[1],
        reverse=True,
    )
    for name, total in ordered[: max(0, k)]:
        yield name, total


def monthly_totals(
    transactions: Iterable[Transaction], months: int = 12, today: Optional[date] = None
) -> pd.DataFrame:
    """Income, expense and net per calendar month, oldest first, empty months as 0."""
    today = today or date.today()
    first = shift_months(date(today.year, today.month, 1), -(max(months, 1) - 1))
    labels = [shift_months(first, i).strftime("%Y-%m") for i in range(max(months, 1))]

    df = transactions_frame(t for t in transactions if parse_date(t.date) >= first)
    df = df[df["date"] <= pd.Timestamp(today)]

    sums = {label: {"income": 0.0, "expense": 0.0} for label in labels}
    if not df.empty:
        grouped = df.groupby([df["date"].dt.strftime("%Y-%m"), "type"])["amount"].sum()
        for (month, tx_type), amount in grouped.items():
            sums[month][tx_type] = float(amount)

    table = pd.DataFrame.from_dict(sums, orient="index", columns=["income", "expense"])
    table["net"] = table["income"] - table["expense"]
    table.index.name = "month"
    return table


# -- reports page

Aggregator = Callable[[List[Transaction], Tuple[Category, ...], Dict[str, Any]], Dict[str, Any]]


def totals(transactions, categories, acc):
    income = sum((t.amount for t in transactions if t.type == "income"), Decimal(0))
    expense = sum((t.amount for t in transactions if t.type == "expense"), Decimal(0))
    return {"income": income, "expense": expense, "net": income - expense}


def _named(totals_by_id: Dict[str, Decimal], categories) -> Dict[str, Decimal]:
    names = {c.id: c.name for c in categories}
    return {names.get(cid, cid): amount for cid, amount in totals_by_id.items()}


def income_by_category(transactions, categories, acc):
    return {"income_by_category": _named(totals_by_category(transactions, "income"), categories)}


def expense_by_category(transactions, categories, acc):
    return {"expense_by_category": _named(totals_by_category(transactions, "expense"), categories)}


def top_spending(transactions, categories, acc):
    return {"top_spending": list(top_spending_categories(transactions, categories, 5))}


def default_aggregators() -> List[Aggregator]:
    return [totals, income_by_category, expense_by_category, top_spending]


class ReportService:
    """Runs injected aggregators over the transactions of one period.

    aggregators: functions taking (transactions, categories, acc) -> dict; ``acc``
    holds the merged output of the aggregators that ran before.
    """

    def __init__(self, aggregators: Sequence[Aggregator]):
        self.aggregators = aggregators

    def period_report(
        self, snapshot: Snapshot, period: Optional[str] = None, today: Optional[date] = None
    ) -> Dict[str, Any]:
        transactions = list(in_period(snapshot.transactions, period, today))
        report = {"period": period or "all", "count": len(transactions), "steps": [], "result": {}}
        acc: Dict[str, Any] = {}
        for agg in self.aggregators:
            out = agg(transactions, snapshot.categories, acc)
            report["steps"].append({"aggregator": getattr(agg, "__name__", str(agg)), "output": out})
            if isinstance(out, dict):
                acc.update(out)
        report["result"] = acc
        return report


# -- budgets page

Validator = Callable[[Snapshot, date], Sequence[str]]
Calculator = Callable[[Snapshot, date, Dict[str, Any]], Dict[str, Any]]


def budgets_reference_categories(snapshot: Snapshot, today: date) -> List[str]:
    known = {c.id for c in snapshot.categories}
    return [
        f"budget {b.id} references unknown category {b.category_id}"
        for b in snapshot.budgets if b.category_id not in known
    ]


def budgets_track_expenses(snapshot: Snapshot, today: date) -> List[str]:
    income_ids = {c.id for c in snapshot.categories if c.type == "income"}
    return [
        f"budget {b.id} is set on income category {b.category_id}"
        for b in snapshot.budgets if b.category_id in income_ids
    ]


def utilization(snapshot: Snapshot, today: date, acc: Dict[str, Any]) -> Dict[str, Any]:
    names = {c.id: c.name for c in snapshot.categories}
    rows = []
    for b in snapshot.budgets:
        usage = budget_utilization(snapshot, b)
        rows.append({
            "budget_id": b.id,
            "category": names.get(b.category_id, b.category_id),
            "period": b.period,
            "amount": b.amount,
            "spent": usage.spent,
            "remaining": usage.remaining,
            "percentage": usage.percentage,
            "status": budget_status(usage.percentage),
            "active": parse_date(b.start_date) <= today <= parse_date(b.end_date),
        })
    return {"utilization": rows}


def budget_warnings(snapshot: Snapshot, today: date, acc: Dict[str, Any]) -> Dict[str, Any]:
    warnings = []
    for row in acc.get("utilization", []):
        if row["percentage"] > 100:
            warnings.append(f"{row['category']}: budget exceeded ({row['percentage']:.0f}%)")
        elif row["status"] == "over":
            warnings.append(f"{row['category']}: {row['percentage']:.0f}% of budget used")
    return {"warnings": warnings}


def default_budget_service() -> "BudgetService":
    return BudgetService(
        validators=[budgets_reference_categories, budgets_track_expenses],
        calculators=[utilization, budget_warnings],
    )


class BudgetService:
    """Budget overview built from injected validators and calculators.

    validators: functions taking (snapshot, today) -> messages
    calculators: functions taking (snapshot, today, acc) -> dict (partial results)
    """

    def __init__(self, validators: Sequence[Validator], calculators: Sequence[Calculator]):
        self.validators = validators
        self.calculators = calculators

    def overview(self, snapshot: Snapshot, today: Optional[date] = None) -> Dict[str, Any]:
        today = today or date.today()
        report = {"as_of": today.isoformat(), "validation": [], "steps": [], "result": {}}

        for v in self.validators:
            try:
                msgs = v(snapshot, today)
            except Exception as e:
                logger.exception("budget validator %s failed", getattr(v, "__name__", v))
                msgs = [f"validator_error: {e}"]
            report["validation"].append(
                {"validator": getattr(v, "__name__", str(v)), "messages": list(msgs)}
            )

        acc: Dict[str, Any] = {}
        for calc in self.calculators:
            out = calc(snapshot, today, acc)
            report["steps"].append({"calculator": getattr(calc, "__name__", str(calc)), "output": out})
            if isinstance(out, dict):
                acc.update(out)

        report["result"] = acc
        return report
