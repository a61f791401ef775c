import calendar
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable, Iterable, NamedTuple, Optional

from budgetbook.domain import Bill, Budget, Snapshot, Transaction


class BudgetUsage(NamedTuple):
    spent: Decimal
    remaining: Decimal
    percentage: float


def parse_date(value: str) -> date:
    # accepts plain dates and ISO timestamps
    return date.fromisoformat(value[:10])


def shift_months(day: date, months: int) -> date:
    """Move ``day`` by whole months, clamping to the target month's last day."""
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def period_start(period: str, today: date) -> date:
    if period == "week":
        return today - timedelta(days=7)
    if period == "month":
        return shift_months(today, -1)
    if period == "year":
        return shift_months(today, -12)
    raise ValueError(f"unknown period: {period!r}")


def by_category(category_id: str) -> Callable[[Transaction], bool]:
    def _filter(t: Transaction) -> bool:
        return t.category_id == category_id

    return _filter


def by_type(tx_type: str) -> Callable[[Transaction], bool]:
    def _filter(t: Transaction) -> bool:
        return t.type == tx_type

    return _filter


def by_date_range(start: str, end: str) -> Callable[[Transaction], bool]:
    lo, hi = parse_date(start), parse_date(end)

    def _filter(t: Transaction) -> bool:
        return lo <= parse_date(t.date) <= hi

    return _filter


def since(start: date) -> Callable[[Transaction], bool]:
    def _filter(t: Transaction) -> bool:
        return parse_date(t.date) >= start

    return _filter


def _sum(transactions: Iterable[Transaction], *preds: Callable[[Transaction], bool]) -> Decimal:
    return sum(
        (t.amount for t in transactions if all(p(t) for p in preds)), Decimal(0)
    )


def total_balance(snapshot: Snapshot) -> Decimal:
    return sum((a.balance for a in snapshot.accounts), Decimal(0))


def account_balance(snapshot: Snapshot, account_id: str) -> Decimal:
    for a in snapshot.accounts:
        if a.id == account_id:
            return a.balance
    return Decimal(0)


def income_total(snapshot: Snapshot) -> Decimal:
    return _sum(snapshot.transactions, by_type("income"))


def expense_total(snapshot: Snapshot) -> Decimal:
    return _sum(snapshot.transactions, by_type("expense"))


def category_spend(
    snapshot: Snapshot,
    category_id: str,
    period: Optional[str] = None,
    today: Optional[date] = None,
) -> Decimal:
    preds = [by_type("expense"), by_category(category_id)]
    if period is not None:
        preds.append(since(period_start(period, today or date.today())))
    return _sum(snapshot.transactions, *preds)


def budget_utilization(snapshot: Snapshot, budget: Budget) -> BudgetUsage:
    spent = _sum(
        snapshot.transactions,
        by_type("expense"),
        by_category(budget.category_id),
        by_date_range(budget.start_date, budget.end_date),
    )
    percentage = float(spent / budget.amount * 100) if budget.amount else 0.0
    return BudgetUsage(spent=spent, remaining=budget.amount - spent, percentage=percentage)


def budget_status(percentage: float) -> str:
    if percentage <= 50:
        return "ok"
    if percentage <= 75:
        return "warning"
    return "over"


def covering_budget(
    snapshot: Snapshot, category_id: str, period: str, start_date: str, end_date: str
) -> Optional[Budget]:
    """Existing budget of the same category and period that spans the new range."""
    start, end = parse_date(start_date), parse_date(end_date)
    for b in snapshot.budgets:
        if (
            b.category_id == category_id
            and b.period == period
            and parse_date(b.start_date) <= start
            and parse_date(b.end_date) >= end
        ):
            return b
    return None


def _due_in_month(year: int, month: int, due_day: int) -> date:
    return date(year, month, min(due_day, calendar.monthrange(year, month)[1]))


def next_due_date(bill: Bill, today: date) -> date:
    due = _due_in_month(today.year, today.month, bill.due_date)
    if due < today:
        nxt = shift_months(date(today.year, today.month, 1), 1)
        due = _due_in_month(nxt.year, nxt.month, bill.due_date)
    return due


def days_until_due(bill: Bill, today: Optional[date] = None) -> int:
    today = today or date.today()
    return (next_due_date(bill, today) - today).days


def upcoming_bills(
    snapshot: Snapshot, window_days: int = 7, today: Optional[date] = None
) -> tuple[Bill, ...]:
    today = today or date.today()
    horizon = today + timedelta(days=window_days)
    return tuple(
        b for b in snapshot.bills
        if b.is_active and today <= next_due_date(b, today) <= horizon
    )
