import json
from datetime import datetime
from typing import Callable, Dict, List, MutableSequence, NamedTuple

from budgetbook.domain import Snapshot
from budgetbook.logging_setup import get_logger
from budgetbook.metrics import budget_utilization
from budgetbook.transforms import snapshot_to_dict

__all__ = [
    'Event', 'EventBus',
    'SNAPSHOT_REPLACED', 'SNAPSHOT_CLEARED', 'ACCOUNT_ADDED', 'ACCOUNT_UPDATED',
    'ACCOUNT_DELETED', 'TRANSACTION_ADDED', 'TRANSACTION_DELETED', 'BUDGET_ADDED',
    'BILL_ADDED', 'BILL_UPDATED', 'BILL_DELETED', 'BILL_PAID', 'CATEGORY_ADDED',
    'BALANCE_ADJUSTED', 'BUDGET_ALERT', 'BALANCE_ALERT', 'STORE_EVENTS',
    'check_budget_handler', 'check_balance_handler', 'make_json_mirror',
    'register_default_handlers',
]

logger = get_logger("budgetbook.events")


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event, dict], dict]


class EventBus:
    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> List[dict]:
        if name not in self._subscribers:
            return []

        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)

        # handlers run after the change is committed; a failing one must not undo it
        results = []
        for handler in list(self._subscribers[name]):
            try:
                results.append(handler(event, payload))
            except Exception as exc:
                logger.exception("handler %s failed on %s", getattr(handler, "__name__", handler), name)
                results.append({
                    "error": "handler_failed",
                    "message": str(exc),
                    "handler": getattr(handler, "__name__", repr(handler)),
                })
        return results

    def unsubscribe(self, name: str, handler: Handler) -> None:
        if handler in self._subscribers.get(name, []):
            self._subscribers[name].remove(handler)


SNAPSHOT_REPLACED = "SNAPSHOT_REPLACED"
SNAPSHOT_CLEARED = "SNAPSHOT_CLEARED"
ACCOUNT_ADDED = "ACCOUNT_ADDED"
ACCOUNT_UPDATED = "ACCOUNT_UPDATED"
ACCOUNT_DELETED = "ACCOUNT_DELETED"
TRANSACTION_ADDED = "TRANSACTION_ADDED"
TRANSACTION_DELETED = "TRANSACTION_DELETED"
BUDGET_ADDED = "BUDGET_ADDED"
BILL_ADDED = "BILL_ADDED"
BILL_UPDATED = "BILL_UPDATED"
BILL_DELETED = "BILL_DELETED"
BILL_PAID = "BILL_PAID"
CATEGORY_ADDED = "CATEGORY_ADDED"
BALANCE_ADJUSTED = "BALANCE_ADJUSTED"
BUDGET_ALERT = "BUDGET_ALERT"
BALANCE_ALERT = "BALANCE_ALERT"

STORE_EVENTS = (
    SNAPSHOT_REPLACED, SNAPSHOT_CLEARED, ACCOUNT_ADDED, ACCOUNT_UPDATED, ACCOUNT_DELETED,
    TRANSACTION_ADDED, TRANSACTION_DELETED, BUDGET_ADDED, BILL_ADDED, BILL_UPDATED,
    BILL_DELETED, BILL_PAID, CATEGORY_ADDED, BALANCE_ADJUSTED,
)


def check_budget_handler(event: Event, payload: dict) -> dict:
    """Report budgets of the touched category that are spent past their limit."""

    snapshot: Snapshot = payload["snapshot"]
    tx = payload.get("transaction")
    if tx is None or tx.type != "expense":
        return {}

    alerts = []
    for budget in snapshot.budgets:
        if budget.category_id != tx.category_id:
            continue
        if not (budget.start_date <= tx.date[:10] <= budget.end_date):
            continue
        usage = budget_utilization(snapshot, budget)
        if usage.percentage > 100:
            alerts.append({
                "alert": f"Budget exceeded for category {budget.category_id}: "
                         f"{usage.spent} / {budget.amount}",
                "budget_id": budget.id,
                "category_id": budget.category_id,
                "spent": usage.spent,
                "limit": budget.amount,
            })
    if not alerts:
        return {}
    return {"alerts": alerts}


def check_balance_handler(event: Event, payload: dict) -> dict:
    snapshot: Snapshot = payload["snapshot"]
    account_id = payload.get("account_id")
    tx = payload.get("transaction")
    if account_id is None and tx is not None:
        account_id = tx.account_id

    for account in snapshot.accounts:
        if account.id == account_id and account.balance < 0 and account.type != "credit":
            return {
                "alert": f"Balance alert: {account.name} is at {account.balance} {account.currency}",
                "account_id": account.id,
                "balance": account.balance,
            }
    return {}


def make_json_mirror(path: str) -> Handler:
    """Return a handler that writes the whole snapshot to ``path`` as JSON."""

    def mirror_handler(event: Event, payload: dict) -> dict:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(snapshot_to_dict(payload["snapshot"]), f, indent=2)
        return {"mirrored": path}

    return mirror_handler


def register_default_handlers(bus: EventBus, alerts: MutableSequence[dict]) -> None:
    """Wire the alert checks so that their findings land in ``alerts``."""

    def _collect(handler: Handler, alert_name: str) -> Handler:
        def _run(event: Event, payload: dict) -> dict:
            result = handler(event, payload)
            found = result.get("alerts") or ([result] if result.get("alert") else [])
            for alert in found:
                logger.info(alert["alert"])
                alerts.append(alert)
                bus.publish(alert_name, alert)
            return result
        _run.__name__ = handler.__name__
        return _run

    for name in (TRANSACTION_ADDED, BILL_PAID):
        bus.subscribe(name, _collect(check_budget_handler, BUDGET_ALERT))
        bus.subscribe(name, _collect(check_balance_handler, BALANCE_ALERT))
    bus.subscribe(BALANCE_ADJUSTED, _collect(check_balance_handler, BALANCE_ALERT))
