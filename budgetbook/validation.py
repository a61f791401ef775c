"""Payload checks run before any remote call or state change.

Each ``validate_*`` takes the raw fields of an intent and returns
``Right(fields)`` with amounts coerced to ``Decimal`` and dates normalised to
``YYYY-MM-DD``, or ``Left`` with a ``validation_error`` dict naming the field.
"""

import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from budgetbook.domain import ACCOUNT_TYPES, BUDGET_PERIODS, TRANSACTION_TYPES
from budgetbook.functional import Either, Left, Right

_IDENTIFIER = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]*$")


def invalid(field: str, message: str, **extra) -> Left:
    return Left({"error": "validation_error", "field": field, "message": message, **extra})


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        d = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return d if d.is_finite() else None


def to_iso_date(value: Any) -> Optional[str]:
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def to_flag(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
    return None


def _required(fields: dict, *names: str) -> Optional[Left]:
    for name in names:
        value = fields.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            return invalid(name, f"Missing required field: {name}")
    return None


def _identifiers(fields: dict, *names: str) -> Optional[Left]:
    for name in names:
        if not _IDENTIFIER.match(str(fields[name])):
            return invalid(name, f"Invalid {name} format: {fields[name]}")
    return None


def _positive(fields: dict, name: str) -> Either[dict, Decimal]:
    amount = to_decimal(fields.get(name))
    if amount is None:
        return invalid(name, f"{name} is not a number: {fields.get(name)!r}")
    if amount <= 0:
        return invalid(name, f"{name} must be positive: {amount}")
    return Right(amount)


def validate_account(fields: dict, default_currency: str = "IDR") -> Either[dict, dict]:
    missing = _required(fields, "name", "type")
    if missing:
        return missing
    if fields["type"] not in ACCOUNT_TYPES:
        return invalid("type", f"Invalid account type: {fields['type']}")
    balance = to_decimal(fields.get("balance", 0))
    if balance is None:
        return invalid("balance", f"balance is not a number: {fields.get('balance')!r}")
    return Right({
        "name": fields["name"].strip(),
        "type": fields["type"],
        "balance": balance,
        "currency": (fields.get("currency") or default_currency).upper(),
    })


def validate_transaction(fields: dict) -> Either[dict, dict]:
    missing = _required(fields, "account_id", "category_id", "amount", "date", "type")
    if missing:
        return missing
    bad_id = _identifiers(fields, "account_id", "category_id")
    if bad_id:
        return bad_id
    if fields["type"] not in TRANSACTION_TYPES:
        return invalid("type", f"Invalid transaction type: {fields['type']}")
    tx_date = to_iso_date(fields["date"])
    if tx_date is None:
        return invalid("date", f"Invalid date: {fields['date']!r}")
    return _positive(fields, "amount").map(lambda amount: {
        "account_id": fields["account_id"],
        "category_id": fields["category_id"],
        "amount": amount,
        "description": (fields.get("description") or "").strip(),
        "date": tx_date,
        "type": fields["type"],
    })


def validate_budget(fields: dict) -> Either[dict, dict]:
    missing = _required(fields, "category_id", "amount", "period", "start_date", "end_date")
    if missing:
        return missing
    bad_id = _identifiers(fields, "category_id")
    if bad_id:
        return bad_id
    if fields["period"] not in BUDGET_PERIODS:
        return invalid("period", f"Invalid budget period: {fields['period']}")
    start, end = to_iso_date(fields["start_date"]), to_iso_date(fields["end_date"])
    if start is None:
        return invalid("start_date", f"Invalid date: {fields['start_date']!r}")
    if end is None:
        return invalid("end_date", f"Invalid date: {fields['end_date']!r}")
    if start > end:
        return invalid("end_date", "Budget start date must be before end date")
    return _positive(fields, "amount").map(lambda amount: {
        "category_id": fields["category_id"],
        "amount": amount,
        "period": fields["period"],
        "start_date": start,
        "end_date": end,
    })


def validate_bill(fields: dict) -> Either[dict, dict]:
    missing = _required(fields, "name", "amount", "due_date", "account_id", "category_id")
    if missing:
        return missing
    bad_id = _identifiers(fields, "account_id", "category_id")
    if bad_id:
        return bad_id
    try:
        due_date = int(fields["due_date"])
    except (TypeError, ValueError):
        return invalid("due_date", f"Invalid due date: {fields['due_date']!r}")
    if not 1 <= due_date <= 31:
        return invalid("due_date", f"Due date must be a day of month (1-31): {due_date}")
    last_paid = str(fields.get("last_paid_date") or "").strip() or None
    if last_paid is not None:
        last_paid = to_iso_date(last_paid)
        if last_paid is None:
            return invalid("last_paid_date", f"Invalid date: {fields['last_paid_date']!r}")
    is_active = to_flag(fields.get("is_active", True))
    if is_active is None:
        return invalid("is_active", f"is_active is not a boolean: {fields['is_active']!r}")
    return _positive(fields, "amount").map(lambda amount: {
        "name": fields["name"].strip(),
        "amount": amount,
        "due_date": due_date,
        "account_id": fields["account_id"],
        "category_id": fields["category_id"],
        "is_active": is_active,
        "last_paid_date": last_paid,
    })


def validate_category(fields: dict) -> Either[dict, dict]:
    missing = _required(fields, "name", "type")
    if missing:
        return missing
    if fields["type"] not in TRANSACTION_TYPES:
        return invalid("type", f"Invalid category type: {fields['type']}")
    return Right({
        "name": fields["name"].strip(),
        "type": fields["type"],
        "icon": fields.get("icon") or "",
        "color": fields.get("color") or "",
    })
