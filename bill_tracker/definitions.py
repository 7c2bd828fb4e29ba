# bill_tracker/definitions.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import List

import yaml

from bill_tracker.core.models import (
    FREQUENCY_UNITS,
    TRANSACTION_TYPES,
    RecurringDefinition,
)

# Frequency names used by the original bills app.
FREQUENCY_ALIASES = {
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "yearly": "year",
}


def _parse_date(value, field_name, entry):
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value).date()
        except ValueError as exc:
            raise ValueError(
                f"Invalid {field_name} '{value}' in recurring entry: {entry}"
            ) from exc
    raise ValueError(f"Unrecognized {field_name} in recurring entry: {entry}")


def _parse_interval(value, entry) -> int:
    if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
        raise ValueError(
            f"'interval' must be a whole number, got {value!r} in recurring entry: {entry}"
        )
    try:
        interval = int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid interval '{value}' in recurring entry: {entry}"
        ) from exc
    if interval < 1:
        raise ValueError(
            "Recurring entries require 'interval' to be greater than 0."
        )
    return interval


def normalize_frequency(value) -> str:
    unit = str(value or "").strip().lower()
    unit = FREQUENCY_ALIASES.get(unit, unit)
    if unit not in FREQUENCY_UNITS:
        raise ValueError(f"Unsupported frequency '{value}'.")
    return unit


def parse_definition(entry: dict) -> RecurringDefinition:
    """Build a validated RecurringDefinition from a raw mapping."""
    payee = str(entry.get("payee_name") or "").strip()
    if not payee:
        raise ValueError(f"Missing 'payee_name' in recurring entry: {entry}")

    start_date = _parse_date(entry.get("start_date"), "start_date", entry)
    if start_date is None:
        raise ValueError(f"Missing 'start_date' in recurring entry: {entry}")
    end_date = _parse_date(entry.get("end_date"), "end_date", entry)
    if end_date is not None and end_date < start_date:
        raise ValueError(
            f"'end_date' precedes 'start_date' in recurring entry: {entry}"
        )
    next_due = _parse_date(entry.get("next_due_date"), "next_due_date", entry)
    last_generated = _parse_date(
        entry.get("last_generated_date"), "last_generated_date", entry
    )

    tx_type = str(entry.get("transaction_type", "expense")).strip().lower()
    if tx_type not in TRANSACTION_TYPES:
        raise ValueError(f"Unsupported transaction_type '{tx_type}'.")

    if "frequency_unit" in entry:
        frequency = normalize_frequency(entry["frequency_unit"])
    else:
        frequency = normalize_frequency(entry.get("frequency"))

    interval = _parse_interval(entry.get("interval", 1), entry)
    try:
        amount = float(entry.get("amount", 0.0))
    except (TypeError, ValueError) as exc:
        raise ValueError(
            f"Invalid amount '{entry.get('amount')}' in recurring entry: {entry}"
        ) from exc

    category = entry.get("category_ref")
    return RecurringDefinition(
        id=str(entry.get("id") or uuid.uuid4().hex),
        payee_name=payee,
        amount=amount,
        transaction_type=tx_type,
        frequency_unit=frequency,
        interval=interval,
        start_date=start_date,
        next_due_date=next_due or start_date,
        end_date=end_date,
        category_ref=str(category) if category not in (None, "") else None,
        last_generated_date=last_generated,
    )


def load_definitions(path) -> List[RecurringDefinition]:
    """Load recurring definitions from a YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or []
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of recurring entries in {path}")
    return [parse_definition(entry) for entry in data]
