# bill_tracker/recurring.py
from __future__ import annotations

import logging
import uuid
from calendar import monthrange
from dataclasses import replace
from datetime import date, datetime, timedelta
from typing import Callable, Iterable, List, Optional, Set, Tuple

from bill_tracker.core.models import (
    FREQUENCY_UNITS,
    MaterializationError,
    MaterializationResult,
    RecurringDefinition,
    TransactionInstance,
)

logger = logging.getLogger(__name__)

# Ten years of daily occurrences.
DEFAULT_MAX_ITERATIONS = 3660


class InvalidCadence(ValueError):
    """Raised for an unknown frequency unit or a non-positive interval."""


class CalendarOverflow(ValueError):
    """Raised when a definition's next occurrence falls past ``date.max``."""


def _add_months(original_date: date, months: int) -> date:
    month_index = original_date.month - 1 + months
    year = original_date.year + month_index // 12
    month = month_index % 12 + 1
    day = min(original_date.day, monthrange(year, month)[1])
    return date(year, month, day)


def validate_cadence(frequency_unit, interval) -> None:
    if frequency_unit not in FREQUENCY_UNITS:
        raise InvalidCadence(f"Unsupported frequency unit '{frequency_unit}'.")
    if isinstance(interval, bool) or not isinstance(interval, int):
        raise InvalidCadence(f"Interval must be an integer, got {interval!r}.")
    if interval < 1:
        raise InvalidCadence(f"Interval must be at least 1, got {interval}.")


def compute_next_occurrence(current: date, frequency_unit: str, interval: int) -> date:
    """Return the occurrence that follows ``current`` for the given cadence.

    Monthly and yearly steps keep the day of month, clamped to the last day
    of the target month (Jan 31 + 1 month is Feb 28 or 29, Feb 29 + 1 year
    is Feb 28 in a common year).
    """
    validate_cadence(frequency_unit, interval)
    if frequency_unit == "day":
        return current + timedelta(days=interval)
    if frequency_unit == "week":
        return current + timedelta(weeks=interval)
    if frequency_unit == "month":
        return _add_months(current, interval)
    return _add_months(current, 12 * interval)


def _instance_keys(instances: Iterable[TransactionInstance]) -> Set[Tuple[str, date]]:
    return {
        (tx.recurring_definition_id, tx.due_date)
        for tx in instances
        if tx.recurring_definition_id is not None
    }


def _new_instance_id() -> str:
    return uuid.uuid4().hex


def _materialize_definition(
    definition: RecurringDefinition,
    seen: Set[Tuple[str, date]],
    today: date,
    max_iterations: int,
    id_factory: Callable[[], str],
) -> Tuple[RecurringDefinition, List[TransactionInstance], bool]:
    validate_cadence(definition.frequency_unit, definition.interval)

    cursor = definition.next_due_date
    if cursor < definition.start_date:
        logger.debug(
            "Resetting cursor of %s from %s to start date %s",
            definition.id, cursor, definition.start_date,
        )
        cursor = definition.start_date
    last_generated = definition.last_generated_date
    end_date = definition.end_date

    created: List[TransactionInstance] = []
    stalled = False
    iterations = 0
    while cursor <= today and (end_date is None or cursor <= end_date):
        if iterations >= max_iterations:
            logger.warning(
                "Definition %s stopped after %d occurrences at %s; "
                "it will resume on the next pass",
                definition.id, iterations, cursor,
            )
            stalled = True
            break
        iterations += 1

        if (definition.id, cursor) not in seen:
            created.append(
                TransactionInstance(
                    id=id_factory(),
                    payee_name=definition.payee_name,
                    amount=definition.amount,
                    transaction_type=definition.transaction_type,
                    due_date=cursor,
                    category_ref=definition.category_ref,
                    is_paid=False,
                    recurring_definition_id=definition.id,
                )
            )
            last_generated = cursor

        try:
            cursor = compute_next_occurrence(
                cursor, definition.frequency_unit, definition.interval
            )
        except (ValueError, OverflowError) as exc:
            raise CalendarOverflow(
                f"No occurrence after {cursor.isoformat()} fits the calendar: {exc}"
            ) from exc

    updated = replace(
        definition, next_due_date=cursor, last_generated_date=last_generated
    )
    return updated, created, stalled


def materialize_due_instances(
    definitions: Iterable[RecurringDefinition],
    existing_instances: Iterable[TransactionInstance],
    today: date,
    *,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    id_factory: Optional[Callable[[], str]] = None,
) -> MaterializationResult:
    """Generate every missing instance due on or before ``today``.

    Parameters
    ----------
    definitions:
        Normalized recurring definitions. They are not mutated; advanced
        copies are returned in ``updated_definitions``.
    existing_instances:
        Instances already stored. Any instance carrying the same
        ``(recurring_definition_id, due_date)`` pair suppresses generation.
    today:
        The reference date supplied by the caller's clock.
    max_iterations:
        Per-definition ceiling on loop iterations in a single pass. A
        definition hitting it keeps its partially advanced cursor and is
        listed in ``stalled``.
    id_factory:
        Callable producing ids for new instances.

    A definition with an invalid cadence, or whose schedule runs past the
    last representable date, is reported in ``errors``. Nothing it produced
    in this pass is kept and it is left out of ``updated_definitions``; the
    rest of the batch still runs.
    """
    if isinstance(today, datetime) or not isinstance(today, date):
        raise TypeError(f"today must be a date, got {today!r}")
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")

    make_id = id_factory or _new_instance_id
    seen = _instance_keys(existing_instances)
    result = MaterializationResult()

    for definition in definitions:
        try:
            updated, created, stalled = _materialize_definition(
                definition, seen, today, max_iterations, make_id
            )
        except (InvalidCadence, CalendarOverflow) as exc:
            logger.warning("Skipping recurring definition %s: %s", definition.id, exc)
            result.errors.append(MaterializationError(definition.id, str(exc)))
            continue

        seen.update((definition.id, tx.due_date) for tx in created)
        result.created_instances.extend(created)
        result.generated_count += len(created)
        result.updated_definitions.append(updated)
        if stalled:
            result.stalled.append(definition.id)

    logger.debug(
        "Materialized %d instance(s) across %d definition(s) as of %s",
        result.generated_count, len(result.updated_definitions), today,
    )
    return result
