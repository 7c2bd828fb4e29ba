from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, replace
from datetime import date
from pathlib import Path
from typing import List, Optional, Tuple

from bill_tracker.core.models import (
    MaterializationResult,
    RecurringDefinition,
    TransactionInstance,
)
from bill_tracker.definitions import parse_definition
from bill_tracker.recurring import DEFAULT_MAX_ITERATIONS, materialize_due_instances

logger = logging.getLogger(__name__)

_DEFINITION_COLUMNS = (
    "id",
    "payee_name",
    "amount",
    "transaction_type",
    "category_ref",
    "frequency_unit",
    "interval",
    "start_date",
    "end_date",
    "next_due_date",
    "last_generated_date",
)

_INSTANCE_COLUMNS = (
    "id",
    "payee_name",
    "amount",
    "transaction_type",
    "category_ref",
    "due_date",
    "is_paid",
    "recurring_definition_id",
)

_DATE_FIELDS = {"start_date", "end_date", "next_due_date", "last_generated_date"}
_EDITABLE_FIELDS = set(_DEFINITION_COLUMNS) - {"id"}


def _init_db(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS recurring_definitions (
            id TEXT PRIMARY KEY,
            payee_name TEXT NOT NULL,
            amount REAL NOT NULL,
            transaction_type TEXT NOT NULL,
            category_ref TEXT,
            frequency_unit TEXT NOT NULL,
            interval INTEGER NOT NULL,
            start_date TEXT NOT NULL,
            end_date TEXT,
            next_due_date TEXT NOT NULL,
            last_generated_date TEXT
        )
        """
    )
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id TEXT PRIMARY KEY,
            payee_name TEXT NOT NULL,
            amount REAL NOT NULL,
            transaction_type TEXT NOT NULL,
            category_ref TEXT,
            due_date TEXT NOT NULL,
            is_paid INTEGER NOT NULL DEFAULT 0,
            recurring_definition_id TEXT,
            UNIQUE(recurring_definition_id, due_date)
        )
        """
    )
    conn.commit()


def _connect(db_path) -> sqlite3.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(path)
    _init_db(conn)
    return conn


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _from_iso(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


def _definition_row(definition: RecurringDefinition) -> tuple:
    data = asdict(definition)
    return tuple(
        _iso(data[col]) if col in _DATE_FIELDS else data[col]
        for col in _DEFINITION_COLUMNS
    )


def _row_to_definition(row) -> RecurringDefinition:
    return RecurringDefinition(
        id=row[0],
        payee_name=row[1],
        amount=float(row[2]),
        transaction_type=row[3],
        category_ref=row[4],
        frequency_unit=row[5],
        interval=int(row[6]),
        start_date=date.fromisoformat(row[7]),
        end_date=_from_iso(row[8]),
        next_due_date=date.fromisoformat(row[9]),
        last_generated_date=_from_iso(row[10]),
    )


def _instance_row(tx: TransactionInstance) -> tuple:
    return (
        tx.id,
        tx.payee_name.strip(),
        float(tx.amount),
        tx.transaction_type,
        tx.category_ref,
        tx.due_date.isoformat(),
        int(tx.is_paid),
        tx.recurring_definition_id,
    )


def _row_to_instance(row) -> TransactionInstance:
    return TransactionInstance(
        id=row[0],
        payee_name=row[1],
        amount=float(row[2]),
        transaction_type=row[3],
        category_ref=row[4],
        due_date=date.fromisoformat(row[5]),
        is_paid=bool(row[6]),
        recurring_definition_id=row[7],
    )


def add_definition(db_path: str, definition: RecurringDefinition) -> RecurringDefinition:
    """Validate and store a new recurring definition.

    A definition whose cursor lies before its start date is stored with the
    cursor at ``start_date``, the state every new definition starts from.
    """
    definition = parse_definition(asdict(definition))
    if definition.next_due_date < definition.start_date:
        definition = replace(definition, next_due_date=definition.start_date)
    conn = _connect(db_path)
    try:
        placeholders = ", ".join("?" for _ in _DEFINITION_COLUMNS)
        conn.execute(
            f"INSERT INTO recurring_definitions ({', '.join(_DEFINITION_COLUMNS)}) "
            f"VALUES ({placeholders})",
            _definition_row(definition),
        )
        conn.commit()
    finally:
        conn.close()
    return definition


def get_definition(db_path: str, definition_id: str) -> Optional[RecurringDefinition]:
    conn = _connect(db_path)
    try:
        row = conn.execute(
            f"SELECT {', '.join(_DEFINITION_COLUMNS)} FROM recurring_definitions "
            "WHERE id = ?",
            (definition_id,),
        ).fetchone()
    finally:
        conn.close()
    return _row_to_definition(row) if row else None


def fetch_definitions(db_path: str) -> List[RecurringDefinition]:
    conn = _connect(db_path)
    try:
        rows = conn.execute(
            f"SELECT {', '.join(_DEFINITION_COLUMNS)} FROM recurring_definitions "
            "ORDER BY next_due_date, payee_name"
        ).fetchall()
    finally:
        conn.close()
    return [_row_to_definition(r) for r in rows]


def update_definition(db_path: str, definition_id: str, **changes) -> RecurringDefinition:
    """Apply field edits to a stored definition.

    The edited definition is validated as a whole before it is written, so
    a bad value raises ``ValueError`` and leaves the stored row unchanged.
    The cursor is not recomputed when the cadence or start date changes; the
    next materialization pass realigns it and skips due dates that already
    have an instance.
    """
    unknown = set(changes) - _EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown definition field(s): {', '.join(sorted(unknown))}")
    current = get_definition(db_path, definition_id)
    if current is None:
        raise KeyError(definition_id)
    if not changes:
        return current

    updated = parse_definition({**asdict(current), **changes})
    assignments = ", ".join(f"{col} = ?" for col in _DEFINITION_COLUMNS[1:])
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            f"UPDATE recurring_definitions SET {assignments} WHERE id = ?",
            _definition_row(updated)[1:] + (definition_id,),
        )
        conn.commit()
        if cur.rowcount == 0:
            raise KeyError(definition_id)
    finally:
        conn.close()
    return updated


def delete_definition(db_path: str, definition_id: str) -> bool:
    """Remove a definition. Instances it generated are kept."""
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            "DELETE FROM recurring_definitions WHERE id = ?", (definition_id,)
        )
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def add_instance(db_path: str, instance: TransactionInstance) -> bool:
    """Store a single instance, returning False if its key already exists."""
    conn = _connect(db_path)
    try:
        cur = conn.execute(
            f"INSERT OR IGNORE INTO transactions ({', '.join(_INSTANCE_COLUMNS)}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            _instance_row(instance),
        )
        conn.commit()
        return cur.rowcount > 0
    finally:
        conn.close()


def fetch_instances(
    db_path: str,
    recurring_definition_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
) -> List[TransactionInstance]:
    """Retrieve transaction instances from the SQLite database.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.
    recurring_definition_id:
        Optional id restricting results to one definition's instances.
    start_date:
        Optional start date to filter instances (inclusive).
    end_date:
        Optional end date to filter instances (inclusive).
    """
    conditions: list[str] = []
    params: list[str] = []
    if recurring_definition_id:
        conditions.append("recurring_definition_id = ?")
        params.append(recurring_definition_id)
    if start_date:
        conditions.append("due_date >= ?")
        params.append(start_date.isoformat())
    if end_date:
        conditions.append("due_date <= ?")
        params.append(end_date.isoformat())
    query = f"SELECT {', '.join(_INSTANCE_COLUMNS)} FROM transactions"
    if conditions:
        query += " WHERE " + " AND ".join(conditions)
    query += " ORDER BY due_date, payee_name"

    conn = _connect(db_path)
    try:
        rows = conn.execute(query, params).fetchall()
    finally:
        conn.close()
    return [_row_to_instance(r) for r in rows]


def save_materialization(
    db_path: str, result: MaterializationResult
) -> List[TransactionInstance]:
    """Persist a materialization pass in a single transaction.

    Instances whose ``(recurring_definition_id, due_date)`` key is already
    stored are ignored, so overlapping passes cannot duplicate an instance.
    A stored cursor is never moved backwards and a stored
    ``last_generated_date`` is never cleared. Returns the instances that
    were actually inserted.
    """
    conn = _connect(db_path)
    inserted: List[TransactionInstance] = []
    try:
        with conn:
            for tx in result.created_instances:
                cur = conn.execute(
                    f"INSERT OR IGNORE INTO transactions ({', '.join(_INSTANCE_COLUMNS)}) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    _instance_row(tx),
                )
                if cur.rowcount:
                    inserted.append(tx)
            for definition in result.updated_definitions:
                conn.execute(
                    """
                    UPDATE recurring_definitions
                    SET next_due_date = ?,
                        last_generated_date = COALESCE(?, last_generated_date)
                    WHERE id = ? AND next_due_date <= ?
                    """,
                    (
                        definition.next_due_date.isoformat(),
                        _iso(definition.last_generated_date),
                        definition.id,
                        definition.next_due_date.isoformat(),
                    ),
                )
    finally:
        conn.close()

    skipped = len(result.created_instances) - len(inserted)
    if skipped:
        logger.info("Ignored %d instance(s) already stored by another pass", skipped)
    return inserted


def run_materialization(
    db_path: str,
    today: date,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> Tuple[MaterializationResult, List[TransactionInstance]]:
    """Load definitions and instances, run a pass and persist its output.

    Returns the pass result and the instances that were actually stored.
    """
    definitions = fetch_definitions(db_path)
    existing = [
        tx for tx in fetch_instances(db_path) if tx.recurring_definition_id
    ]
    result = materialize_due_instances(
        definitions, existing, today, max_iterations=max_iterations
    )
    inserted = save_materialization(db_path, result)
    return result, inserted
