from __future__ import annotations

import anyio
from mcp.server.fastmcp import FastMCP

from dataclasses import asdict
from datetime import date

from pathlib import Path

from bill_tracker.database import fetch_instances, run_materialization
from bill_tracker.recurring import DEFAULT_MAX_ITERATIONS

server = FastMCP(name="billcycle", instructions="Expose billcycle as an MCP tool")


def _parse_day(value: str | None, field_name: str) -> date | None:
    try:
        return date.fromisoformat(value) if value else None
    except ValueError as exc:
        raise ValueError(f"Invalid {field_name}: {value}") from exc


def _serialize(obj) -> dict:
    data = asdict(obj)
    for key, value in data.items():
        if isinstance(value, date):
            data[key] = value.isoformat()
    return data


@server.tool(
    name="get_instances", description="Fetch transaction instances from the SQLite database"
)
async def get_instances(
    db_path: str,
    start_date: str | None = None,
    end_date: str | None = None,
) -> list[dict]:
    """Return a list of transaction instances from ``db_path``.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.
    start_date, end_date:
        Optional ISO formatted date strings bounding the due dates.
    """

    start = _parse_day(start_date, "start_date")
    end = _parse_day(end_date, "end_date")

    if start and end and start > end:
        raise ValueError("start_date must be on or before end_date")

    if not Path(db_path).exists():
        raise FileNotFoundError(f"Database not found: {db_path}")

    def _run() -> list[dict]:
        txs = fetch_instances(db_path, start_date=start, end_date=end)
        return [_serialize(t) for t in txs]

    return await anyio.to_thread.run_sync(_run)


@server.tool(
    name="materialize",
    description="Generate the recurring transactions due up to a date",
)
async def materialize(
    db_path: str,
    today: str,
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
) -> dict:
    """Run a materialization pass against ``db_path`` as of ``today``."""

    as_of = _parse_day(today, "today")
    if as_of is None:
        raise ValueError("today is required")

    if not Path(db_path).exists():
        raise FileNotFoundError(f"Database not found: {db_path}")

    def _run() -> dict:
        result, inserted = run_materialization(db_path, as_of, max_iterations)
        return {
            "generated": len(inserted),
            "created_instances": [_serialize(t) for t in inserted],
            "errors": [asdict(e) for e in result.errors],
            "stalled": list(result.stalled),
        }

    return await anyio.to_thread.run_sync(_run)


def main() -> None:
    server.run()


if __name__ == "__main__":
    main()
