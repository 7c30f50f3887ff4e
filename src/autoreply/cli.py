"""CLI query interface for the reply ledger.

Provides an argparse-based command-line tool for listing handled threads
with filters by status and a shorthand ``--last`` duration, and for
pruning old rows.  Output formats: table (default) or JSON.

Usage::

    python -m autoreply.cli --status replied --last 7d
    python -m autoreply.cli --format json --limit 200
    python -m autoreply.cli --prune-days 30
"""

from __future__ import annotations

import argparse
import json
from datetime import UTC, datetime, timedelta
from typing import Any

from autoreply.domain.types import LedgerStatus
from autoreply.state.schema import close_ledger_db, open_ledger_db
from autoreply.state.store import ReplyLedger


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser for ledger queries.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(description="Query the autoreply ledger")

    parser.add_argument(
        "--status",
        type=str,
        choices=[s.value for s in LedgerStatus],
        help="Filter by ledger status",
    )
    parser.add_argument(
        "--last",
        type=str,
        help='Shorthand duration (e.g., "7d", "24h")',
    )
    parser.add_argument(
        "--format",
        type=str,
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=50,
        help="Maximum results (default: 50)",
    )
    parser.add_argument(
        "--prune-days",
        type=int,
        help="Delete rows older than this many days instead of listing",
    )
    parser.add_argument(
        "--db",
        type=str,
        default="data/ledger.db",
        help="Path to ledger database (default: data/ledger.db)",
    )

    return parser


def parse_last_duration(last: str) -> str:
    """Convert a shorthand duration to an ISO 8601 timestamp string.

    Supported formats:
        - ``Nd`` -- N days ago (e.g., ``7d``)
        - ``Nh`` -- N hours ago (e.g., ``24h``)

    Args:
        last: Duration string like ``"7d"`` or ``"24h"``.

    Returns:
        ISO 8601 date-time string for the computed past time.

    Raises:
        ValueError: If the format is not recognized.
    """
    if not last or len(last) < 2:
        msg = f"Unrecognized duration format: {last!r}"
        raise ValueError(msg)

    unit = last[-1]
    try:
        value = int(last[:-1])
    except ValueError:
        msg = f"Unrecognized duration format: {last!r}"
        raise ValueError(msg) from None

    now = datetime.now(tz=UTC)

    if unit == "d":
        result = now - timedelta(days=value)
    elif unit == "h":
        result = now - timedelta(hours=value)
    else:
        msg = f"Unrecognized duration format: {last!r}. Use 'd' for days or 'h' for hours."
        raise ValueError(msg)

    return result.strftime("%Y-%m-%dT%H:%M:%SZ")


def format_table(results: list[dict[str, Any]]) -> str:
    """Format ledger rows as a human-readable table.

    Args:
        results: List of row dicts from ``ReplyLedger.entries``.

    Returns:
        Formatted table string with header row.
    """
    if not results:
        return "No results found."

    headers = ["Recorded", "Status", "Reason", "Thread", "Message"]
    widths = [20, 8, 10, 20, 20]

    def truncate(value: str | None, width: int) -> str:
        s = str(value or "")
        if len(s) > width:
            return s[: width - 3] + "..."
        return s

    lines: list[str] = []

    header_line = "  ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True))
    lines.append(header_line)
    lines.append("-" * len(header_line))

    for row in results:
        cells = [
            truncate(row.get("recorded_at"), widths[0]),
            truncate(row.get("status"), widths[1]),
            truncate(row.get("reason"), widths[2]),
            truncate(row.get("thread_id"), widths[3]),
            truncate(row.get("message_id"), widths[4]),
        ]
        lines.append("  ".join(c.ljust(w) for c, w in zip(cells, widths, strict=True)))

    return "\n".join(lines)


def format_json(results: list[dict[str, Any]]) -> str:
    """Format ledger rows as a pretty-printed JSON string."""
    return json.dumps(results, indent=2)


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, then list or prune the ledger."""
    parser = build_parser()
    args = parser.parse_args(argv)

    since = parse_last_duration(args.last) if args.last else None

    conn = open_ledger_db(args.db)
    try:
        ledger = ReplyLedger(conn)

        if args.prune_days is not None:
            removed = ledger.prune(timedelta(days=args.prune_days))
            print(f"Pruned {removed} ledger entries older than {args.prune_days} days.")
            return

        results = ledger.entries(status=args.status, since=since, limit=args.limit)
        output = format_json(results) if args.output_format == "json" else format_table(results)
        print(output)
    finally:
        close_ledger_db(conn)


if __name__ == "__main__":
    main()
