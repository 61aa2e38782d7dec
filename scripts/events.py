#!/usr/bin/env python3
"""Inspect the persisted scheduled-events file (read-only).

Usage examples:
    # Everything, earliest first
    uv run python scripts/events.py

    # Only failed events, with their last error
    uv run python scripts/events.py --status failed

    # Events from one plugin due in the next 12 hours
    uv run python scripts/events.py --plugin tide --hours 12

    # Raw JSON
    uv run python scripts/events.py --json
"""

import argparse
import json
import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

# Allow running from project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from src.config import Settings
from src.events.models import STATUSES, ScheduledEvent


def load_events(path: Path) -> list[ScheduledEvent]:
    """Read and parse the events file. A missing file means no events."""
    if not path.exists():
        return []
    raw = json.loads(path.read_text(encoding="utf-8") or "[]")
    return [ScheduledEvent.from_dict(item) for item in raw]


def format_event(event: ScheduledEvent, now: datetime) -> str:
    """One line per event: due time, relative offset, status, id, title."""
    delta = event.scheduled_for - now
    minutes = int(delta.total_seconds() // 60)
    relative = f"in {minutes}m" if minutes >= 0 else f"{-minutes}m ago"
    line = (
        f"{event.scheduled_for.astimezone(UTC):%Y-%m-%d %H:%M:%S}Z {relative:>10s} "
        f"{event.status:9s} [{event.plugin_name}/{event.event_type}] {event.id}: {event.title}"
    )
    if event.error:
        line += f"\n    retries={event.retry_count}/{event.max_retries} error={event.error}"
    return line


def main() -> None:
    parser = argparse.ArgumentParser(description="Inspect persisted scheduled events")
    parser.add_argument("--path", type=Path, help="Events file (default: EVENTS_PATH)")
    parser.add_argument("--status", "-s", choices=STATUSES, help="Only this status")
    parser.add_argument("--plugin", "-p", help="Only events from this plugin")
    parser.add_argument("--hours", type=float, help="Only events due within the next N hours")
    parser.add_argument("--json", action="store_true", help="Print raw JSON records")
    args = parser.parse_args()

    path = args.path or Settings().events_path
    try:
        events = load_events(path)
    except (ValueError, TypeError, KeyError) as exc:
        print(f"ERROR: cannot parse {path}: {exc}", file=sys.stderr)
        sys.exit(1)

    now = datetime.now(UTC)
    if args.status:
        events = [e for e in events if e.status == args.status]
    if args.plugin:
        events = [e for e in events if e.plugin_name == args.plugin]
    if args.hours is not None:
        cutoff = now + timedelta(hours=args.hours)
        events = [e for e in events if now <= e.scheduled_for <= cutoff]
    events.sort(key=lambda e: e.scheduled_for)

    if args.json:
        print(json.dumps([e.to_dict() for e in events], indent=2))
        return

    if not events:
        print(f"No events found in {path}.")
        return

    print(f"--- {len(events)} event(s) in {path} ---\n")
    for event in events:
        print(format_event(event, now))


if __name__ == "__main__":
    main()
