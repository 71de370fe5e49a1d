#!/usr/bin/env python3
"""Inspect and drive a JSON-file marker store from the command line.

Usage
-----
::

    export MARKERS_STORE_PATH=data/markers.json
    python scripts/markers_cli.py vote --reporter alice green 49.4229 26.9871
    python scripts/markers_cli.py list
    python scripts/markers_cli.py show <marker-id>
    python scripts/markers_cli.py history <marker-id> --json

Options::

    --store FILE     Store file (default: $MARKERS_STORE_PATH or data/markers.json)
    --json           Output as machine-readable JSON
    --verbose, -v    Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pymarkers import (  # noqa: E402
    ClearedResult,
    Marker,
    MarkersConfig,
    MarkersError,
    ReconciliationEngine,
)

_DEFAULT_STORE = "data/markers.json"


def _section(title: str) -> str:
    line = "=" * 60
    return f"\n{line}\n  {title}\n{line}"


def _marker_line(marker: Marker) -> str:
    confirm = ""
    if marker.confirmation_count or marker.pending_intent is not None:
        confirm = f" ({marker.confirmation_count} votes, heading {marker.pending_intent})"
    return (
        f"  {marker.id}  {marker.status:<6}{confirm}  "
        f"({marker.latitude:.6f}, {marker.longitude:.6f})  "
        f"red={marker.red_press_count} green={marker.green_press_count}  "
        f"last={marker.last_action_at.isoformat()}"
    )


def _emit(payload: Any, text: str, json_mode: bool) -> None:
    if json_mode:
        print(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        print(text)


async def _run(args: argparse.Namespace) -> int:
    config = MarkersConfig.from_env(store_path=args.store)

    async with ReconciliationEngine(config=config) as engine:
        if args.command == "vote":
            outcome = await engine.submit_vote(
                args.reporter,
                args.latitude,
                args.longitude,
                args.color,
                request_id=args.request_id,
            )
            if isinstance(outcome, ClearedResult):
                text = f"Cleared red marker {outcome.marker_id} at {outcome.distance_meters:.1f} m"
            else:
                text = _marker_line(outcome)
            _emit(outcome.model_dump(mode="json", by_alias=True), text, args.json_mode)

        elif args.command == "list":
            markers = sorted(await engine.all_markers(), key=lambda m: m.id)
            lines = [_section(f"MARKERS ({len(markers)})"), *(_marker_line(m) for m in markers)]
            _emit([m.model_dump(mode="json", by_alias=True) for m in markers], "\n".join(lines), args.json_mode)

        elif args.command == "show":
            details = await engine.get_marker(args.marker_id)
            lines = [
                _section(f"MARKER {details.marker.id}"),
                _marker_line(details.marker),
                f"  interactions : {details.interaction_count}",
                f"  events       : {details.history_length}",
            ]
            if details.latest_event is not None:
                latest = details.latest_event
                lines.append(
                    f"  latest       : {latest.action} by {latest.color} vote at {latest.timestamp.isoformat()}"
                )
            _emit(details.model_dump(mode="json", by_alias=True), "\n".join(lines), args.json_mode)

        elif args.command == "history":
            events = await engine.history_for(args.marker_id)
            lines = [_section(f"HISTORY {args.marker_id} ({len(events)})")]
            for event in events:
                lines.append(
                    f"  {event.timestamp.isoformat()}  {event.color:<5} {event.action:<9} "
                    f"{event.prior_status or '-'} -> {event.resulting_status}  {event.distance_meters:.1f} m"
                )
            _emit([e.model_dump(mode="json", by_alias=True) for e in events], "\n".join(lines), args.json_mode)

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Inspect and drive a pymarkers JSON store.")
    parser.add_argument("--store", help=f"Store file (default: $MARKERS_STORE_PATH or {_DEFAULT_STORE})")
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    vote = sub.add_parser("vote", help="Submit a vote")
    vote.add_argument("color", choices=["green", "red"])
    vote.add_argument("latitude", type=float)
    vote.add_argument("longitude", type=float)
    vote.add_argument("--reporter", required=True, help="Opaque reporter identity")
    vote.add_argument("--request-id", help="Deduplication key for retried votes")

    sub.add_parser("list", help="List all markers")

    show = sub.add_parser("show", help="Show one marker with its latest event")
    show.add_argument("marker_id")

    history = sub.add_parser("history", help="Show the vote history of a marker")
    history.add_argument("marker_id")

    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    try:
        if args.store is None:
            args.store = MarkersConfig.from_env().store_path or _DEFAULT_STORE
        return asyncio.run(_run(args))
    except MarkersError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
