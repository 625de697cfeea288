"""Quick demo script for the inbound control endpoint.

Sends one batch patch to a running playout server and prints the rundown as
external controllers see it afterwards.

Examples
--------
Take item 0 on air with a new title::

    python scripts/demo_control_patch.py --id 0 --state In --field title="Breaking news"

Start a 30 second countdown on item 2 when it goes live::

    python scripts/demo_control_patch.py --id 2 --field timer=::add-30000

Point at another server::

    python scripts/demo_control_patch.py --url http://studio-box:8044 --id 1 --state Out1
"""

from __future__ import annotations

import argparse
import json
import sys
from typing import Iterable

import httpx


def parse_args(argv: Iterable[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Playout control patch demo")
    parser.add_argument("--url", default="http://127.0.0.1:8044", help="Base URL of the playout server.")
    parser.add_argument("--id", type=int, required=True, help="Rundown item id to patch.")
    parser.add_argument("--state", default=None, help="Animation state (Out1, In, Out2).")
    parser.add_argument(
        "--field",
        action="append",
        default=[],
        help="Field value as name=value; may be repeated.",
    )
    return parser.parse_args(argv)


def build_batch(item_id: int, state: str | None, fields: list[str]) -> list[dict]:
    item: dict = {"id": item_id}
    if state:
        item["state"] = state
    payload = {}
    for entry in fields:
        name, sep, value = entry.partition("=")
        if not sep:
            raise SystemExit(f"--field expects name=value, got {entry!r}")
        payload[name] = value
    if payload:
        item["payload"] = payload
    return [item]


def main(argv: Iterable[str] | None = None) -> int:
    args = parse_args(argv)
    batch = build_batch(args.id, args.state, args.field)

    with httpx.Client(base_url=args.url, timeout=10.0) as client:
        response = client.patch("/control", json=batch)
        print(f"PATCH /control -> {response.status_code}")
        print(json.dumps(response.json(), indent=2))
        if response.is_error:
            return 1

        snapshot = client.get("/control")
        snapshot.raise_for_status()
        print(json.dumps(snapshot.json(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
