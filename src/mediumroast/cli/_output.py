"""Output formatting helpers for the CLI."""

from __future__ import annotations

import json
import sys
from typing import Any

import typer

from mediumroast.cli import _exitcodes as ec
from mediumroast.result import Result


def print_table(headers: list[str], rows: list[list[Any]]) -> None:
    """Print rows as aligned text columns under ``headers``."""
    if not rows:
        return

    widths = [len(h) for h in headers]
    str_rows = [["" if v is None else str(v) for v in row] for row in rows]
    for row in str_rows:
        for i, val in enumerate(row):
            widths[i] = max(widths[i], len(val))

    print("  ".join(h.ljust(widths[i]) for i, h in enumerate(headers)))
    print("  ".join("-" * w for w in widths))
    for row in str_rows:
        print("  ".join(val.ljust(widths[i]) for i, val in enumerate(row)))


def print_object(data: Any) -> None:
    """Print a single object or list as key-value pairs."""
    if isinstance(data, list):
        for item in data:
            if isinstance(item, dict):
                for k, v in item.items():
                    print(f"  {k}: {v}")
                print()
            else:
                print(f"  {item}")
        return

    if isinstance(data, dict):
        for k, v in data.items():
            print(f"{k}: {v}")
        return

    print(data)


def print_error(msg: str) -> None:
    """Print an error message to stderr."""
    print(f"Error: {msg}", file=sys.stderr)


def emit(result: Result[Any], *, json_mode: bool, show_payload: bool = True) -> None:
    """Print an envelope and exit non-zero when it is a failure."""
    if json_mode:
        payload = result.payload
        if hasattr(payload, "to_dict"):
            payload = payload.to_dict()
        envelope = {"success": result.success, "message": result.message, "payload": payload}
        print(json.dumps(envelope, indent=2, default=str))
    elif result.success:
        if show_payload and result.payload is not None:
            print_object(result.payload)
            print(result.message["status_msg"], file=sys.stderr)
        else:
            print(result.message["status_msg"])
    else:
        print_error(f"[{result.status_code}] {result.message['status_msg']}")
    if not result.success:
        raise typer.Exit(ec.FAILURE)
