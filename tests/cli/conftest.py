"""Shared fixtures for CLI tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import pytest
from typer.testing import CliRunner

from mediumroast.cli import app

if TYPE_CHECKING:
    from click.testing import Result


def _write(path: Path, data) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data, indent=2))


@pytest.fixture
def runner():
    """Create a CLI test runner."""
    return CliRunner()


@pytest.fixture
def backend_dir(tmp_path):
    """A file:// backend seeded with studies, companies and usage data."""
    root = tmp_path / "repo"
    _write(
        root / "Studies" / "studies.json",
        [
            {"name": "Study 1", "status": "active", "description": "Edge compute"},
            {"name": "Study 2", "status": "inactive", "description": "Robotics"},
        ],
    )
    _write(
        root / "Companies" / "companies.json",
        [
            {
                "name": "Acme",
                "status": "active",
                "linked_studies": {"Study 1": {"linked_date": "2024-01-01T00:00:00+00:00"}},
            }
        ],
    )
    _write(root / "Interactions" / "interactions.json", [])
    _write(root / ".usage" / "users.json", [{"login": "octocat"}])
    return root


@pytest.fixture
def invoke(runner, backend_dir) -> Callable[..., "Result"]:
    """Invoke the CLI against the seeded backend, logging only critical events."""

    def _invoke(args: list[str], *, backend: str | None = None, env: dict | None = None) -> "Result":
        uri = backend if backend is not None else f"file://{backend_dir}"
        prefix = ["--log-level", "CRITICAL"]
        if uri:
            prefix += ["--backend", uri]
        return runner.invoke(app, prefix + args, env=env, catch_exceptions=False)

    return _invoke


@pytest.fixture
def stored(backend_dir) -> Callable[[str], list[dict]]:
    """Read a container's object file straight from disk."""

    def _read(container: str) -> list[dict]:
        return json.loads((backend_dir / container / f"{container.lower()}.json").read_text())

    return _read
