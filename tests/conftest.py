"""Pytest configuration for test isolation.

Makes the workspace packages importable without an install (``packages/`` for
``statement_import``, ``libs/db/src`` for ``db``, and the repo root for
``tests.helpers``), and keeps every test hermetic:

- ``STATEMENT_IMPORT_*`` and ``DATABASE_URL`` variables from the developer's
  shell are cleared so defaults apply;
- cached SQLAlchemy engines are disposed after each test so temporary SQLite
  files can be removed.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest

_ROOT = Path(__file__).resolve().parents[1]
_PATHS = [_ROOT / "packages", _ROOT / "libs" / "db" / "src", _ROOT]
# Ensure workspace dirs precede site-packages so local packages resolve first.
sys.path[:0] = [str(p) for p in _PATHS if str(p) not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("STATEMENT_IMPORT_") or name == "DATABASE_URL":
            monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _dispose_engines() -> Iterator[None]:
    yield
    from db.client import dispose_engines

    dispose_engines()
