"""
Scheduling cursor storage.

The cursor is the last head version whose whole range was confirmed
queued. The scheduler reads it to start the next range right after it, and
falls back to a full rescan from version 0 when it is missing.

Invariants:
    - The cursor only moves forward
    - A missing cursor means "unknown", never "0"
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from abc import abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class CursorStore(Protocol):
    @abstractmethod
    async def get(self, name: str) -> int | None:
        ...

    @abstractmethod
    async def advance(self, name: str, value: int) -> int:
        """Move the cursor to value if that is forward; return the stored value."""
        ...

    @abstractmethod
    async def reset(self, name: str) -> None:
        ...


class InMemoryCursorStore:
    """Process-local cursor store, used in tests and with the memory queue."""

    def __init__(self) -> None:
        self._values: dict[str, int] = {}

    async def get(self, name: str) -> int | None:
        return self._values.get(name)

    async def advance(self, name: str, value: int) -> int:
        current = self._values.get(name)
        if current is None or value > current:
            self._values[name] = value
        return self._values[name]

    async def reset(self, name: str) -> None:
        self._values.pop(name, None)


class SqliteCursorStore:
    """Cursor store kept next to the sqlite job queue."""

    def __init__(self, path: str, busy_timeout_ms: int = 5000) -> None:
        self.path = Path(path)
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,
        )
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cursors (
                    name TEXT PRIMARY KEY,
                    value INTEGER NOT NULL,
                    updated_at INTEGER NOT NULL
                )
                """
            )
            yield conn
        finally:
            conn.close()

    async def get(self, name: str) -> int | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM cursors WHERE name = ?", (name,)).fetchone()
        return row[0] if row else None

    async def advance(self, name: str, value: int) -> int:
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO cursors (name, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(name) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                    WHERE excluded.value > cursors.value
                    """,
                    (name, value, int(time.time() * 1000)),
                )
                row = conn.execute("SELECT value FROM cursors WHERE name = ?", (name,)).fetchone()
        return row[0]

    async def reset(self, name: str) -> None:
        async with self._lock:
            with self._get_connection() as conn:
                conn.execute("DELETE FROM cursors WHERE name = ?", (name,))
        logger.info("Cursor reset", extra={"cursor": name})
