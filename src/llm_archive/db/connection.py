"""Opening the archive's SQLite file."""

from __future__ import annotations

import sqlite3
from pathlib import Path

IN_MEMORY = ":memory:"

# Applied to every new connection, in order.
_PRAGMAS: tuple[str, ...] = (
    "PRAGMA foreign_keys = ON",
    "PRAGMA journal_mode = WAL",
)


class Database:
    """Handle on one archive file (or an in-memory database).

    ``connect()`` hands out a fresh connection that the caller owns. Using
    the object as a context manager opens one connection and closes it on
    exit.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path: Path | str = IN_MEMORY if db_path == IN_MEMORY else Path(db_path)
        self._active: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with ``sqlite3.Row`` rows; creates parent dirs."""
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        for pragma in _PRAGMAS:
            conn.execute(pragma)
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._active = self.connect()
        return self._active

    def __exit__(self, *exc_info: object) -> None:
        active, self._active = self._active, None
        if active is not None:
            active.close()
