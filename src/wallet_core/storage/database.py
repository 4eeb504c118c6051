"""SQLite persistence for one wallet.

A wallet database holds three tables: ``wallet`` (the encrypted seed
record), ``settings`` (small JSON values keyed by name) and ``contacts``.
Access goes through ``aiosqlite`` so queries never block the event loop.
"""

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

# Each entry upgrades the schema by one version; ``PRAGMA user_version``
# records how many have been applied.
_MIGRATIONS: list[str] = [
    """\
    CREATE TABLE IF NOT EXISTS wallet (
        id TEXT PRIMARY KEY,
        ciphertext BLOB NOT NULL,
        iv BLOB NOT NULL,
        salt BLOB NOT NULL,
        timestamp INTEGER NOT NULL
    );

    CREATE TABLE IF NOT EXISTS settings (
        key TEXT PRIMARY KEY,
        value TEXT
    );
    """,
    """\
    CREATE TABLE IF NOT EXISTS contacts (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        address TEXT NOT NULL,
        chain TEXT NOT NULL DEFAULT 'sepolia',
        timestamp INTEGER NOT NULL,
        notes TEXT,
        last_used INTEGER
    );

    CREATE INDEX IF NOT EXISTS idx_contacts_name ON contacts(name);
    CREATE INDEX IF NOT EXISTS idx_contacts_address ON contacts(address);
    """,
]

SCHEMA_VERSION = len(_MIGRATIONS)


class Database:
    """Async handle on a wallet's SQLite file.

    Parameters
    ----------
    db_path:
        Location of the database file.  Missing parent directories are
        created on :meth:`connect`.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the file in WAL mode and bring the schema up to date."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        await self._migrate()

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def _connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError(f"Database {self.db_path} is not connected")
        return self._conn

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Run one statement and commit it.

        The cursor is returned for ``rowcount`` checks.
        """
        conn = self._connection()
        cursor = await conn.execute(sql, params)
        await conn.commit()
        return cursor

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        cursor = await self._connection().execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self._connection().execute(sql, params)
        return [dict(r) for r in await cursor.fetchall()]

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Group several statements into one commit.

        Any exception inside the block rolls every statement back.
        """
        conn = self._connection()
        try:
            yield conn
        except BaseException:
            await conn.rollback()
            raise
        await conn.commit()

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> Optional[str]:
        row = await self.fetch_one("SELECT value FROM settings WHERE key = ?", (key,))
        return row["value"] if row else None

    async def set_setting(self, key: str, value: str) -> None:
        await self.execute(
            "INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, value)
        )

    async def settings_with_prefix(self, prefix: str) -> dict[str, str]:
        """All settings whose key starts with ``prefix``."""
        rows = await self.fetch_all(
            "SELECT key, value FROM settings WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        )
        return {row["key"]: row["value"] for row in rows}

    async def delete_settings(self, prefix: str = "") -> int:
        """Delete settings under ``prefix`` (all of them when empty)."""
        cursor = await self.execute(
            "DELETE FROM settings WHERE substr(key, 1, ?) = ?", (len(prefix), prefix)
        )
        return cursor.rowcount

    async def wipe_wallet(self) -> None:
        """Drop the seed record and every setting in a single commit.

        Contacts survive a wipe.
        """
        async with self.transaction() as conn:
            await conn.execute("DELETE FROM wallet")
            await conn.execute("DELETE FROM settings")

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    async def schema_version(self) -> int:
        cursor = await self._connection().execute("PRAGMA user_version")
        row = await cursor.fetchone()
        return int(row[0])

    async def _migrate(self) -> None:
        conn = self._connection()
        version = await self.schema_version()
        for step, script in enumerate(_MIGRATIONS[version:], start=version + 1):
            await conn.executescript(script)
            await conn.execute(f"PRAGMA user_version = {step}")
        await conn.commit()


def get_database(wallet_dir: Path) -> Database:
    """The (unconnected) database at ``wallet_dir/wallet.db``."""
    return Database(Path(wallet_dir) / "wallet.db")
