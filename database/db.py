"""
Database Manager
================
Handles all database operations: creating tables, inserting data, querying.

Uses SQLite because:
- No server to manage (it's just a file)
- Fast enough for the swarm (a few writes per minute)
- We use async (aiosqlite) so database operations don't block the agents

Four agents share this store and run on overlapping timers, so:
- Every write goes through one asyncio.Lock (`_write_lock`). Reads don't.
- Position closes are compare-and-swap: the UPDATE only matches a row that
  is still OPEN, and the caller learns whether it won.
- Price updates only touch OPEN rows, so a late price tick can't rewrite a
  closed position.
- Replacing the narratives is one transaction under the lock, so readers
  never see half of the old set and half of the new one.

Other modules never write raw SQL. They call these functions instead.
"""

import json
import asyncio
from pathlib import Path
from typing import Any

import aiosqlite

from database.models import CREATE_TABLES_SQL
from utils.logger import get_logger
from utils.timeutil import now_ms

logger = get_logger(__name__)

TERMINAL_STATUSES = ("CLOSED", "STOPPED", "TP_HIT")


class Database:
    """
    Async database manager for the swarm.

    Usage:
        db = Database("data/swarm.db")
        await db.initialize()  # Creates tables if they don't exist
        position_id = await db.open_position({...})
        await db.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """
        Connect to the database and create tables if they don't exist.
        Called once when the process starts.
        """
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        self.connection.row_factory = aiosqlite.Row

        await self.connection.executescript(CREATE_TABLES_SQL)
        await self.connection.commit()

        logger.info("database_initialized", path=self.db_path)

    async def close(self) -> None:
        """Close the database connection cleanly."""
        if self.connection:
            await self.connection.close()
            self.connection = None
            logger.info("database_closed")

    async def _write(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Run one write statement under the write lock and commit it."""
        async with self._write_lock:
            cursor = await self.connection.execute(sql, params)
            await self.connection.commit()
            return cursor

    async def _fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        cursor = await self.connection.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]

    async def _fetch_one(self, sql: str, params: tuple = ()) -> dict | None:
        cursor = await self.connection.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row else None

    # =========================================================================
    # Position Operations
    # =========================================================================

    async def open_position(self, position_data: dict[str, Any]) -> int:
        """
        Record a new OPEN position after a successful buy.
        Returns the position's database ID.
        """
        sql = """
            INSERT INTO positions (
                token_address, symbol, entry_price, entry_sol, token_amount,
                token_decimals, current_price, pnl_pct, status, entry_tx,
                entry_time, score, narrative
            ) VALUES (?, ?, ?, ?, ?, ?, ?, 0, 'OPEN', ?, ?, ?, ?)
        """
        cursor = await self._write(sql, (
            position_data["token_address"],
            position_data["symbol"],
            position_data["entry_price"],
            position_data["entry_sol"],
            position_data["token_amount"],
            position_data.get("token_decimals", 6),
            position_data.get("current_price", position_data["entry_price"]),
            position_data.get("entry_tx", ""),
            position_data.get("entry_time") or now_ms(),
            position_data.get("score", 0),
            position_data.get("narrative", "Unknown"),
        ))
        return cursor.lastrowid

    async def get_position(self, position_id: int) -> dict | None:
        return await self._fetch_one("SELECT * FROM positions WHERE id = ?", (position_id,))

    async def get_positions(self) -> list[dict]:
        """All positions, newest first."""
        return await self._fetch_all("SELECT * FROM positions ORDER BY entry_time DESC, id DESC")

    async def get_open_positions(self) -> list[dict]:
        return await self._fetch_all("SELECT * FROM positions WHERE status = 'OPEN' ORDER BY id")

    async def count_open_positions(self) -> int:
        row = await self._fetch_one("SELECT COUNT(*) AS c FROM positions WHERE status = 'OPEN'")
        return row["c"] if row else 0

    async def get_open_position_by_token(self, token_address: str) -> dict | None:
        """Check if we already hold this token."""
        return await self._fetch_one(
            "SELECT * FROM positions WHERE token_address = ? AND status = 'OPEN'",
            (token_address,),
        )

    async def update_position_price(self, position_id: int, current_price: float, pnl_pct: float) -> bool:
        """
        Write the latest price and PnL for a position.
        Returns False if the position is no longer OPEN (nothing written).
        """
        cursor = await self._write(
            "UPDATE positions SET current_price = ?, pnl_pct = ? WHERE id = ? AND status = 'OPEN'",
            (current_price, pnl_pct, position_id),
        )
        return cursor.rowcount > 0

    async def close_position(
        self,
        position_id: int,
        status: str,
        exit_tx: str = "",
        exit_price: float | None = None,
        exit_time: int | None = None,
    ) -> bool:
        """
        Move an OPEN position to a terminal status.

        Compare-and-swap: only a row that is still OPEN is updated. Returns
        True if this call closed it, False if it was already closed.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal position status: {status}")
        cursor = await self._write(
            """
            UPDATE positions SET status = ?, exit_tx = ?, exit_price = ?, exit_time = ?
            WHERE id = ? AND status = 'OPEN'
            """,
            (status, exit_tx, exit_price, exit_time or now_ms(), position_id),
        )
        return cursor.rowcount > 0

    # =========================================================================
    # Scanned Token Operations (Hunter)
    # =========================================================================

    async def get_scanned_token(self, address: str) -> dict | None:
        return await self._fetch_one("SELECT * FROM scanned_tokens WHERE address = ?", (address,))

    async def upsert_scanned_token(self, token_data: dict[str, Any]) -> None:
        """
        Save the hunter's verdict on a token.
        First sighting inserts with times_seen=1; every re-score bumps it.
        """
        now = token_data.get("last_seen") or now_ms()
        sql = """
            INSERT INTO scanned_tokens (
                address, symbol, score, signal, reasoning, narrative,
                mcap, liquidity, first_seen, last_seen, times_seen
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 1)
            ON CONFLICT(address) DO UPDATE SET
                symbol = excluded.symbol,
                score = excluded.score,
                signal = excluded.signal,
                reasoning = excluded.reasoning,
                narrative = excluded.narrative,
                mcap = excluded.mcap,
                liquidity = excluded.liquidity,
                last_seen = excluded.last_seen,
                times_seen = scanned_tokens.times_seen + 1
        """
        await self._write(sql, (
            token_data["address"],
            token_data.get("symbol"),
            token_data.get("score", 0),
            token_data.get("signal", "SKIP"),
            token_data.get("reasoning", ""),
            token_data.get("narrative", "Unknown"),
            token_data.get("mcap", 0),
            token_data.get("liquidity", 0),
            now,
            now,
        ))

    async def get_scanned_tokens(self, limit: int = 50) -> list[dict]:
        """Best-scored tokens first."""
        return await self._fetch_all(
            "SELECT * FROM scanned_tokens ORDER BY score DESC LIMIT ?", (limit,)
        )

    # =========================================================================
    # Narrative Operations
    # =========================================================================

    async def replace_narratives(self, narratives: list[dict]) -> int:
        """
        Swap the whole narrative table for a new set in one transaction.
        An empty list clears the table. Returns the number of rows written.
        """
        now = now_ms()
        async with self._write_lock:
            try:
                await self.connection.execute("DELETE FROM narratives")
                await self.connection.executemany(
                    "INSERT INTO narratives (name, score, trend, tokens, updated_at) VALUES (?, ?, ?, ?, ?)",
                    [
                        (n["name"], n.get("score", 0), n.get("trend", "stable"),
                         json.dumps(n.get("tokens", [])), now)
                        for n in narratives
                    ],
                )
                await self.connection.commit()
            except Exception:
                await self.connection.rollback()
                raise
        return len(narratives)

    async def get_narratives(self, limit: int = 10) -> list[dict]:
        """Top narratives by score, with `tokens` decoded back to a list."""
        rows = await self._fetch_all(
            "SELECT * FROM narratives ORDER BY score DESC LIMIT ?", (limit,)
        )
        for row in rows:
            row["tokens"] = json.loads(row["tokens"]) if row.get("tokens") else []
        return rows

    async def get_narrative_names(self) -> list[str]:
        """Narrative names in score order, used for hunter matching."""
        rows = await self._fetch_all("SELECT name FROM narratives ORDER BY score DESC")
        return [row["name"] for row in rows]

    # =========================================================================
    # Trade History (audit trail)
    # =========================================================================

    async def insert_trade(self, trade_data: dict[str, Any]) -> int:
        """
        Append one attempted swap to the ledger.
        Every trade, successful or failed, gets logged here.
        """
        sql = """
            INSERT INTO trade_history (
                token_address, symbol, side, sol_amount, token_amount,
                price, tx_hash, success, error, timestamp
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        cursor = await self._write(sql, (
            trade_data["token_address"],
            trade_data.get("symbol"),
            trade_data["side"],
            trade_data.get("sol_amount") or 0,
            trade_data.get("token_amount") or 0,
            trade_data.get("price") or 0,
            trade_data.get("tx_hash") or "",
            1 if trade_data.get("success") else 0,
            trade_data.get("error") or "",
            trade_data.get("timestamp") or now_ms(),
        ))
        return cursor.lastrowid

    async def get_trade_history(self, limit: int = 100) -> list[dict]:
        return await self._fetch_all(
            "SELECT * FROM trade_history ORDER BY timestamp DESC, id DESC LIMIT ?", (limit,)
        )
