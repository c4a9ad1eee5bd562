"""
Database Manager
================
All SQL lives here. Other modules call these methods and never write
raw SQL themselves.

SQLite via aiosqlite so disk I/O never blocks the event loop. A wallet
record spans four tables; saving one is a single transaction that
rewrites the user's child rows, so readers always see a whole record.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any

import aiosqlite

from database.models import CREATE_TABLES_SQL
from trader.models import (
    AutoSellConfig,
    AutoSellTrigger,
    DCACampaign,
    Position,
    TriggerType,
    WalletRecord,
)
from utils.logger import get_logger

logger = get_logger(__name__)


class Database:
    """
    Async database manager.

    Usage:
        db = Database("data/wallets.db")
        await db.initialize()
        record = await db.get_wallet("12345")
        await db.close()
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.connection: aiosqlite.Connection | None = None
        # One shared connection: multi-statement writes must not interleave
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Connect and create tables if they don't exist."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self.connection = await aiosqlite.connect(self.db_path)
        await self.connection.execute("PRAGMA journal_mode=WAL")
        await self.connection.execute("PRAGMA foreign_keys=ON")
        self.connection.row_factory = aiosqlite.Row

        await self.connection.executescript(CREATE_TABLES_SQL)
        await self.connection.commit()

        logger.info("database_initialized", path=self.db_path)

    async def close(self) -> None:
        if self.connection:
            await self.connection.close()
            self.connection = None

    # =========================================================================
    # Wallet Records
    # =========================================================================

    async def get_wallet(self, user_id: str) -> WalletRecord | None:
        """Load a user's full record, or None if they have no wallet yet."""
        cursor = await self.connection.execute(
            "SELECT * FROM wallets WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        if not row:
            return None

        cursor = await self.connection.execute(
            "SELECT * FROM positions WHERE user_id = ? ORDER BY seq", (user_id,)
        )
        positions = [
            Position(
                token_address=p["token_address"],
                buy_price=p["buy_price"],
                buy_time=p["buy_time"],
            )
            for p in await cursor.fetchall()
        ]

        cursor = await self.connection.execute(
            "SELECT * FROM auto_sell_triggers WHERE user_id = ? ORDER BY seq", (user_id,)
        )
        triggers = tuple(
            AutoSellTrigger(
                type=TriggerType(t["trigger_type"]),
                value=Decimal(t["value"]),
                percentage=t["percentage"],
            )
            for t in await cursor.fetchall()
        )

        cursor = await self.connection.execute(
            "SELECT * FROM dca_campaigns WHERE user_id = ? ORDER BY seq", (user_id,)
        )
        campaigns = [
            DCACampaign(
                id=c["id"],
                token_address=c["token_address"],
                amount_per_buy=c["amount_per_buy"],
                interval_minutes=c["interval_minutes"],
                max_executions=c["max_executions"],
                executed_count=c["executed_count"],
                active=bool(c["active"]),
                next_execution_at=c["next_execution_at"],
            )
            for c in await cursor.fetchall()
        ]

        return WalletRecord(
            address=row["address"],
            encrypted_key=row["encrypted_key"],
            auto_buy=bool(row["auto_buy"]),
            slippage=row["slippage"],
            default_buy_amount=row["default_buy_amount"],
            positions=positions,
            auto_sell=AutoSellConfig(enabled=bool(row["auto_sell_enabled"]), triggers=triggers),
            dca_campaigns=campaigns,
        )

    async def save_wallet(self, user_id: str, record: WalletRecord) -> None:
        """
        Upsert a full record. Positions, triggers and campaigns are replaced
        by the record's lists in one transaction.
        """
        now = datetime.now(timezone.utc).isoformat()

        async with self._write_lock:
            try:
                await self.connection.execute(
                    """
                    INSERT INTO wallets (
                        user_id, address, encrypted_key, auto_buy, slippage,
                        default_buy_amount, auto_sell_enabled, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                        address = excluded.address,
                        encrypted_key = excluded.encrypted_key,
                        auto_buy = excluded.auto_buy,
                        slippage = excluded.slippage,
                        default_buy_amount = excluded.default_buy_amount,
                        auto_sell_enabled = excluded.auto_sell_enabled,
                        updated_at = excluded.updated_at
                    """,
                    (
                        user_id,
                        record.address,
                        record.encrypted_key,
                        int(record.auto_buy),
                        record.slippage,
                        record.default_buy_amount,
                        int(record.auto_sell.enabled),
                        now,
                    ),
                )

                for table in ("positions", "auto_sell_triggers", "dca_campaigns"):
                    await self.connection.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))

                await self.connection.executemany(
                    """
                    INSERT INTO positions (user_id, seq, token_address, buy_price, buy_time)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (user_id, seq, p.token_address, p.buy_price, p.buy_time)
                        for seq, p in enumerate(record.positions)
                    ],
                )
                await self.connection.executemany(
                    """
                    INSERT INTO auto_sell_triggers (user_id, seq, trigger_type, value, percentage)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    [
                        (user_id, seq, t.type.value, str(t.value), t.percentage)
                        for seq, t in enumerate(record.auto_sell.triggers)
                    ],
                )
                await self.connection.executemany(
                    """
                    INSERT INTO dca_campaigns (
                        id, user_id, seq, token_address, amount_per_buy, interval_minutes,
                        max_executions, executed_count, active, next_execution_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    [
                        (
                            c.id, user_id, seq, c.token_address, c.amount_per_buy,
                            c.interval_minutes, c.max_executions, c.executed_count,
                            int(c.active), c.next_execution_at,
                        )
                        for seq, c in enumerate(record.dca_campaigns)
                    ],
                )
                await self.connection.commit()
            except Exception:
                await self.connection.rollback()
                raise

    # =========================================================================
    # Trade Audit Trail
    # =========================================================================

    async def insert_trade(self, trade_data: dict[str, Any]) -> int:
        """Record a submitted transaction. Status starts as 'pending'."""
        sql = """
            INSERT INTO trades (
                user_id, token_address, side, venue, amount_in, min_out,
                percentage, reason, tx_hash, status
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """
        async with self._write_lock:
            cursor = await self.connection.execute(sql, (
                trade_data["user_id"],
                trade_data["token_address"],
                trade_data["side"],
                trade_data.get("venue"),
                str(trade_data.get("amount_in", "")),
                str(trade_data.get("min_out", "")),
                trade_data.get("percentage"),
                trade_data.get("reason"),
                trade_data.get("tx_hash"),
                trade_data.get("status", "pending"),
            ))
            await self.connection.commit()
        return cursor.lastrowid

    async def update_trade_status(self, trade_id: int, status: str, error: str | None = None) -> None:
        """Update a trade after it confirms or fails on-chain."""
        now = datetime.now(timezone.utc).isoformat()
        async with self._write_lock:
            if status == "confirmed":
                sql = "UPDATE trades SET status = ?, confirmed_at = ? WHERE id = ?"
                await self.connection.execute(sql, (status, now, trade_id))
            else:
                sql = "UPDATE trades SET status = ?, error_message = ? WHERE id = ?"
                await self.connection.execute(sql, (status, error, trade_id))
            await self.connection.commit()

    async def get_recent_trades(self, user_id: str, limit: int = 10) -> list[dict]:
        sql = "SELECT * FROM trades WHERE user_id = ? ORDER BY id DESC LIMIT ?"
        cursor = await self.connection.execute(sql, (user_id, limit))
        rows = await cursor.fetchall()
        return [dict(row) for row in rows]
