"""SQLite implementation of the CheckoutStore protocol."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from omeganode_checkout.models.pricing import DiscountKind, DiscountScope, DiscountTerm
from omeganode_checkout.models.records import (
    AccessCodeRecord,
    ActivityRecord,
    FinalizeResult,
    OrderRecord,
    TrialBlock,
)

log = logging.getLogger(__name__)

SCHEMA = """
-- Discount codes (admin managed)
CREATE TABLE IF NOT EXISTS discount_codes (
    code TEXT PRIMARY KEY,
    discount_type TEXT NOT NULL CHECK (discount_type IN ('percentage', 'flat')),
    discount_value REAL NOT NULL,
    applicable_to TEXT NOT NULL DEFAULT 'both',
    expires_at TEXT,
    max_uses INTEGER,
    current_uses INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL DEFAULT (datetime('now')),
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Referral codes and earned referrals
CREATE TABLE IF NOT EXISTS referral_codes (
    code TEXT PRIMARY KEY,
    referrer_id TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

CREATE TABLE IF NOT EXISTS referrals (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    referrer_id TEXT NOT NULL,
    referred_id TEXT,
    order_number TEXT NOT NULL,
    order_amount INTEGER NOT NULL,
    commission_rate REAL NOT NULL,
    commission_amount INTEGER NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_referrals_order ON referrals(order_number);

-- Access codes (admin issued, single redemption)
CREATE TABLE IF NOT EXISTS access_codes (
    code TEXT PRIMARY KEY,
    duration_type TEXT NOT NULL,
    duration_hours INTEGER NOT NULL,
    is_redeemed INTEGER NOT NULL DEFAULT 0,
    redeemed_by TEXT,
    redeemed_at TEXT,
    access_expires_at TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Trial usage: one row per consumed trial, each key unique
CREATE TABLE IF NOT EXISTS trial_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    operator_id TEXT NOT NULL,
    network_origin TEXT,
    device_fingerprint TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_trial_operator ON trial_usage(operator_id);
CREATE UNIQUE INDEX IF NOT EXISTS idx_trial_origin ON trial_usage(network_origin);
CREATE UNIQUE INDEX IF NOT EXISTS idx_trial_device ON trial_usage(device_fingerprint);

-- Finalized orders, one per settlement reference
CREATE TABLE IF NOT EXISTS orders (
    order_number TEXT PRIMARY KEY,
    flow_id TEXT NOT NULL,
    selection TEXT NOT NULL,
    final_total INTEGER NOT NULL,
    reference_kind TEXT NOT NULL,
    reference TEXT NOT NULL,
    token_type TEXT,
    received_amount TEXT,
    discount_code TEXT,
    referral_code TEXT,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_reference ON orders(reference);

-- Every ledger signature consumed by an order; a signature settles at most once
CREATE TABLE IF NOT EXISTS settlement_refs (
    reference TEXT PRIMARY KEY,
    order_number TEXT NOT NULL
);

-- Activity log
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_type TEXT NOT NULL,
    reference TEXT,
    amount INTEGER,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class SQLiteCheckoutStore:
    """SQLite-backed implementation of the CheckoutStore protocol.

    Race-sensitive writes (trial consumption, code redemption) are single
    conditional statements backed by UNIQUE indexes, so two concurrent
    requests can never both succeed. Order finalization runs in one
    BEGIN IMMEDIATE transaction that also claims every ledger signature
    the payment was built from.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    async def _write(self, sql: str, params: tuple = ()) -> int:
        """Run one write statement and commit it. Returns the row count."""
        async with self._write_lock:
            cur = await self.db.execute(sql, params)
            await self.db.commit()
            return cur.rowcount

    # ── Discount codes ─────────────────────────────────────

    async def add_discount_code(
        self,
        code: str,
        kind: DiscountKind,
        value: float,
        scope: DiscountScope = DiscountScope.BOTH,
        expires_at: datetime | None = None,
        max_uses: int | None = None,
        is_active: bool = True,
    ) -> None:
        """Admin tooling: insert or replace a discount code."""
        now = _now()
        await self._write(
            "INSERT OR REPLACE INTO discount_codes"
            " (code, discount_type, discount_value, applicable_to, expires_at,"
            "  max_uses, current_uses, is_active, created_at, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, 0, ?, ?, ?)",
            (
                code.strip().upper(), kind.value, value, scope.value,
                expires_at.isoformat() if expires_at else None,
                max_uses, int(is_active), now, now,
            ),
        )

    async def get_discount_code(self, code: str) -> tuple[DiscountTerm, bool] | None:
        async with self.db.execute(
            "SELECT * FROM discount_codes WHERE code=?", (code,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        term = DiscountTerm(
            code=row["code"],
            kind=DiscountKind(row["discount_type"]),
            value=row["discount_value"],
            scope=DiscountScope(row["applicable_to"]),
            expires_at=_parse_ts(row["expires_at"]),
            usage_cap=row["max_uses"],
            usage_count=row["current_uses"],
        )
        return term, bool(row["is_active"])

    async def increment_discount_usage(self, code: str) -> bool:
        rows = await self._write(
            "UPDATE discount_codes SET current_uses = current_uses + 1, updated_at=?"
            " WHERE code=? AND is_active=1"
            " AND (max_uses IS NULL OR current_uses < max_uses)",
            (_now(), code),
        )
        return rows == 1

    # ── Referrals ──────────────────────────────────────────

    async def add_referral_code(self, code: str, referrer_id: str) -> None:
        """Admin tooling: register a referrer's code."""
        await self._write(
            "INSERT OR REPLACE INTO referral_codes (code, referrer_id, created_at)"
            " VALUES (?, ?, ?)",
            (code.strip().upper(), referrer_id, _now()),
        )

    async def get_referrer(self, code: str) -> str | None:
        async with self.db.execute(
            "SELECT referrer_id FROM referral_codes WHERE code=?", (code,)
        ) as cur:
            row = await cur.fetchone()
            return row["referrer_id"] if row else None

    async def save_referral(
        self,
        referrer_id: str,
        referred_id: str | None,
        order_number: str,
        order_amount: int,
        commission_rate: float,
    ) -> None:
        commission = int(round(order_amount * commission_rate))
        await self._write(
            "INSERT OR IGNORE INTO referrals"
            " (referrer_id, referred_id, order_number, order_amount,"
            "  commission_rate, commission_amount, created_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)",
            (referrer_id, referred_id, order_number, order_amount,
             commission_rate, commission, _now()),
        )

    async def get_referrals(self, referrer_id: str) -> list[dict]:
        async with self.db.execute(
            "SELECT * FROM referrals WHERE referrer_id=? ORDER BY created_at",
            (referrer_id,),
        ) as cur:
            return [dict(row) async for row in cur]

    # ── Access codes ───────────────────────────────────────

    async def add_access_code(self, code: str, duration_type: str, duration_hours: int) -> None:
        """Admin tooling: issue a new access code."""
        await self._write(
            "INSERT INTO access_codes (code, duration_type, duration_hours, created_at)"
            " VALUES (?, ?, ?, ?)",
            (code.strip().upper(), duration_type, duration_hours, _now()),
        )

    async def get_access_code(self, code: str) -> AccessCodeRecord | None:
        async with self.db.execute(
            "SELECT * FROM access_codes WHERE code=?", (code,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            return None
        return AccessCodeRecord(
            code=row["code"],
            duration_type=row["duration_type"],
            duration_hours=row["duration_hours"],
            is_redeemed=bool(row["is_redeemed"]),
            redeemed_by=row["redeemed_by"],
            redeemed_at=row["redeemed_at"],
            access_expires_at=row["access_expires_at"],
        )

    async def redeem_access_code(
        self, code: str, operator_id: str, redeemed_at: str, expires_at: str,
    ) -> bool:
        rows = await self._write(
            "UPDATE access_codes SET is_redeemed=1, redeemed_by=?, redeemed_at=?,"
            " access_expires_at=? WHERE code=? AND is_redeemed=0",
            (operator_id, redeemed_at, expires_at, code),
        )
        return rows == 1

    # ── Trial usage ────────────────────────────────────────

    async def consume_trial(
        self,
        operator_id: str,
        network_origin: str | None,
        device_fingerprint: str,
    ) -> TrialBlock | None:
        # One conditional INSERT; NULL origins never compare equal
        try:
            rows = await self._write(
                "INSERT INTO trial_usage"
                " (operator_id, network_origin, device_fingerprint, created_at)"
                " SELECT ?, ?, ?, ? WHERE NOT EXISTS ("
                "  SELECT 1 FROM trial_usage"
                "  WHERE operator_id=? OR network_origin=? OR device_fingerprint=?)",
                (
                    operator_id, network_origin, device_fingerprint, _now(),
                    operator_id, network_origin, device_fingerprint,
                ),
            )
            inserted = rows == 1
        except sqlite3.IntegrityError:
            # Another connection won the race between our check and insert
            await self.db.rollback()
            inserted = False

        if inserted:
            return None
        return await self._trial_blocking_key(operator_id, network_origin, device_fingerprint)

    async def _trial_blocking_key(
        self, operator_id: str, network_origin: str | None, device_fingerprint: str,
    ) -> TrialBlock:
        checks = [
            (TrialBlock.IDENTITY, "operator_id", operator_id),
            (TrialBlock.ORIGIN, "network_origin", network_origin),
            (TrialBlock.DEVICE, "device_fingerprint", device_fingerprint),
        ]
        for block, column, value in checks:
            if value is None:
                continue
            async with self.db.execute(
                f"SELECT 1 FROM trial_usage WHERE {column}=? LIMIT 1", (value,)
            ) as cur:
                if await cur.fetchone() is not None:
                    return block
        # The row that blocked us is not visible yet; deny on identity
        return TrialBlock.IDENTITY

    async def count_trials(self) -> int:
        async with self.db.execute("SELECT COUNT(*) AS c FROM trial_usage") as cur:
            row = await cur.fetchone()
            return row["c"] if row else 0

    # ── Orders ─────────────────────────────────────────────

    async def finalize_order(self, order: OrderRecord) -> FinalizeResult:
        created_at = order.created_at or _now()
        refs = [order.reference] + [r for r in order.payment_refs if r != order.reference]

        async with self._write_lock:
            existing = await self.get_order_by_reference(order.reference)
            if existing is not None and existing.flow_id == order.flow_id:
                return FinalizeResult(accepted=True, order=existing, duplicate=True)

            await self.db.execute("BEGIN IMMEDIATE")
            try:
                cur = await self.db.execute(
                    "INSERT OR IGNORE INTO orders"
                    " (order_number, flow_id, selection, final_total, reference_kind,"
                    "  reference, token_type, received_amount, discount_code,"
                    "  referral_code, created_at)"
                    " VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        order.order_number, order.flow_id, json.dumps(order.selection),
                        order.final_total, order.reference_kind, order.reference,
                        order.token_type, order.received_amount, order.discount_code,
                        order.referral_code, created_at,
                    ),
                )
                if cur.rowcount != 1:
                    await self.db.rollback()
                    return await self._finalize_rejection(order, refs)
                await self.db.executemany(
                    "INSERT INTO settlement_refs (reference, order_number) VALUES (?, ?)",
                    [(ref, order.order_number) for ref in refs],
                )
                await self.db.commit()
            except sqlite3.IntegrityError:
                await self.db.rollback()
                return await self._finalize_rejection(order, refs)

        order.created_at = created_at
        return FinalizeResult(accepted=True, order=order)

    async def _finalize_rejection(self, order: OrderRecord, refs: list[str]) -> FinalizeResult:
        for ref in refs:
            async with self.db.execute(
                "SELECT order_number FROM settlement_refs WHERE reference=?", (ref,)
            ) as cur:
                row = await cur.fetchone()
            if row is not None:
                log.warning("Reference %s already settled order %s",
                            ref[:16], row["order_number"])
                return FinalizeResult(
                    accepted=False,
                    error=f"reference already used by order {row['order_number']}",
                )
        return FinalizeResult(
            accepted=False, error=f"order {order.order_number} already finalized",
        )

    async def get_order_by_reference(self, reference: str) -> OrderRecord | None:
        async with self.db.execute(
            "SELECT * FROM orders WHERE reference=?", (reference,)
        ) as cur:
            row = await cur.fetchone()
            return _row_to_order(row) if row else None

    async def get_all_orders(self) -> list[OrderRecord]:
        async with self.db.execute("SELECT * FROM orders ORDER BY created_at") as cur:
            return [_row_to_order(row) async for row in cur]

    # ── Activity log ───────────────────────────────────────

    async def log_activity(
        self,
        event_type: str,
        message: str,
        reference: str | None = None,
        amount: int | None = None,
    ) -> None:
        await self._write(
            "INSERT INTO activity_log (event_type, reference, amount, message, created_at)"
            " VALUES (?, ?, ?, ?, ?)",
            (event_type, reference, amount, message, _now()),
        )

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    event_type=row["event_type"],
                    reference=row["reference"],
                    amount=row["amount"],
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


def _row_to_order(row: aiosqlite.Row) -> OrderRecord:
    return OrderRecord(
        order_number=row["order_number"],
        flow_id=row["flow_id"],
        selection=json.loads(row["selection"]),
        final_total=row["final_total"],
        reference_kind=row["reference_kind"],
        reference=row["reference"],
        token_type=row["token_type"],
        received_amount=row["received_amount"],
        discount_code=row["discount_code"],
        referral_code=row["referral_code"],
        created_at=row["created_at"],
    )
