import json
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from shop_translator.config import settings
from shop_translator.errors import LedgerUnavailable


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


@contextmanager
def _conn() -> Iterator[sqlite3.Connection]:
    Path(settings.database_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(settings.database_path, timeout=30)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction() -> Iterator[sqlite3.Connection]:
    """Write transaction holding the sqlite RESERVED lock from the first statement.

    Concurrent callers serialise on BEGIN IMMEDIATE, so a read followed by a
    write inside the block sees no interleaved writer.
    """
    try:
        with _conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.rollback()
                raise
            conn.commit()
    except sqlite3.IntegrityError:
        raise
    except sqlite3.DatabaseError as exc:
        raise LedgerUnavailable(f"ledger datastore unavailable: {exc}") from exc


def init_db() -> None:
    with _conn() as conn:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS shops (
              shop_id TEXT PRIMARY KEY,
              balance_credits INTEGER NOT NULL DEFAULT 0,
              created_at TEXT NOT NULL,
              updated_at TEXT NOT NULL
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS credit_reservations (
              id TEXT PRIMARY KEY,
              shop_id TEXT NOT NULL,
              reserved_credits INTEGER NOT NULL,
              actual_credits INTEGER,
              status TEXT NOT NULL,
              metadata TEXT,
              created_at TEXT NOT NULL,
              expires_at TEXT NOT NULL,
              settled_at TEXT
            )
            """
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reservations_shop_status ON credit_reservations (shop_id, status)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_reservations_status_expiry ON credit_reservations (status, expires_at)"
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS credit_usage (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              reservation_id TEXT NOT NULL,
              shop_id TEXT NOT NULL,
              resource_id TEXT,
              resource_type TEXT,
              source_language TEXT,
              target_language TEXT,
              estimated_credits INTEGER NOT NULL,
              credits_used INTEGER NOT NULL,
              credits_diff INTEGER NOT NULL,
              diff_percentage REAL NOT NULL,
              usage_date TEXT NOT NULL,
              status TEXT NOT NULL,
              metadata TEXT
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS credit_ledger (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              shop_id TEXT NOT NULL,
              type TEXT NOT NULL,
              credits INTEGER NOT NULL,
              reservation_id TEXT,
              external_ref TEXT,
              note TEXT,
              created_at TEXT NOT NULL
            )
            """
        )

        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS error_log (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              category TEXT NOT NULL,
              code TEXT NOT NULL,
              message TEXT,
              context TEXT,
              created_at TEXT NOT NULL
            )
            """
        )

        conn.commit()


def ensure_shop(conn: sqlite3.Connection, shop_id: str) -> None:
    ts = _now()
    conn.execute(
        """
        INSERT INTO shops (shop_id, created_at, updated_at)
        VALUES (?, ?, ?)
        ON CONFLICT(shop_id) DO NOTHING
        """,
        (shop_id, ts, ts),
    )


def get_shop(shop_id: str) -> dict | None:
    with _conn() as conn:
        row = conn.execute("SELECT * FROM shops WHERE shop_id=?", (shop_id,)).fetchone()
    return dict(row) if row else None


def add_ledger(
    conn: sqlite3.Connection,
    shop_id: str,
    entry_type: str,
    credits: int,
    reservation_id: str | None = None,
    external_ref: str | None = None,
    note: str | None = None,
) -> None:
    conn.execute(
        """
        INSERT INTO credit_ledger (shop_id, type, credits, reservation_id, external_ref, note, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (shop_id, entry_type, credits, reservation_id, external_ref, note, _now()),
    )


def list_ledger(shop_id: str, limit: int = 20) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM credit_ledger WHERE shop_id=? ORDER BY id DESC LIMIT ?",
            (shop_id, limit),
        ).fetchall()
    return [dict(r) for r in rows]


def grant_credits(shop_id: str, credits: int, note: str, external_ref: str | None = None) -> None:
    if credits <= 0:
        raise ValueError("credits must be > 0")
    with transaction() as conn:
        ensure_shop(conn, shop_id)
        conn.execute(
            "UPDATE shops SET balance_credits = balance_credits + ?, updated_at=? WHERE shop_id=?",
            (credits, _now(), shop_id),
        )
        add_ledger(conn, shop_id, "grant", credits, external_ref=external_ref, note=note)


def committed_credits(conn: sqlite3.Connection, shop_id: str) -> tuple[int, int]:
    row = conn.execute(
        """
        SELECT
          COALESCE(SUM(CASE WHEN status='pending' THEN reserved_credits ELSE 0 END), 0) AS reserved,
          COALESCE(SUM(CASE WHEN status='confirmed' THEN actual_credits ELSE 0 END), 0) AS used
        FROM credit_reservations
        WHERE shop_id=? AND status IN ('pending', 'confirmed')
        """,
        (shop_id,),
    ).fetchone()
    return int(row["reserved"]), int(row["used"])


def get_reservation_row(conn: sqlite3.Connection, reservation_id: str) -> dict | None:
    row = conn.execute("SELECT * FROM credit_reservations WHERE id=?", (reservation_id,)).fetchone()
    return dict(row) if row else None


def list_usage(shop_id: str, limit: int = 50) -> list[dict]:
    with _conn() as conn:
        rows = conn.execute(
            "SELECT * FROM credit_usage WHERE shop_id=? ORDER BY id DESC LIMIT ?",
            (shop_id, limit),
        ).fetchall()
    return [dict(r) for r in rows]


def add_error_log(category: str, code: str, message: str | None, context: dict[str, Any]) -> None:
    with _conn() as conn:
        conn.execute(
            """
            INSERT INTO error_log (category, code, message, context, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (category, code, message, json.dumps(context, default=str, ensure_ascii=False), _now()),
        )
        conn.commit()


def list_error_log(limit: int = 100, category: str | None = None) -> list[dict]:
    sql = "SELECT * FROM error_log"
    params: list[Any] = []
    if category:
        sql += " WHERE category=?"
        params.append(category)
    sql += " ORDER BY id DESC LIMIT ?"
    params.append(limit)
    with _conn() as conn:
        rows = conn.execute(sql, tuple(params)).fetchall()
    out = []
    for r in rows:
        item = dict(r)
        item["context"] = json.loads(item["context"]) if item["context"] else {}
        out.append(item)
    return out


def get_reservation(reservation_id: str) -> dict | None:
    with _conn() as conn:
        return get_reservation_row(conn, reservation_id)


def credit_summary(shop_id: str) -> tuple[int, int, int]:
    with _conn() as conn:
        shop = conn.execute("SELECT balance_credits FROM shops WHERE shop_id=?", (shop_id,)).fetchone()
        reserved, used = committed_credits(conn, shop_id)
    return (shop["balance_credits"] if shop else 0), reserved, used
