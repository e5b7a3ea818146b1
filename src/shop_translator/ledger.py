import json
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from shop_translator import db
from shop_translator.config import settings
from shop_translator.errors import LEDGER_ERRORS, InsufficientCredits, ReservationNotFound, ReservationStateError
from shop_translator.schemas import ConfirmResult, CreditBalance, CreditReservation, ReservationStatus, UsageRecord

log = structlog.get_logger(__name__)


def _ts(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


class ReservationHold:
    """Handle yielded by ``CreditLedger.hold``; settles the reservation at most once."""

    def __init__(self, ledger: "CreditLedger", reservation_id: str, shop_id: str, reserved_credits: int) -> None:
        self.ledger = ledger
        self.reservation_id = reservation_id
        self.shop_id = shop_id
        self.reserved_credits = reserved_credits
        self.settled = False
        self.result: ConfirmResult | None = None

    def confirm(self, actual_credits: int, usage: dict[str, Any] | None = None) -> ConfirmResult:
        self.result = self.ledger.confirm(self.reservation_id, actual_credits, usage)
        self.settled = True
        return self.result

    def release(self, note: str = "released") -> bool:
        released = self.ledger.release(self.reservation_id, note)
        self.settled = True
        self.result = ConfirmResult(used=0, released=self.reserved_credits if released else 0)
        return released


class CreditLedger:
    def __init__(self, ttl_sec: int | None = None) -> None:
        self.ttl_sec = ttl_sec

    def _ttl(self) -> int:
        return self.ttl_sec or settings.reservation_ttl_sec

    def reserve(self, shop_id: str, estimated_credits: int, metadata: dict[str, Any] | None = None) -> str:
        if estimated_credits <= 0:
            raise ValueError("estimated_credits must be > 0")

        reservation_id = uuid.uuid4().hex
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(seconds=self._ttl())
        with db.transaction() as conn:
            db.ensure_shop(conn, shop_id)
            balance = conn.execute("SELECT balance_credits FROM shops WHERE shop_id=?", (shop_id,)).fetchone()[0]
            reserved, used = db.committed_credits(conn, shop_id)
            available = balance - reserved - used
            if available < estimated_credits:
                raise InsufficientCredits(shop_id, estimated_credits, max(available, 0))
            conn.execute(
                """
                INSERT INTO credit_reservations (id, shop_id, reserved_credits, status, metadata, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reservation_id,
                    shop_id,
                    estimated_credits,
                    ReservationStatus.PENDING.value,
                    json.dumps(metadata or {}, default=str, ensure_ascii=False),
                    _ts(now),
                    _ts(expires_at),
                ),
            )
            db.add_ledger(conn, shop_id, "reserve", estimated_credits, reservation_id=reservation_id, note="field reserve")

        log.info(
            "credits reserved",
            shop_id=shop_id,
            reservation_id=reservation_id,
            credits=estimated_credits,
            available_before=available,
        )
        return reservation_id

    def confirm(self, reservation_id: str, actual_credits: int, usage: dict[str, Any] | None = None) -> ConfirmResult:
        if actual_credits < 0:
            raise ValueError("actual_credits must be >= 0")

        usage = usage or {}
        now = _ts(datetime.now(timezone.utc))
        with db.transaction() as conn:
            row = db.get_reservation_row(conn, reservation_id)
            if not row:
                raise ReservationNotFound(f"reservation {reservation_id} not found", reservation_id=reservation_id)
            if row["status"] != ReservationStatus.PENDING.value:
                raise ReservationStateError(
                    f"reservation {reservation_id} is {row['status']}",
                    reservation_id=reservation_id,
                    status=row["status"],
                )

            shop_id = row["shop_id"]
            reserved = row["reserved_credits"]
            if actual_credits > reserved:
                log.warning(
                    "actual credits exceed reservation, capping",
                    reservation_id=reservation_id,
                    reserved=reserved,
                    actual=actual_credits,
                )
            used = min(actual_credits, reserved)
            released = reserved - used

            conn.execute(
                "UPDATE credit_reservations SET status=?, actual_credits=?, settled_at=? WHERE id=?",
                (ReservationStatus.CONFIRMED.value, used, now, reservation_id),
            )
            conn.execute(
                """
                INSERT INTO credit_usage (
                  reservation_id, shop_id, resource_id, resource_type, source_language, target_language,
                  estimated_credits, credits_used, credits_diff, diff_percentage, usage_date, status, metadata
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'completed', ?)
                """,
                (
                    reservation_id,
                    shop_id,
                    usage.get("resource_id"),
                    usage.get("resource_type"),
                    usage.get("source_language"),
                    usage.get("target_language"),
                    reserved,
                    used,
                    released,
                    round(released * 100 / reserved, 2),
                    now,
                    json.dumps(usage.get("metadata") or {}, default=str, ensure_ascii=False),
                ),
            )
            if used:
                db.add_ledger(conn, shop_id, "capture", used, reservation_id=reservation_id, note="field capture")
            if released:
                db.add_ledger(conn, shop_id, "release", released, reservation_id=reservation_id, note="estimate surplus")

        log.info("reservation confirmed", reservation_id=reservation_id, shop_id=shop_id, used=used, released=released)
        return ConfirmResult(used=used, released=released)

    def release(self, reservation_id: str, note: str = "released") -> bool:
        now = _ts(datetime.now(timezone.utc))
        with db.transaction() as conn:
            row = db.get_reservation_row(conn, reservation_id)
            if not row:
                raise ReservationNotFound(f"reservation {reservation_id} not found", reservation_id=reservation_id)
            if row["status"] != ReservationStatus.PENDING.value:
                log.debug("release skipped, reservation settled", reservation_id=reservation_id, status=row["status"])
                return False
            conn.execute(
                "UPDATE credit_reservations SET status=?, settled_at=? WHERE id=?",
                (ReservationStatus.RELEASED.value, now, reservation_id),
            )
            db.add_ledger(
                conn, row["shop_id"], "release", row["reserved_credits"], reservation_id=reservation_id, note=note
            )

        log.info("reservation released", reservation_id=reservation_id, credits=row["reserved_credits"], note=note)
        return True

    def cleanup_expired(self, now: datetime | None = None) -> int:
        cutoff = _ts(now or datetime.now(timezone.utc))
        with db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT id, shop_id, reserved_credits FROM credit_reservations
                WHERE status=? AND expires_at <= ?
                """,
                (ReservationStatus.PENDING.value, cutoff),
            ).fetchall()
            for r in rows:
                conn.execute(
                    "UPDATE credit_reservations SET status=?, settled_at=? WHERE id=?",
                    (ReservationStatus.EXPIRED.value, cutoff, r["id"]),
                )
                db.add_ledger(conn, r["shop_id"], "expire", r["reserved_credits"], reservation_id=r["id"], note="ttl expired")

        if rows:
            log.warning(
                "expired reservations cleaned",
                count=len(rows),
                total_credits=sum(r["reserved_credits"] for r in rows),
            )
        return len(rows)

    @contextmanager
    def hold(
        self, shop_id: str, estimated_credits: int, metadata: dict[str, Any] | None = None
    ) -> Iterator[ReservationHold]:
        """Reserve credits for the duration of the block.

        Leaving the block without ``confirm``/``release`` (including through an
        exception) releases the reservation.
        """
        reservation_id = self.reserve(shop_id, estimated_credits, metadata)
        hold = ReservationHold(self, reservation_id, shop_id, estimated_credits)
        try:
            yield hold
        finally:
            if not hold.settled:
                try:
                    hold.release(note="hold exited without settlement")
                except LEDGER_ERRORS as exc:
                    # left pending; cleanup_expired picks it up after the TTL
                    log.error("hold release failed", reservation_id=reservation_id, error=str(exc))

    def get_reservation(self, reservation_id: str) -> CreditReservation | None:
        row = db.get_reservation(reservation_id)
        if not row:
            return None
        return CreditReservation(**{k: v for k, v in row.items() if k != "metadata"})

    def get_balance(self, shop_id: str) -> CreditBalance:
        balance, reserved, used = db.credit_summary(shop_id)
        return CreditBalance(
            shop_id=shop_id,
            balance_credits=balance,
            reserved_credits=reserved,
            used_credits=used,
            available_credits=balance - reserved - used,
        )

    def list_usage(self, shop_id: str, limit: int = 50) -> list[UsageRecord]:
        rows = db.list_usage(shop_id, limit)
        return [UsageRecord(**{k: v for k, v in r.items() if k not in ("id", "metadata")}) for r in rows]
