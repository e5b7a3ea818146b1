import threading

import structlog

from shop_translator.config import settings
from shop_translator.errors import LedgerUnavailable
from shop_translator.ledger import CreditLedger

log = structlog.get_logger(__name__)


def run_cleanup_cycle(ledger: CreditLedger) -> int:
    try:
        return ledger.cleanup_expired()
    except LedgerUnavailable as exc:
        log.error("reservation cleanup failed", error=str(exc))
        return 0


def _cleanup_loop(ledger: CreditLedger, interval_sec: float, stop: threading.Event) -> None:
    log.info("reservation janitor started", interval_sec=interval_sec)
    while not stop.wait(interval_sec):
        run_cleanup_cycle(ledger)
    log.info("reservation janitor stopped")


def start_cleanup_thread(
    ledger: CreditLedger | None = None, interval_sec: float | None = None
) -> tuple[threading.Thread, threading.Event]:
    stop = threading.Event()
    thread = threading.Thread(
        target=_cleanup_loop,
        args=(ledger or CreditLedger(), interval_sec or settings.cleanup_interval_sec, stop),
        name="reservation-janitor",
        daemon=True,
    )
    thread.start()
    return thread, stop
