import importlib.util
import sqlite3
from pathlib import Path

from shop_translator import config
from shop_translator.ledger import CreditLedger
from shop_translator.schemas import ReservationStatus
from shop_translator.worker import run_cleanup_cycle, start_cleanup_thread


def _load_script():
    path = Path(__file__).resolve().parents[1] / "scripts" / "cleanup_expired.py"
    spec = importlib.util.spec_from_file_location("cleanup_expired", path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_cleanup_script_expires_reservations(funded_shop, monkeypatch, capsys):
    ledger = CreditLedger()
    rid = ledger.reserve(funded_shop, 25)

    # back-date the reservation past its TTL
    conn = sqlite3.connect(config.settings.database_path)
    conn.execute("UPDATE credit_reservations SET expires_at=? WHERE id=?", ("2000-01-01T00:00:00.000000+00:00", rid))
    conn.commit()
    conn.close()

    script = _load_script()
    monkeypatch.setattr(script, "setup_logging", lambda: None)
    script.main()

    assert "Expired reservations cleaned: 1" in capsys.readouterr().out
    assert ledger.get_reservation(rid).status == ReservationStatus.EXPIRED
    assert ledger.get_balance(funded_shop).available_credits == 130


def test_run_cleanup_cycle_survives_unavailable_ledger(tmp_path, monkeypatch):
    garbage = tmp_path / "garbage.db"
    garbage.write_bytes(b"not a database" * 1024)
    monkeypatch.setattr(config.settings, "database_path", str(garbage))
    assert run_cleanup_cycle(CreditLedger()) == 0


def test_cleanup_thread_stops():
    thread, stop = start_cleanup_thread(interval_sec=0.01)
    assert thread.name == "reservation-janitor"
    assert thread.daemon is True
    stop.set()
    thread.join(timeout=2)
    assert not thread.is_alive()
