from __future__ import annotations

import importlib.util
import time
from pathlib import Path

from broker.sessions.models import AuthSessionRecord
from broker.sessions.store import SQLiteSessionStore
from broker.tenancy.repository import TenancyRepository
from tests.broker_factories import CALLBACK_URL, seed_application

SCRIPT_PATH = Path(__file__).resolve().parents[1] / "scripts" / "sweep_expired_sessions_once.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("sweep_expired_sessions_once", SCRIPT_PATH)
    assert spec is not None and spec.loader is not None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _seed(db_path: Path) -> None:
    tenancy = TenancyRepository(db_path)
    app_id = seed_application(tenancy).id
    tenancy.close()
    store = SQLiteSessionStore(db_path)
    now = int(time.time())
    for token, expires_at in (("old", now - 10), ("live", now + 600)):
        store.create(
            AuthSessionRecord(
                token=token,
                application_id=app_id,
                redirect_url=CALLBACK_URL,
                created_at=now - 60,
                expires_at=expires_at,
            )
        )
    store.close()


def test_sweep_script_dry_run_then_write(tmp_path: Path, monkeypatch, capsys) -> None:
    db_path = tmp_path / "broker.db"
    _seed(db_path)
    monkeypatch.setenv("BROKER_PUBLIC_URL", "https://auth.example.com")
    monkeypatch.setenv("AUTH_SECRET_KEY", "secret")
    monkeypatch.setenv("BROKER_DATABASE_PATH", str(db_path))
    monkeypatch.delenv("MONGODB_URI", raising=False)
    script = _load_script()
    monkeypatch.setattr(script, "load_dotenv", lambda: False)

    assert script.main(["--dry-run"]) == 0
    assert "Expired sessions found: 1" in capsys.readouterr().out

    assert script.main([]) == 0
    assert "Expired sessions deleted: 1" in capsys.readouterr().out

    assert script.main([]) == 0
    assert "Expired sessions deleted: 0" in capsys.readouterr().out


def test_sweep_script_reports_missing_configuration(monkeypatch, capsys) -> None:
    monkeypatch.delenv("BROKER_PUBLIC_URL", raising=False)
    script = _load_script()
    monkeypatch.setattr(script, "load_dotenv", lambda: False)

    assert script.main([]) == 2
    assert "Configuration error" in capsys.readouterr().out
