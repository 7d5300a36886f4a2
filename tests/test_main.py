from __future__ import annotations

import json
from datetime import datetime, timezone

from newsbot import main as cli
from newsbot.config import Config
from newsbot.models import Report
from newsbot.storage import Storage
from newsbot.telegram_notifier import send_telegram_message

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _use_tmp_db(tmp_path, monkeypatch) -> Storage:
    db_path = tmp_path / "cli.db"
    monkeypatch.setattr(Config, "DB_PATH", db_path)
    monkeypatch.setattr(Config, "LOG_FILE", None)
    storage = Storage(db_path)
    storage.insert_report(Report(
        market_id="m1",
        headline="Odds climb",
        summary="Moved.",
        analysis="Details.",
        key_takeaways="• Move",
        reasons=["Price spike"],
        confidence=0.8,
        price_change=0.3,
        volume_change=1.0,
        event_time=NOW,
        created_at=NOW,
    ))
    return storage


def test_reports_as_json(tmp_path, monkeypatch, capsys) -> None:
    _use_tmp_db(tmp_path, monkeypatch)

    assert cli.main(["--reports", "5", "--json"]) == 0

    printed = json.loads(capsys.readouterr().out)
    assert [report["headline"] for report in printed] == ["Odds climb"]


def test_clear_reports(tmp_path, monkeypatch) -> None:
    storage = _use_tmp_db(tmp_path, monkeypatch)

    assert cli.main(["--clear", "reports"]) == 0
    assert storage.list_reports() == []


def test_cycle_refuses_invalid_config(tmp_path, monkeypatch) -> None:
    _use_tmp_db(tmp_path, monkeypatch)
    monkeypatch.setattr(Config, "REPORT_PROVIDER", "anthropic")
    monkeypatch.setattr(Config, "ANTHROPIC_API_KEY", None)

    assert cli.main([]) == 1


def test_history_rejects_empty_window(tmp_path, monkeypatch) -> None:
    _use_tmp_db(tmp_path, monkeypatch)

    assert cli.main(["--history", "m1", "--hours", "0"]) == 1


def test_telegram_send_is_skipped_when_unconfigured(monkeypatch) -> None:
    monkeypatch.setattr(Config, "TELEGRAM_BOT_TOKEN", None)
    monkeypatch.setattr(Config, "TELEGRAM_CHAT_ID", "123")

    assert send_telegram_message("hello") is False
