from __future__ import annotations

from webscan.settings import resolve_settings


def test_defaults_without_file(monkeypatch):
    monkeypatch.delenv("WEBSCAN_DB_PATH", raising=False)
    monkeypatch.delenv("WEBSCAN_WORKER_CONCURRENCY", raising=False)
    monkeypatch.delenv("WEBSCAN_ANNOTATOR_API_KEY", raising=False)

    settings = resolve_settings(None)

    assert settings["paths"]["db_path"] == "/data/webscan.db"
    assert settings["workers"]["concurrency"] == 5
    assert settings["queue"]["attempts"] == 3
    assert settings["queue"]["backoff_seconds"] == 2.0
    assert settings["queue"]["keep_completed_count"] == 1000
    assert settings["queue"]["keep_failed_seconds"] == 86400
    assert settings["annotator"]["enabled"] is False
    assert settings["annotator"]["api_key"] is None
    assert settings["scan"]["cancel_check_interval"] == 1


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBSCAN_DB_PATH", str(tmp_path / "scans.db"))
    monkeypatch.setenv("WEBSCAN_WORKER_CONCURRENCY", "2")
    monkeypatch.setenv("WEBSCAN_ANNOTATOR_API_KEY", "sk-env")

    settings = resolve_settings(str(tmp_path / "missing.yaml"))

    assert settings["paths"]["db_path"] == str(tmp_path / "scans.db")
    assert settings["workers"]["concurrency"] == 2
    assert settings["annotator"]["api_key"] == "sk-env"


def test_yaml_values_win_over_defaults(monkeypatch, tmp_path):
    monkeypatch.setenv("WEBSCAN_WORKER_CONCURRENCY", "9")
    config = tmp_path / "settings.yaml"
    config.write_text(
        "workers:\n  concurrency: 3\nqueue:\n  attempts: 5\nannotator:\n",
        encoding="utf-8",
    )

    settings = resolve_settings(str(config))

    assert settings["workers"]["concurrency"] == 3
    assert settings["workers"]["poll_interval_seconds"] == 1.0
    assert settings["queue"]["attempts"] == 5
    assert settings["queue"]["backoff_seconds"] == 2.0
    assert settings["annotator"]["model"] == "gpt-4"
