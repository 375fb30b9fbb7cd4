"""Tests for YAML/environment configuration."""
import textwrap

import pytest

from consultflow.config import Config, ConfigError


def test_missing_file_gives_defaults(tmp_path, monkeypatch):
    monkeypatch.delenv("CONSULTFLOW_DB", raising=False)
    monkeypatch.delenv("CONSULTFLOW_API_SECRET", raising=False)
    cfg = Config.load(str(tmp_path / "nope.yaml"))
    assert cfg.webhook_batch_size == 10
    assert cfg.response_body_limit == 1000
    assert cfg.drain_interval_secs == 5.0
    assert cfg.db_path.endswith("consultflow.db")
    assert "~" not in cfg.db_path


def test_yaml_values_and_unknown_keys(tmp_path, monkeypatch):
    monkeypatch.delenv("CONSULTFLOW_DB", raising=False)
    path = tmp_path / "config.yaml"
    path.write_text(textwrap.dedent("""
        db_path: /srv/board.db
        port: 8080
        webhook_batch_size: 25
        auto_process_webhooks: false
        legacy_option: ignored
    """))
    cfg = Config.load(str(path))
    assert cfg.db_path == "/srv/board.db"
    assert cfg.port == 8080
    assert cfg.webhook_batch_size == 25
    assert cfg.auto_process_webhooks is False


def test_broken_yaml_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("port: [unclosed")
    assert Config.load(str(path)).port == 3000


def test_environment_overrides(tmp_path, monkeypatch):
    monkeypatch.setenv("CONSULTFLOW_DB", str(tmp_path / "env.db"))
    monkeypatch.setenv("CONSULTFLOW_API_SECRET", "from-env")
    cfg = Config.load(str(tmp_path / "nope.yaml"))
    assert cfg.db_path == str(tmp_path / "env.db")
    assert cfg.api_secret == "from-env"


def test_invalid_values_raise(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("webhook_batch_size: 0\n")
    with pytest.raises(ConfigError):
        Config.load(str(path))
