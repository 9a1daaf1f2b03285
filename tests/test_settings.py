from __future__ import annotations

from pathlib import Path

import pytest

from mosctl.core.errors import ConfigError
from mosctl.core.settings import Settings, load_settings


def _write_settings(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def test_defaults_without_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    assert load_settings() == Settings()


def test_file_values_loaded(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    _write_settings(
        tmp_path / "cfg" / "mosctl" / "config.yml",
        """
port: tcp://192.168.4.1
timeout_s: 5
server: https://builds.example
build_vars:
  MGOS_DEBUG: 1
""",
    )

    settings = load_settings()
    assert settings.port == "tcp://192.168.4.1"
    assert settings.timeout_s == 5
    assert settings.server == "https://builds.example"
    assert settings.build_vars == {"MGOS_DEBUG": "1"}
    assert settings.user == "test"


def test_unknown_key_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    _write_settings(tmp_path / "cfg" / "mosctl" / "config.yml", "prot: typo\n")

    with pytest.raises(ConfigError) as exc:
        load_settings()
    assert "Schema validation failed" in str(exc.value)


def test_bad_server_url_rejected(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    _write_settings(tmp_path / "cfg" / "mosctl" / "config.yml", "server: ftp://nope\n")

    with pytest.raises(ConfigError) as exc:
        load_settings()
    assert "(server)" in str(exc.value)


def test_merged_ignores_none_and_merges_build_vars() -> None:
    base = Settings(port="serial:///dev/ttyACM0", build_vars={"A": "1"})
    merged = base.merged(port=None, arch="esp32", build_vars={"B": "2"})

    assert merged.port == "serial:///dev/ttyACM0"
    assert merged.arch == "esp32"
    assert merged.build_vars == {"A": "1", "B": "2"}
