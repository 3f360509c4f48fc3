from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from fleet_probe.errors import ConfigError
from fleet_probe.settings import Config, FileConfigStore


ORIGINAL_STYLE_CONFIG = {
    "database": {"user": "probe", "password": "pw", "host": "db", "database": "probe", "port": 5432},
    "auth": "tok1",
    "hosts": ["a.example.com", "b.example.com"],
    "days_delta": 2,
    "login": "ops@example.com",
    "password": "secret",
}


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("FLEET_PROBE_BATCH_SIZE", "FLEET_PROBE_DEADLINE_SECONDS", "FLEET_PROBE_API_BASE_URL"):
        monkeypatch.delenv(name, raising=False)


def test_load_json_with_original_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(ORIGINAL_STYLE_CONFIG), encoding="utf-8")

    config = FileConfigStore(path).load()
    assert config.credential == "tok1"
    assert config.login_email == "ops@example.com"
    assert config.login_password == "secret"
    assert config.hosts == ["a.example.com", "b.example.com"]
    assert config.lookback_days == 2
    assert config.batch_size == 10
    assert config.deadline_seconds == 180.0
    assert config.utc_offset_hours == 3.0


def test_save_writes_new_credential_and_keeps_other_keys(tmp_path: Path) -> None:
    path = tmp_path / "config.json"
    raw = dict(ORIGINAL_STYLE_CONFIG, owner="team-ops")
    path.write_text(json.dumps(raw), encoding="utf-8")

    store = FileConfigStore(path)
    config = store.load()
    store.save(config.with_credential("tok2"))

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["auth"] == "tok2"
    assert saved["login"] == "ops@example.com"
    assert saved["days_delta"] == 2
    assert saved["owner"] == "team-ops"
    assert saved["database"]["port"] == 5432
    assert not (tmp_path / "config.json.tmp").exists()
    assert FileConfigStore(path).load().credential == "tok2"


def test_failed_save_leaves_no_temp_file_and_keeps_original(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    original = json.dumps(ORIGINAL_STYLE_CONFIG)
    path.write_text(original, encoding="utf-8")
    store = FileConfigStore(path)
    config = store.load()

    def _fail_replace(self, target):
        raise OSError("disk full")

    monkeypatch.setattr(Path, "replace", _fail_replace)
    with pytest.raises(OSError):
        store.save(config.with_credential("tok2"))
    monkeypatch.undo()

    assert not (tmp_path / "config.json.tmp").exists()
    assert path.read_text(encoding="utf-8") == original


def test_yaml_config_roundtrip(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(dict(ORIGINAL_STYLE_CONFIG, batch_size=5)), encoding="utf-8")

    store = FileConfigStore(path)
    config = store.load()
    assert config.batch_size == 5
    store.save(config.with_credential("tok3"))

    saved = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert saved["auth"] == "tok3"
    assert saved["batch_size"] == 5


def test_env_overrides_apply_but_are_not_persisted(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(dict(ORIGINAL_STYLE_CONFIG, deadline_seconds=60)), encoding="utf-8")
    monkeypatch.setenv("FLEET_PROBE_BATCH_SIZE", "3")
    monkeypatch.setenv("FLEET_PROBE_DEADLINE_SECONDS", "1.5")

    store = FileConfigStore(path)
    config = store.load()
    assert config.batch_size == 3
    assert config.deadline_seconds == 1.5

    store.save(config.with_credential("tok2"))
    saved = json.loads(path.read_text(encoding="utf-8"))
    assert "batch_size" not in saved
    assert saved["deadline_seconds"] == 60


@pytest.mark.parametrize(
    "content",
    [
        "{not json",
        "[1, 2, 3]",
        json.dumps(dict(ORIGINAL_STYLE_CONFIG, batch_size=0)),
        json.dumps(dict(ORIGINAL_STYLE_CONFIG, days_delta=-1)),
        json.dumps(dict(ORIGINAL_STYLE_CONFIG, hosts="a.example.com")),
    ],
)
def test_invalid_config_raises_config_error(tmp_path: Path, content: str) -> None:
    path = tmp_path / "config.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        FileConfigStore(path).load()


def test_missing_config_file_raises_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        FileConfigStore(tmp_path / "missing.yaml").load()


def test_invalid_env_override_raises_config_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    path = tmp_path / "config.json"
    path.write_text(json.dumps(ORIGINAL_STYLE_CONFIG), encoding="utf-8")
    monkeypatch.setenv("FLEET_PROBE_BATCH_SIZE", "ten")
    with pytest.raises(ConfigError):
        FileConfigStore(path).load()


def test_config_accepts_field_names() -> None:
    config = Config(credential="tok", login_email="a@b.c", hosts=["x"], lookback_days=3)
    assert config.credential == "tok"
    assert config.lookback_days == 3
