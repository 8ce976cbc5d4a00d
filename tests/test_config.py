"""Tests for configuration loading from the environment."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from notekeeper.config import _USER_ENV, NotekeeperConfig

_ENV_VARS = (
    "NOTEKEEPER_BASE_DIR",
    "NOTEKEEPER_DATA_DIR",
    "NOTEKEEPER_DATABASE_PATH",
    "NOTEKEEPER_LOG_DIR",
    "NOTEKEEPER_LOG_LEVEL",
    "NOTEKEEPER_PREVIEW_LENGTH",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_user_env_path():
    assert _USER_ENV == Path.home() / ".notekeeper" / ".env"


def test_defaults(clean_env):
    cfg = NotekeeperConfig()
    assert cfg.data_dir == Path("data/files")
    assert cfg.database_path == Path("data/db/notekeeper.db")
    assert cfg.log_dir is None
    assert cfg.log_level == "WARNING"
    assert cfg.preview_length == 120


def test_environment_overrides(clean_env, tmp_path):
    clean_env.setenv("NOTEKEEPER_BASE_DIR", str(tmp_path))
    clean_env.setenv("NOTEKEEPER_LOG_DIR", str(tmp_path / "logs"))
    clean_env.setenv("NOTEKEEPER_LOG_LEVEL", "debug")
    clean_env.setenv("NOTEKEEPER_PREVIEW_LENGTH", "40")
    cfg = NotekeeperConfig()
    assert cfg.base_dir == tmp_path
    assert cfg.log_dir == tmp_path / "logs"
    assert cfg.log_level == "DEBUG"
    assert cfg.preview_length == 40


def test_unknown_log_level_falls_back(clean_env):
    clean_env.setenv("NOTEKEEPER_LOG_LEVEL", "chatty")
    assert NotekeeperConfig().log_level == "WARNING"


def test_preview_length_must_be_positive(clean_env):
    with pytest.raises(ValidationError):
        NotekeeperConfig(preview_length=0)


def test_paths_resolve_against_base_dir(clean_env, tmp_path):
    cfg = NotekeeperConfig(base_dir=tmp_path)
    assert cfg.get_data_dir() == tmp_path / "data" / "files"
    assert cfg.get_data_dir().is_dir()
    assert cfg.get_db_url() == f"sqlite:///{tmp_path / 'data' / 'db' / 'notekeeper.db'}"
    assert cfg.get_absolute_path(Path("/abs/x")) == Path("/abs/x")
