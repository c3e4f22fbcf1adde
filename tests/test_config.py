import json
import os

import pytest

from bookmark_reorganizer import config
from bookmark_reorganizer.config import env_or_config, load_env_file, resolve_root_folders, resolve_undo_capacity, to_bool


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text(
        json.dumps({"roots": {"bookmark_bar": "10", "other": "20"}, "undo": {"capacity": 5}, "categorizer": {"query_retries": 7}}),
        encoding="utf-8",
    )
    monkeypatch.setenv("BOOKMARK_REORGANIZER_CONFIG", str(path))
    monkeypatch.setattr(config, "_config_cache", None)
    for key in ("BOOKMARK_BAR_ID", "OTHER_BOOKMARKS_ID", "UNDO_CAPACITY", "QUERY_RETRIES"):
        monkeypatch.delenv(key, raising=False)
    return path


@pytest.mark.parametrize(
    "value,expected",
    [
        (True, True),
        (False, False),
        (1, True),
        (0, False),
        ("true", True),
        ("FALSE", False),
        ("yes", True),
        ("off", False),
    ],
)
def test_to_bool_valid_values(value, expected):
    assert to_bool(value) is expected


def test_to_bool_invalid_value():
    with pytest.raises(ValueError):
        to_bool("maybe")


def test_env_overrides_config_file(config_file, monkeypatch):
    assert env_or_config("QUERY_RETRIES", "categorizer.query_retries", 3, int) == 7
    monkeypatch.setenv("QUERY_RETRIES", "2")
    assert env_or_config("QUERY_RETRIES", "categorizer.query_retries", 3, int) == 2
    monkeypatch.setenv("QUERY_RETRIES", "  ")
    assert env_or_config("QUERY_RETRIES", "categorizer.query_retries", 3, int) == 7
    assert env_or_config("MISSING_KEY", "does.not.exist", "fallback") == "fallback"


def test_root_folders_and_capacity(config_file, monkeypatch):
    assert resolve_root_folders() == ("10", "20")
    assert resolve_undo_capacity() == 5

    monkeypatch.setenv("OTHER_BOOKMARKS_ID", "10")
    with pytest.raises(ValueError):
        resolve_root_folders()
    monkeypatch.setenv("UNDO_CAPACITY", "0")
    with pytest.raises(ValueError):
        resolve_undo_capacity()


def test_invalid_config_json_raises(tmp_path, monkeypatch):
    path = tmp_path / "config.json"
    path.write_text("{not json", encoding="utf-8")
    monkeypatch.setenv("BOOKMARK_REORGANIZER_CONFIG", str(path))
    monkeypatch.setattr(config, "_config_cache", None)
    with pytest.raises(ValueError):
        config.load_config(refresh=True)


def test_load_env_file_keeps_existing_values(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    env_file.write_text('# comment\nexport NEW_KEY="fresh"\nEXISTING_KEY=from-file\n', encoding="utf-8")
    monkeypatch.setenv("EXISTING_KEY", "from-env")
    monkeypatch.delenv("NEW_KEY", raising=False)

    load_env_file(env_file)

    assert os.environ["NEW_KEY"] == "fresh"
    assert os.environ["EXISTING_KEY"] == "from-env"
    monkeypatch.delenv("NEW_KEY")
