from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Callable

REPO_ROOT = Path(__file__).resolve().parents[2]
CONFIG_FILE = REPO_ROOT / "configs" / "config.json"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}

_config_cache: dict[str, Any] | None = None


def load_env_file(path: Path) -> None:
    """Load KEY=VALUE lines into os.environ without overriding existing values."""
    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        if line.startswith("export "):
            line = line[len("export ") :]
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _config_file_path() -> Path:
    override = os.environ.get("BOOKMARK_REORGANIZER_CONFIG", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return CONFIG_FILE


def load_config(refresh: bool = False) -> dict[str, Any]:
    global _config_cache
    if _config_cache is not None and not refresh:
        return _config_cache
    path = _config_file_path()
    data: dict[str, Any] = {}
    if path.exists():
        try:
            loaded = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Invalid JSON in config file {path}: {exc}") from exc
        if isinstance(loaded, dict):
            data = loaded
    _config_cache = data
    return data


def config_value(path: str, default: Any = None) -> Any:
    node: Any = load_config()
    for part in path.split("."):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return node


def env_or_config(
    env_key: str,
    config_path: str,
    default: Any = None,
    cast: Callable[[Any], Any] | None = None,
) -> Any:
    raw = os.environ.get(env_key)
    if raw is not None and raw.strip() != "":
        value: Any = raw.strip()
    else:
        value = config_value(config_path, default)
    if cast is not None and value is not None:
        return cast(value)
    return value


def resolve_repo_path(value: str | Path) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = REPO_ROOT / path
    return path.resolve()


def resolve_root_folders() -> tuple[str, str]:
    """Return the (bookmarks bar, other bookmarks) folder ids the engine may rewrite."""
    bar = str(env_or_config("BOOKMARK_BAR_ID", "roots.bookmark_bar", "1")).strip() or "1"
    other = str(env_or_config("OTHER_BOOKMARKS_ID", "roots.other", "2")).strip() or "2"
    if bar == other:
        raise ValueError(f"Root folders must differ, both resolved to '{bar}'.")
    return bar, other


def resolve_undo_capacity() -> int:
    capacity = env_or_config("UNDO_CAPACITY", "undo.capacity", 50, int)
    if capacity < 1:
        raise ValueError(f"UNDO_CAPACITY must be at least 1, got {capacity}.")
    return capacity


load_env_file(REPO_ROOT / ".env")
