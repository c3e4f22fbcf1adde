from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from ..config import REPO_ROOT, env_or_config, resolve_repo_path

DEFAULT_BASE_PATH = "/reorganizer"
DEFAULT_BIND_HOST = "127.0.0.1"
DEFAULT_BIND_PORT = 4830
DEFAULT_EVENT_BUFFER = 200


@dataclass(frozen=True)
class WebUISettings:
    bind_host: str
    bind_port: int
    base_path: str
    bookmarks_file: Path | None
    provider: str | None
    logs_dir: Path
    event_buffer: int


def _normalize_base_path(raw: str) -> str:
    base = raw.strip() or DEFAULT_BASE_PATH
    if not base.startswith("/"):
        base = f"/{base}"
    return base.rstrip("/") or DEFAULT_BASE_PATH


def _int_env(name: str, default: int, *, min_val: int | None = None, max_val: int | None = None) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    value = int(raw)
    if min_val is not None and value < min_val:
        print(f"[webui] WARNING: {name}={value} is below minimum {min_val}, using {min_val}", flush=True)
        return min_val
    if max_val is not None and value > max_val:
        print(f"[webui] WARNING: {name}={value} is above maximum {max_val}, using {max_val}", flush=True)
        return max_val
    return value


def load_webui_settings() -> WebUISettings:
    bind_host = os.environ.get("WEB_BIND_HOST", DEFAULT_BIND_HOST).strip() or DEFAULT_BIND_HOST
    bind_port = _int_env("WEB_BIND_PORT", DEFAULT_BIND_PORT, min_val=1, max_val=65535)
    base_path = _normalize_base_path(os.environ.get("WEB_BASE_PATH", DEFAULT_BASE_PATH))

    bookmarks_raw = str(env_or_config("BOOKMARKS_FILE", "bookmarks.file", "") or "").strip()
    bookmarks_file = resolve_repo_path(bookmarks_raw) if bookmarks_raw else None
    provider = str(env_or_config("CATEGORIZER_PROVIDER", "categorizer.provider", "") or "").strip() or None

    return WebUISettings(
        bind_host=bind_host,
        bind_port=bind_port,
        base_path=base_path,
        bookmarks_file=bookmarks_file,
        provider=provider,
        logs_dir=REPO_ROOT / "logs" / "webui",
        event_buffer=_int_env("WEB_EVENT_BUFFER", DEFAULT_EVENT_BUFFER, min_val=1),
    )
