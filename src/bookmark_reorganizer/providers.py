from __future__ import annotations

import logging
from typing import Callable

import requests

from .config import env_or_config
from .errors import ProviderConfigError

logger = logging.getLogger(__name__)

QueryText = Callable[[str], "str | None"]

SYSTEM_PROMPT = "You are a precise JSON-only assistant."
PROVIDER_CHOICES: tuple[str, ...] = ("chatgpt", "anthropic", "ollama", "gemini")
REQUEST_TIMEOUT = 120


def _setting(env_key: str, config_path: str, default: str = "") -> str:
    return str(env_or_config(env_key, config_path, default) or "").strip()


def query_chatgpt(prompt_text: str) -> str | None:
    base_url = _setting("OPENAI_BASE_URL", "providers.openai.base_url", "https://api.openai.com/v1")
    payload = {
        "model": _setting("OPENAI_MODEL", "providers.openai.model", "gpt-4o-mini"),
        "temperature": 0,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt_text + "\n\nRespond only with valid JSON."},
        ],
    }
    try:
        response = requests.post(
            f"{base_url.rstrip('/')}/chat/completions",
            headers={
                "Authorization": f"Bearer {_setting('OPENAI_API_KEY', 'providers.openai.api_key')}",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()
        return data["choices"][0]["message"]["content"].strip()
    except (requests.RequestException, KeyError, IndexError, TypeError, ValueError) as exc:
        logger.warning("ChatGPT request error: %s", exc)
        return None


def query_anthropic(prompt_text: str) -> str | None:
    payload = {
        "model": _setting("ANTHROPIC_MODEL", "providers.anthropic.model", "claude-haiku-4-5-20251001"),
        "max_tokens": 4096,
        "system": SYSTEM_PROMPT,
        "messages": [{"role": "user", "content": prompt_text}],
    }
    try:
        response = requests.post(
            "https://api.anthropic.com/v1/messages",
            headers={
                "x-api-key": _setting("ANTHROPIC_API_KEY", "providers.anthropic.api_key"),
                "anthropic-version": "2023-06-01",
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        blocks = response.json().get("content") or []
        text = "".join(str(block.get("text") or "") for block in blocks if isinstance(block, dict))
        return text.strip() or None
    except (requests.RequestException, AttributeError, TypeError, ValueError) as exc:
        logger.warning("Anthropic request error: %s", exc)
        return None


def _ollama_generate_url(url: str) -> str:
    base_url = url.strip().rstrip("/")
    if base_url.endswith("/api/generate"):
        return base_url
    if base_url.endswith("/api"):
        return f"{base_url}/generate"
    return f"{base_url}/api/generate"


def query_ollama(prompt_text: str) -> str | None:
    url = _ollama_generate_url(_setting("OLLAMA_URL", "providers.ollama.url", "http://localhost:11434/api"))
    payload = {
        "model": _setting("OLLAMA_MODEL", "providers.ollama.model", "mistral:7b"),
        "prompt": prompt_text,
        "format": "json",
        "stream": False,
        "options": {"temperature": 0},
    }
    try:
        response = requests.post(url, json=payload, timeout=REQUEST_TIMEOUT)
        response.raise_for_status()
        return str(response.json().get("response") or "").strip() or None
    except (requests.RequestException, AttributeError, ValueError) as exc:
        logger.warning("Ollama request error: %s", exc)
        return None


def query_gemini(prompt_text: str) -> str | None:
    model = _setting("GEMINI_MODEL", "providers.gemini.model", "gemini-1.5-flash")
    payload = {
        "contents": [{"role": "user", "parts": [{"text": prompt_text}]}],
        "generationConfig": {"temperature": 0},
    }
    try:
        response = requests.post(
            f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent",
            headers={
                "x-goog-api-key": _setting("GEMINI_API_KEY", "providers.gemini.api_key"),
                "Content-Type": "application/json",
            },
            json=payload,
            timeout=REQUEST_TIMEOUT,
        )
        response.raise_for_status()
        candidates = response.json().get("candidates") or []
        parts = candidates[0]["content"]["parts"] if candidates else []
        return "".join(str(part.get("text") or "") for part in parts).strip() or None
    except (requests.RequestException, AttributeError, KeyError, TypeError, ValueError) as exc:
        logger.warning("Gemini request error: %s", exc)
        return None


_PROVIDERS: dict[str, tuple[QueryText, str, str]] = {
    "chatgpt": (query_chatgpt, "openai", "OPENAI"),
    "anthropic": (query_anthropic, "anthropic", "ANTHROPIC"),
    "ollama": (query_ollama, "ollama", "OLLAMA"),
    "gemini": (query_gemini, "gemini", "GEMINI"),
}


def resolve_provider() -> str:
    return _setting("CATEGORIZER_PROVIDER", "categorizer.provider", "chatgpt").lower()


def resolve_query_text(provider: str | None = None) -> tuple[QueryText, str]:
    """Return the query callable for ``provider`` and a display name for logs.

    Raises ProviderConfigError for an unknown provider or a missing credential.
    Ollama only needs a URL, which has a local default.
    """
    name = (provider or resolve_provider()).strip().lower()
    if name not in _PROVIDERS:
        raise ProviderConfigError(f"Unknown provider '{name}'. Choose one of: {', '.join(PROVIDER_CHOICES)}.")
    query_text, section, env_prefix = _PROVIDERS[name]
    if name != "ollama" and not _setting(f"{env_prefix}_API_KEY", f"providers.{section}.api_key"):
        raise ProviderConfigError(f"{env_prefix}_API_KEY is empty. Set it in .env or the environment.")
    model = _setting(f"{env_prefix}_MODEL", f"providers.{section}.model")
    return query_text, f"{name} ({model})" if model else name
