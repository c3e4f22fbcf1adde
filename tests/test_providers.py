import pytest
import requests

from bookmark_reorganizer import providers
from bookmark_reorganizer.errors import ProviderConfigError


class _FakeResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def json(self):
        return self._payload


def test_query_chatgpt_returns_message_content(monkeypatch):
    calls = []

    def fake_post(url, headers=None, json=None, timeout=None):
        calls.append((url, headers, json))
        return _FakeResponse({"choices": [{"message": {"content": ' {"AI": {}} '}}]})

    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_BASE_URL", "https://llm.example/v1/")
    monkeypatch.setattr(providers.requests, "post", fake_post)

    assert providers.query_chatgpt("prompt") == '{"AI": {}}'
    url, headers, body = calls[0]
    assert url == "https://llm.example/v1/chat/completions"
    assert headers["Authorization"] == "Bearer sk-test"
    assert body["temperature"] == 0


def test_query_functions_return_none_on_errors(monkeypatch):
    def failing_post(*_args, **_kwargs):
        raise requests.ConnectionError("offline")

    monkeypatch.setattr(providers.requests, "post", failing_post)
    assert providers.query_chatgpt("prompt") is None
    assert providers.query_anthropic("prompt") is None
    assert providers.query_ollama("prompt") is None
    assert providers.query_gemini("prompt") is None

    monkeypatch.setattr(providers.requests, "post", lambda *_a, **_k: _FakeResponse({}, status_code=500))
    assert providers.query_chatgpt("prompt") is None


def test_query_anthropic_joins_text_blocks(monkeypatch):
    payload = {"content": [{"type": "text", "text": '{"Music":'}, {"type": "text", "text": " {}}"}]}
    monkeypatch.setattr(providers.requests, "post", lambda *_a, **_k: _FakeResponse(payload))
    assert providers.query_anthropic("prompt") == '{"Music": {}}'


def test_query_ollama_uses_generate_endpoint(monkeypatch):
    urls = []

    def fake_post(url, json=None, timeout=None):
        urls.append(url)
        return _FakeResponse({"response": '{"Games": {}}'})

    monkeypatch.setenv("OLLAMA_URL", "http://ollama.local:11434/api")
    monkeypatch.setattr(providers.requests, "post", fake_post)
    assert providers.query_ollama("prompt") == '{"Games": {}}'
    assert urls == ["http://ollama.local:11434/api/generate"]


def test_query_gemini_reads_candidate_parts(monkeypatch):
    payload = {"candidates": [{"content": {"parts": [{"text": '{"Search": {}}'}]}}]}
    monkeypatch.setattr(providers.requests, "post", lambda *_a, **_k: _FakeResponse(payload))
    assert providers.query_gemini("prompt") == '{"Search": {}}'


def test_resolve_query_text(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-test")
    query_text, name = providers.resolve_query_text("chatgpt")
    assert query_text is providers.query_chatgpt
    assert name == "chatgpt (gpt-test)"

    query_text, _name = providers.resolve_query_text("ollama")
    assert query_text is providers.query_ollama


def test_resolve_query_text_rejects_bad_configuration(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "")
    with pytest.raises(ProviderConfigError):
        providers.resolve_query_text("anthropic")
    with pytest.raises(ProviderConfigError):
        providers.resolve_query_text("mystery")
