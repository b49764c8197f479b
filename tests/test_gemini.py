from __future__ import annotations

import httpx
import pytest

from pathway.services import gemini


class _FakeClient:
    def __init__(self, handler):
        self.handler = handler
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.handler(url, **kwargs)


def _response(status: int = 200, *, json=None, content: bytes | None = None) -> httpx.Response:
    request = httpx.Request("POST", "https://gemini.test/models/m:generateContent")
    if content is not None:
        return httpx.Response(status, content=content, request=request)
    return httpx.Response(status, json=json, request=request)


def _reply(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture(autouse=True)
def configured(monkeypatch):
    monkeypatch.setattr(gemini.settings, "gemini_api_key", "server-key")
    monkeypatch.setattr(gemini.settings, "gemini_model", "gemini-test")
    monkeypatch.setattr(gemini.settings, "gemini_api_url", "https://gemini.test/v1beta/")


def test_generate_content_returns_text(monkeypatch):
    fake = _FakeClient(lambda url, **kw: _response(json=_reply("Hello from Gemini")))
    monkeypatch.setattr(gemini, "_get_client", lambda: fake)

    text = gemini.generate_content(
        "Which universities fit me?",
        history=[{"role": "user", "text": "hi"}, {"role": "model", "text": "hello"}],
        system_instruction="Be helpful",
    )

    assert text == "Hello from Gemini"
    url, kwargs = fake.calls[0]
    assert url == "https://gemini.test/v1beta/models/gemini-test:generateContent"
    assert kwargs["headers"] == {"x-goog-api-key": "server-key"}
    payload = kwargs["json"]
    assert [c["role"] for c in payload["contents"]] == ["user", "model", "user"]
    assert payload["contents"][-1]["parts"][0]["text"] == "Which universities fit me?"
    assert payload["systemInstruction"] == {"parts": [{"text": "Be helpful"}]}
    assert payload["generationConfig"]["maxOutputTokens"] == 4096


def test_build_payload_attaches_images_and_skips_empty_history():
    payload = gemini.build_payload(
        "Describe",
        history=[{"role": "user", "text": ""}],
        images=[{"mime_type": "image/png", "data": "aGk="}],
    )
    assert len(payload["contents"]) == 1
    parts = payload["contents"][0]["parts"]
    assert parts[1] == {"inline_data": {"mime_type": "image/png", "data": "aGk="}}
    assert "systemInstruction" not in payload
    assert "responseMimeType" not in payload["generationConfig"]


def test_generate_content_requests_json_mode(monkeypatch):
    fake = _FakeClient(lambda url, **kw: _response(json=_reply("[]")))
    monkeypatch.setattr(gemini, "_get_client", lambda: fake)

    assert gemini.generate_content("List", response_mime_type="application/json") == "[]"
    config = fake.calls[0][1]["json"]["generationConfig"]
    assert config["responseMimeType"] == "application/json"
    assert "responseMimeType" not in gemini._GENERATION_CONFIG


def test_missing_key_raises(monkeypatch):
    monkeypatch.setattr(gemini.settings, "gemini_api_key", None)
    with pytest.raises(RuntimeError):
        gemini.generate_content("hi")


def test_timeout_maps_to_timeout_error(monkeypatch):
    def _handler(url, **kwargs):
        raise httpx.ReadTimeout("slow")

    monkeypatch.setattr(gemini, "_get_client", lambda: _FakeClient(_handler))
    with pytest.raises(TimeoutError):
        gemini.generate_content("hi")


def test_http_error_maps_to_runtime_error(monkeypatch):
    fake = _FakeClient(lambda url, **kw: _response(500, json={"error": {"message": "boom"}}))
    monkeypatch.setattr(gemini, "_get_client", lambda: fake)
    with pytest.raises(RuntimeError, match="500"):
        gemini.generate_content("hi")


def test_transport_error_maps_to_runtime_error(monkeypatch):
    def _handler(url, **kwargs):
        raise httpx.ConnectError("refused")

    monkeypatch.setattr(gemini, "_get_client", lambda: _FakeClient(_handler))
    with pytest.raises(RuntimeError):
        gemini.generate_content("hi")


@pytest.mark.parametrize(
    "body",
    [
        {"error": {"message": "quota exceeded"}},
        {"candidates": []},
        {"candidates": [{"content": {"parts": [{"text": 42}]}}]},
    ],
)
def test_malformed_body_raises_value_error(monkeypatch, body):
    monkeypatch.setattr(gemini, "_get_client", lambda: _FakeClient(lambda url, **kw: _response(json=body)))
    with pytest.raises(ValueError):
        gemini.generate_content("hi")


def test_non_json_body_raises_value_error(monkeypatch):
    fake = _FakeClient(lambda url, **kw: _response(content=b"<html>"))
    monkeypatch.setattr(gemini, "_get_client", lambda: fake)
    with pytest.raises(ValueError):
        gemini.generate_content("hi")


def test_load_timeout(monkeypatch):
    monkeypatch.delenv("GEMINI_TIMEOUT_SECONDS", raising=False)
    assert gemini._load_timeout() == 60
    monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "15")
    assert gemini._load_timeout() == 15
    monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "soon")
    assert gemini._load_timeout() == 60
    monkeypatch.setenv("GEMINI_TIMEOUT_SECONDS", "-1")
    assert gemini._load_timeout() == 60


def test_client_uses_proxy_unless_bypassed(monkeypatch):
    created = []

    class _Client:
        def __init__(self, **kwargs):
            created.append(kwargs)

        def close(self):
            pass

    monkeypatch.setattr(gemini.httpx, "Client", _Client)
    monkeypatch.setenv("HTTPS_PROXY", "http://proxy.local:3128")
    monkeypatch.delenv("NO_PROXY", raising=False)
    monkeypatch.delenv("no_proxy", raising=False)
    gemini._close_client()
    gemini._get_client()
    assert created[-1] == {"proxy": "http://proxy.local:3128", "trust_env": False}

    monkeypatch.setenv("NO_PROXY", ".gemini.test")
    gemini._close_client()
    gemini._get_client()
    assert created[-1] == {"trust_env": False}
    gemini._close_client()
