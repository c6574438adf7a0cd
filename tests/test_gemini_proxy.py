import pytest
import requests

from core.config import EngineConfig
from gemini_proxy import create_app


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body = body
        self.text = text

    def json(self):
        if self._body is None:
            raise ValueError("no json")
        return self._body


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response


def client_for(session):
    config = EngineConfig(upstream_base_url="https://llm.example/v1beta/models", upstream_timeout_s=5)
    app = create_app(config, session=session)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.mark.parametrize(
    "body",
    [
        {},
        {"apiKey": "k", "model": "m"},
        {"model": "m", "prompt": "p"},
        {"apiKey": "k", "model": ["m"], "prompt": "p"},
        ["apiKey", "model", "prompt"],
        "plain string",
    ],
)
def test_missing_parameters(body):
    session = FakeSession()
    response = client_for(session).post("/api/gemini", json=body)
    assert response.status_code == 400
    assert response.get_json() == {"error": "Missing required parameters"}
    assert session.calls == []


def test_forwards_prompt_and_returns_upstream_json():
    upstream = {"candidates": [{"content": {"parts": [{"text": "## Overview"}]}}]}
    session = FakeSession(FakeResponse(200, upstream))
    response = client_for(session).post(
        "/api/gemini", json={"apiKey": "secret", "model": "models/gemini-pro", "prompt": "Explain"}
    )

    assert response.status_code == 200
    assert response.get_json() == upstream
    url, kwargs = session.calls[0]
    assert url == "https://llm.example/v1beta/models/gemini-pro:generateContent"
    assert kwargs["params"] == {"key": "secret"}
    assert kwargs["timeout"] == 5
    assert kwargs["json"] == {
        "contents": [{"parts": [{"text": "Explain"}]}],
        "generationConfig": {"temperature": 0.3, "maxOutputTokens": 800},
    }


def test_upstream_error_keeps_status_and_body():
    session = FakeSession(FakeResponse(429, text="quota exceeded"))
    response = client_for(session).post(
        "/api/gemini", json={"apiKey": "k", "model": "gemini-pro", "prompt": "p"}
    )
    assert response.status_code == 429
    assert response.get_json() == {"error": "quota exceeded"}
    assert len(session.calls) == 1


def test_transport_failure_is_internal_error():
    session = FakeSession(error=requests.ConnectionError("unreachable"))
    response = client_for(session).post(
        "/api/gemini", json={"apiKey": "k", "model": "gemini-pro", "prompt": "p"}
    )
    assert response.status_code == 500
    assert response.get_json() == {"error": "Internal server error"}
