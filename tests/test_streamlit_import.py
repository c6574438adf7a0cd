import importlib

import pytest

from core.config import EngineConfig
from core.validators import UpstreamError
from snapshot_store import SnapshotStore
from traffic_app import (
    build_comparison_prompt,
    build_explanation_prompt,
    extract_explanation,
    request_comparison_summary,
    request_explanation,
    strip_trailing_questions,
)


class FakeResponse:
    def __init__(self, status_code, body=None, text=""):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._body = body
        self.text = text

    def json(self):
        return self._body


class FakeSession:
    def __init__(self, response):
        self.response = response
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        return self.response


@pytest.fixture
def store():
    return SnapshotStore(EngineConfig(max_live_snapshots=None))


def test_streamlit_app_importable():
    module = importlib.import_module('traffic_app')
    assert hasattr(module, 'run_app')


def test_pstn_prompt_lists_every_link(store):
    snapshot = store.create("pstn", None, 0.01)
    prompt = build_explanation_prompt(snapshot)
    assert "Network Type: PSTN" in prompt
    assert "| US | China | 6,411 | 18.16 | 28 | 2 | 3.09 |" in prompt
    assert prompt.count("\n| ") == 7


def test_voip_prompt_mentions_codec(store):
    snapshot = store.create("voip", "g729a", 0.01)
    prompt = build_explanation_prompt(snapshot)
    assert "Codec: G729A" in prompt
    assert "| 24 |" in prompt


def test_extract_explanation():
    data = {"candidates": [{"content": {"parts": [{"text": "fine"}]}}]}
    assert extract_explanation(data) == "fine"
    with pytest.raises(UpstreamError):
        extract_explanation({"candidates": []})


def test_request_explanation(store):
    snapshot = store.create("voip", "g711", 0.01)
    body = {"candidates": [{"content": {"parts": [{"text": "## Overview"}]}}]}
    session = FakeSession(FakeResponse(200, body))
    config = EngineConfig(proxy_url="http://proxy/api/gemini")

    assert request_explanation(snapshot, "key", "gemini-pro", config, session) == "## Overview"
    url, kwargs = session.calls[0]
    assert url == "http://proxy/api/gemini"
    assert kwargs["json"]["model"] == "gemini-pro"
    assert "VoIP Analysis Results" in kwargs["json"]["prompt"]


def test_request_explanation_upstream_failure(store):
    snapshot = store.create("pstn", None, 0.01)
    session = FakeSession(FakeResponse(403, text="bad key"))
    with pytest.raises(UpstreamError) as excinfo:
        request_explanation(snapshot, "key", "gemini-pro", session=session)
    assert excinfo.value.status == 403


def test_explanation_prompt_carries_section_guidance(store):
    prompt = build_explanation_prompt(store.create("pstn", None, 0.01))
    assert "## Overview\n- Brief description of the analysis type and methodology\n" in prompt
    assert "- Performance implications for each link" in prompt
    assert "## Recommendations\n- Implementation considerations\n" in prompt
    assert "- Include specific insights about the data" in prompt


def test_comparison_prompt_covers_both_snapshots(store):
    pstn = store.create("pstn", None, 0.01)
    voip = store.attach_explanation(store.create("voip", "g729a", 0.02).id, "VoIP is lean.", "gemini-pro")
    prompt = build_comparison_prompt(pstn, voip)

    assert prompt.startswith("Please provide a comparison summary")
    assert "PSTN (1.0% BLOCKING):\nNetwork Type: PSTN\n" in prompt
    assert "VOIP G729A (2.0% BLOCKING):\nNetwork Type: VOIP\n" in prompt
    assert "| US | China | 6,411 | 18.16 | 28 | 2 | 3.09 |" in prompt
    assert "Codec: G729A" in prompt
    assert "VOIP G729A (2.0% BLOCKING) EXPLANATION (gemini-pro):\nVoIP is lean.\n" in prompt
    assert "PSTN (1.0% BLOCKING) EXPLANATION" not in prompt
    for section in ("1. Executive Summary", "2. Technical Comparison", "3. Performance Analysis",
                    "4. Cost and Resource Implications", "5. Recommendations", "6. Conclusion"):
        assert f"## {section}\n" in prompt


@pytest.mark.parametrize(
    "tail",
    [
        "Do you want me to draw a diagram?",
        "Would you like me to expand on costs?\nI can also add tables.",
        "Should I include more links?",
        "Let me know if you need anything else.",
    ],
)
def test_strip_trailing_questions(tail):
    body = "## 1. Executive Summary\nVoIP uses less bandwidth."
    assert strip_trailing_questions(f"{body}\n\n{tail}") == body


def test_strip_trailing_questions_keeps_inline_text():
    text = "## Recommendations\nShould I-type questions are out of scope here."
    assert strip_trailing_questions(text) == text


def test_request_comparison_summary_strips_offer(store):
    first = store.create("pstn", None, 0.01)
    second = store.create("voip", "g711", 0.01)
    reply = "## 6. Conclusion\nPick VoIP.\n\nWould you like me to go deeper?"
    body = {"candidates": [{"content": {"parts": [{"text": reply}]}}]}
    session = FakeSession(FakeResponse(200, body))

    summary = request_comparison_summary(first, second, "key", "gemini-pro", session=session)

    assert summary == "## 6. Conclusion\nPick VoIP."
    _, kwargs = session.calls[0]
    assert kwargs["json"]["prompt"] == build_comparison_prompt(first, second)
