"""Tests for the OpenAI-backed analyst against a stand-in client."""

import asyncio
import base64
import json
from types import SimpleNamespace

import pytest

from isoguard.config import Settings
from isoguard.review.errors import ExternalCollaboratorError
from isoguard.review.judgment.engine import OpenAIDrawingAnalyst, _parse_json

from conftest import IMAGE, make_finding


def _message(content=None, tool_calls=None):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content, tool_calls=tool_calls))])


class StubClient:
    def __init__(self, replies=None, image=None, error=None):
        self.replies = list(replies or [])
        self.image = image
        self.error = error
        self.requests = []
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        self.images = SimpleNamespace(edit=self._edit)

    async def _create(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return self.replies.pop(0)

    async def _edit(self, **kwargs):
        self.requests.append(kwargs)
        if self.error:
            raise self.error
        return SimpleNamespace(data=[self.image] if self.image else [])


class StubRegistry:
    def __init__(self, client):
        self.client = client

    def get_openai(self):
        return self.client


def _analyst(client):
    return OpenAIDrawingAnalyst(StubRegistry(client), Settings())


def test_parse_json_strips_markdown_fence():
    content = '```json\n{"findings": [{"description": "a"}, "junk"]}\n```'
    assert _parse_json(content, "findings") == [{"description": "a"}]


def test_parse_json_rejects_empty_content():
    with pytest.raises(ValueError):
        _parse_json("", "findings")


def test_detect_findings_returns_raw_items():
    body = {"findings": [{"severity": "Critical", "description": "d", "recommendation": "r"}]}
    client = StubClient(replies=[_message(json.dumps(body))])

    items = asyncio.run(_analyst(client).detect_findings(IMAGE))

    assert items == body["findings"]
    assert client.requests[0]["response_format"] == {"type": "json_object"}


def test_malformed_json_is_a_provider_error():
    client = StubClient(replies=[_message("not json")])
    with pytest.raises(ExternalCollaboratorError) as info:
        asyncio.run(_analyst(client).recognize_components(IMAGE))
    assert info.value.operation == "component recognition"


def test_missing_client_is_a_provider_error():
    with pytest.raises(ExternalCollaboratorError):
        asyncio.run(_analyst(None).detect_findings(IMAGE))


def test_corrected_artifact_is_a_png_data_url():
    b64 = base64.b64encode(b"png-bytes").decode()
    client = StubClient(image=SimpleNamespace(b64_json=b64, url=None))

    url = asyncio.run(_analyst(client).generate_corrected_artifact(IMAGE, [make_finding("F1")]))

    assert url == f"data:image/png;base64,{b64}"
    assert "Fix F1" in client.requests[0]["prompt"]


def test_artifact_without_image_fails():
    client = StubClient(image=None)
    with pytest.raises(ExternalCollaboratorError):
        asyncio.run(_analyst(client).generate_annotated_artifact(IMAGE, [make_finding("F1")]))


def test_chat_propose_takes_first_tool_call():
    calls = [
        SimpleNamespace(function=SimpleNamespace(name="delete_error_node", arguments='{"finding_id": "F1"}')),
        SimpleNamespace(function=SimpleNamespace(name="delete_error_node", arguments='{"finding_id": "F2"}')),
    ]
    client = StubClient(replies=[_message("Sure.", calls)])
    analyst = _analyst(client)
    conversation = analyst.start_conversation([], [make_finding("F1")])

    turn = asyncio.run(analyst.chat_propose(conversation, "remove F1"))

    assert turn.reply_text == "Sure."
    assert turn.function_call.name == "delete_error_node"
    assert turn.function_call.args == {"finding_id": "F1"}
    assert [m["role"] for m in conversation.messages] == ["system", "user", "assistant"]
    assert "[F1]" in conversation.messages[0]["content"]


def test_chat_failure_leaves_history_unchanged():
    client = StubClient(error=RuntimeError("rate limited"))
    analyst = _analyst(client)
    conversation = analyst.start_conversation([], [])

    with pytest.raises(ExternalCollaboratorError):
        asyncio.run(analyst.chat_propose(conversation, "hello"))
    assert len(conversation.messages) == 1
