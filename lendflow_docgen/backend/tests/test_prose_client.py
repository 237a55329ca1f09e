# backend/tests/test_prose_client.py
from __future__ import annotations

import json

import httpx
import pytest

from docgen.errors import ProseGenerationError
from docgen.integrations.prose_client import OpenAICompatibleProseClient, build_user_prompt

PROJECT = {"module": "lending", "counterpartyName": "Riverside Holdings LLC", "approvedAmount": 500000}


def _client(handler) -> OpenAICompatibleProseClient:
    return OpenAICompatibleProseClient(
        base_url="http://prose.test/v1",
        model="test-model",
        api_key="secret",
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


def _completion(content: str) -> dict:
    return {"model": "test-model", "choices": [{"message": {"content": content}}]}


def test_sections_parsed_from_json_content():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        sections = {"defaultProvisions": "Events of default.", "waiverProvisions": ["No waiver.", None], "empty": None}
        return httpx.Response(200, json=_completion(json.dumps(sections)))

    out = _client(handler).generate_prose("promissory_note", PROJECT, feedback="Shorter please")

    assert out.sections == {"defaultProvisions": "Events of default.", "waiverProvisions": ["No waiver."]}
    assert out.model == "test-model"
    assert seen["auth"] == "Bearer secret"
    user = seen["body"]["messages"][1]["content"]
    assert "defaultProvisions" in user
    assert "Shorter please" in user


def test_http_error_raises_prose_error():
    with pytest.raises(ProseGenerationError):
        _client(lambda r: httpx.Response(503, text="busy")).generate_prose("promissory_note", PROJECT)


def test_non_json_content_raises_prose_error():
    with pytest.raises(ProseGenerationError):
        _client(lambda r: httpx.Response(200, json=_completion("Sure! Here is your note."))).generate_prose(
            "promissory_note", PROJECT
        )


def test_json_array_content_is_rejected():
    with pytest.raises(ProseGenerationError):
        _client(lambda r: httpx.Response(200, json=_completion("[1, 2]"))).generate_prose("promissory_note", PROJECT)


def test_prompt_without_feedback_lists_required_sections():
    prompt = build_user_prompt("guaranty", PROJECT, None)
    assert "Guaranty Agreement (guaranty)" in prompt
    assert "guarantyScope" in prompt
    assert "Reviewer feedback" not in prompt
