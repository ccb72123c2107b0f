from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from casechat.agents.providers import ClientRegistry, Provider
from casechat.models.case import CaseData

CHAT_MODEL = "claude-test"

COACH_JSON = json.dumps({
    "criteria": [
        {"question": "Did the student study the case?", "score": 4, "feedback": "Good use of facts."},
        {"question": "Did the student answer the question?", "score": 3, "feedback": "Partly."},
        {"question": "Did the student justify with arguments?", "score": 5, "feedback": "Strong."},
    ],
    "total_score": 12,
    "summary": "Solid work overall.",
    "hints": 0,
})


def anthropic_response(text: str, input_tokens: int = 120, cache_read: int = 0, cache_write: int = 0, output_tokens: int = 30):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(
            input_tokens=input_tokens,
            cache_read_input_tokens=cache_read,
            cache_creation_input_tokens=cache_write,
            output_tokens=output_tokens,
        ),
    )


@pytest.fixture
def case() -> CaseData:
    return CaseData(
        case_id="malawis-pizza",
        case_title="Malawi's Pizza Catering",
        protagonist="Kent Harrison",
        protagonist_initials="KH",
        chat_topic="Catering growth",
        chat_question="Should we stay in the catering business?",
        case_content="Malawi's Pizza started a catering line in 2019. Margins have been thin.",
        teaching_note="Push the student to weigh margin against brand reach.",
        arguments_for="Catering builds brand reach.",
        arguments_against="Catering margins are thin.",
    )


@pytest.fixture
def anthropic_client() -> MagicMock:
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=anthropic_response("Interesting. Why do you say that?"))
    return client


@pytest.fixture
def registry(anthropic_client) -> ClientRegistry:
    return ClientRegistry(clients={Provider.ANTHROPIC: anthropic_client})
