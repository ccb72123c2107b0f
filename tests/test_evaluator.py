"""Tests for the coach evaluation call: parsing, hint penalty and score recomputation."""

from __future__ import annotations

import json

import pytest
from conftest import CHAT_MODEL, COACH_JSON, anthropic_response

from casechat.agents.evaluator import (
    EvaluationParseError,
    clean_json_string,
    evaluate,
    hint_penalty,
    parse_coach_response,
)
from casechat.models.options import ChatOptions
from casechat.models.session import Message, MessageRole


def _make_transcript(*user_texts: str) -> list[Message]:
    messages = [Message(role=MessageRole.MODEL, content="Hello, let's begin.")]
    for text in user_texts:
        messages.append(Message(role=MessageRole.USER, content=text))
        messages.append(Message(role=MessageRole.MODEL, content="Go on."))
    return messages


# ---------------------------------------------------------------------------
# TestParsing
# ---------------------------------------------------------------------------


class TestParsing:
    def test_strips_code_fences(self):
        assert clean_json_string('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_strips_surrounding_prose(self):
        assert clean_json_string('Here you go: {"a": 1} Thanks!') == '{"a": 1}'

    def test_valid_document(self):
        coach = parse_coach_response(COACH_JSON)
        assert [c.score for c in coach.criteria] == [4, 3, 5]
        assert coach.hints == 0

    def test_accepts_camel_case_total(self):
        data = json.loads(COACH_JSON)
        data["totalScore"] = data.pop("total_score")
        assert parse_coach_response(json.dumps(data)).total_score == 12

    def test_invalid_json(self):
        with pytest.raises(EvaluationParseError):
            parse_coach_response("I cannot evaluate this.")

    def test_score_out_of_range(self):
        data = json.loads(COACH_JSON)
        data["criteria"][0]["score"] = 7
        with pytest.raises(EvaluationParseError):
            parse_coach_response(json.dumps(data))

    def test_missing_summary(self):
        data = json.loads(COACH_JSON)
        data["summary"] = "   "
        with pytest.raises(EvaluationParseError):
            parse_coach_response(json.dumps(data))


# ---------------------------------------------------------------------------
# TestEvaluate
# ---------------------------------------------------------------------------


class TestEvaluate:
    def test_hint_penalty(self):
        assert hint_penalty(3, 1) == 2
        assert hint_penalty(1, 1) == 0
        assert hint_penalty(0, 2) == 0

    async def test_three_hints_one_free(self, registry, anthropic_client, case):
        anthropic_client.messages.create.return_value = anthropic_response(COACH_JSON)
        transcript = _make_transcript("hint please", "another hint", "one more hint", "We stay.")

        result = await evaluate(registry, transcript, "Jane Doe", CHAT_MODEL, case, ChatOptions(free_hints=1))

        assert result.hints == 3
        assert result.total_score == 12 - 2
        assert len(result.criteria) == 3

    async def test_no_hints(self, registry, anthropic_client, case):
        anthropic_client.messages.create.return_value = anthropic_response(COACH_JSON)
        result = await evaluate(registry, _make_transcript("We stay."), "Jane", CHAT_MODEL, case, ChatOptions())
        assert result.total_score == 12
        assert result.summary == "Solid work overall."

    async def test_total_never_negative(self, registry, anthropic_client, case):
        data = json.loads(COACH_JSON)
        for c in data["criteria"]:
            c["score"] = 1
        anthropic_client.messages.create.return_value = anthropic_response(json.dumps(data))
        transcript = _make_transcript(*["hint"] * 6)
        result = await evaluate(registry, transcript, "Jane", CHAT_MODEL, case, ChatOptions(free_hints=0))
        assert result.total_score == 0

    async def test_prompt_contains_transcript(self, registry, anthropic_client, case):
        anthropic_client.messages.create.return_value = anthropic_response(COACH_JSON)
        await evaluate(registry, _make_transcript("Margins are thin."), "Jane Doe", CHAT_MODEL, case, ChatOptions())
        prompt = anthropic_client.messages.create.call_args.kwargs["messages"][0]["content"][0]["text"]
        assert "Student: Margins are thin." in prompt
        assert "Jane Doe" in prompt

    async def test_parse_failure_propagates(self, registry, anthropic_client, case):
        anthropic_client.messages.create.return_value = anthropic_response("not json")
        with pytest.raises(EvaluationParseError):
            await evaluate(registry, _make_transcript("hi"), "Jane", CHAT_MODEL, case, ChatOptions())
