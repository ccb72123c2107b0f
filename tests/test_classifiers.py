"""Tests for the student-input classifiers.

The vocabularies are part of the conversation contract, so these tests pin
the exact matching behaviour, including its known looseness.
"""

from __future__ import annotations

import pytest

from casechat.agents.classifiers import (
    count_hint_requests,
    extract_helpful_score,
    is_affirmative,
    is_hint_request,
    is_time_up,
)
from casechat.models.session import Message, MessageRole


# ---------------------------------------------------------------------------
# TestHintRequest
# ---------------------------------------------------------------------------


class TestHintRequest:
    @pytest.mark.parametrize("text", ["hint", "Can I get a hint?", "HINT please", "hint: margins?"])
    def test_standalone_word_is_hint(self, text):
        assert is_hint_request(text)

    @pytest.mark.parametrize("text", ["help", "Can you give me a clue?", "any hints?", "hinting at", "I need help"])
    def test_other_words_are_not_hints(self, text):
        assert not is_hint_request(text)

    def test_counts_only_user_messages(self):
        messages = [
            Message(role=MessageRole.MODEL, content="Ask for a hint if you need one."),
            Message(role=MessageRole.USER, content="hint please"),
            Message(role=MessageRole.USER, content="I need help"),
            Message(role=MessageRole.USER, content="another hint"),
        ]
        assert count_hint_requests(messages) == 2


# ---------------------------------------------------------------------------
# TestTimeUp
# ---------------------------------------------------------------------------


class TestTimeUp:
    @pytest.mark.parametrize("text", ["time is up", "OK TIME IS UP", "I think time's up now"])
    def test_detects_phrase(self, text):
        assert is_time_up(text)

    def test_unrelated_text(self):
        assert not is_time_up("We have plenty of time")


# ---------------------------------------------------------------------------
# TestAffirmative
# ---------------------------------------------------------------------------


class TestAffirmative:
    @pytest.mark.parametrize("text", ["yes", "Sure!", "ok", "Of course", "I would be happy to"])
    def test_affirmative(self, text):
        assert is_affirmative(text)

    @pytest.mark.parametrize("text", ["no", "nope", "no thanks", "not now"])
    def test_negative(self, text):
        assert not is_affirmative(text)

    def test_substring_matching_is_loose(self):
        # "y" inside "maybe" is enough
        assert is_affirmative("maybe")


# ---------------------------------------------------------------------------
# TestHelpfulScore
# ---------------------------------------------------------------------------


class TestHelpfulScore:
    def test_decimal_score(self):
        assert extract_helpful_score("4.5 I think") == 4.5

    def test_first_number_wins(self):
        assert extract_helpful_score("3, maybe 4") == 3.0

    def test_out_of_range(self):
        assert extract_helpful_score("10 out of 10") is None
        assert extract_helpful_score("0") is None

    def test_no_number(self):
        assert extract_helpful_score("very helpful") is None
