"""Intent classifiers for student chat input.

The vocabularies here are part of the conversation contract: the system
prompt tells the protagonist that only the word "hint" asks for a hint and
that "time is up" ends the meeting, and the evaluation rubric asks the coach
to count hints by the same rule. Change them together or not at all.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from casechat.models.session import Message, MessageRole

HINT_PATTERN = re.compile(r"\bhint\b", re.IGNORECASE)

TIME_UP_PHRASES = ("time is up", "time's up")

# Matched as case-insensitive substrings, so "y" makes almost any reply
# containing the letter count as a yes.
AFFIRMATIVE_WORDS = ("yes", "y", "sure", "ok", "yeah", "yep", "absolutely", "i would", "of course")

_NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")

MIN_HELPFUL_SCORE = 1.0
MAX_HELPFUL_SCORE = 5.0


def is_hint_request(text: str) -> bool:
    """True when the message contains the standalone word "hint".

    "help", "clue" and "hints" are deliberately not hint requests.
    """
    return bool(HINT_PATTERN.search(text))


def is_time_up(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in TIME_UP_PHRASES)


def is_affirmative(text: str) -> bool:
    lowered = text.lower()
    return any(word in lowered for word in AFFIRMATIVE_WORDS)


def extract_helpful_score(text: str) -> float | None:
    """Return the first number in *text* if it lies in [1, 5], else None."""
    match = _NUMBER_PATTERN.search(text)
    if not match:
        return None
    score = float(match.group(0))
    if MIN_HELPFUL_SCORE <= score <= MAX_HELPFUL_SCORE:
        return score
    return None


def count_hint_requests(messages: Iterable[Message]) -> int:
    return sum(
        1 for m in messages if m.role == MessageRole.USER and is_hint_request(m.content)
    )
