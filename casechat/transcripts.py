"""Transcript anonymization applied before a transcript leaves the service."""

from __future__ import annotations

import re

STUDENT_PLACEHOLDER = "STUDENT"


def anonymize_transcript(
    transcript: str,
    full_name: str = "",
    first_name: str = "",
    last_name: str = "",
) -> str:
    """Replace the student's names with ``STUDENT``.

    The full name goes first so "Jane Doe" becomes one placeholder rather
    than two. Matching is case-insensitive and on word boundaries.
    """
    result = transcript
    for name in (full_name, first_name, last_name):
        name = (name or "").strip()
        if not name:
            continue
        pattern = re.compile(rf"\b{re.escape(name)}\b", re.IGNORECASE)
        result = pattern.sub(STUDENT_PLACEHOLDER, result)
    return result
