"""Coach evaluation: one rubric-scoring call per completed conversation."""

from __future__ import annotations

import json
import logging
import re

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from casechat.agents.classifiers import count_hint_requests
from casechat.agents.prompts import build_coach_prompt, format_transcript
from casechat.agents.providers import ClientRegistry, generate_json
from casechat.models.case import CaseData
from casechat.models.evaluation import EvaluationCriterion, EvaluationResult
from casechat.models.options import ChatOptions
from casechat.models.session import Message

logger = logging.getLogger(__name__)

_FENCE_START = re.compile(r"^```(?:json)?", re.IGNORECASE)
_FENCE_END = re.compile(r"```$")


class EvaluationParseError(Exception):
    """Raised when the coach response is not a valid evaluation document."""


class _CoachCriterion(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: str = Field(validation_alias=AliasChoices("question", "criterion"))
    score: int = Field(ge=1, le=5)
    feedback: str


class _CoachResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    criteria: list[_CoachCriterion] = Field(min_length=1)
    total_score: int = Field(validation_alias=AliasChoices("total_score", "totalScore"))
    summary: str
    hints: int = Field(ge=0)

    @field_validator("summary")
    @classmethod
    def _summary_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary must not be empty")
        return value


def clean_json_string(raw: str) -> str:
    """Strip code fences and any prose around the outermost JSON object."""
    cleaned = raw.strip()
    cleaned = _FENCE_START.sub("", cleaned)
    cleaned = _FENCE_END.sub("", cleaned).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last > first:
        cleaned = cleaned[first:last + 1]
    return cleaned


def parse_coach_response(raw: str) -> _CoachResponse:
    cleaned = clean_json_string(raw)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise EvaluationParseError(f"Invalid evaluation JSON: {e}") from e
    try:
        return _CoachResponse.model_validate(data)
    except ValidationError as e:
        raise EvaluationParseError(f"Evaluation JSON does not match schema: {e}") from e


def hint_penalty(hints: int, free_hints: int) -> int:
    return max(0, hints - free_hints)


async def evaluate(
    registry: ClientRegistry,
    transcript: list[Message],
    student_name: str,
    model_id: str,
    case: CaseData,
    options: ChatOptions,
) -> EvaluationResult:
    """Score *transcript* against the rubric. Not retried; parse failures propagate."""
    prompt = build_coach_prompt(
        format_transcript(transcript, case.protagonist),
        student_name,
        case,
        free_hints=options.free_hints,
    )
    raw = await generate_json(registry, model_id, prompt)
    coach = parse_coach_response(raw)

    hints = count_hint_requests(transcript)
    if coach.hints != hints:
        logger.warning(
            "Coach counted %d hints but transcript has %d hint requests; using transcript count",
            coach.hints, hints,
        )

    raw_score = sum(c.score for c in coach.criteria)
    total = max(0, raw_score - hint_penalty(hints, options.free_hints))
    if coach.total_score != total:
        logger.info(
            "Coach total %d differs from rubric total %d (raw %d, hints %d, free %d)",
            coach.total_score, total, raw_score, hints, options.free_hints,
        )

    return EvaluationResult(
        criteria=[
            EvaluationCriterion(question=c.question, score=c.score, feedback=c.feedback)
            for c in coach.criteria
        ],
        total_score=total,
        summary=coach.summary.strip(),
        hints=hints,
    )
