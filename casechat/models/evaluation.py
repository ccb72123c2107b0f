from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class EvaluationCriterion(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    score: int = Field(ge=1, le=5)
    feedback: str


class EvaluationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    criteria: list[EvaluationCriterion]
    total_score: int
    summary: str
    hints: int = Field(ge=0)


class EvaluationRecord(BaseModel):
    """Everything the storage collaborator receives once an evaluation completes."""

    conversation_id: str
    case_id: str
    total_score: int
    criteria: list[EvaluationCriterion]
    summary: str
    hints: int
    persona: str
    chat_model: str
    eval_model: str
    helpful: float | None = None
    liked: str | None = None
    improve: str | None = None
    share_transcript: bool = False
    transcript: str | None = None
