from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from casechat.models.evaluation import EvaluationResult


class ConversationPhase(str, Enum):
    PRE_CHAT = "pre_chat"
    CHATTING = "chatting"
    AWAITING_HELPFUL_PERMISSION = "awaiting_helpful_permission"
    AWAITING_HELPFUL_SCORE = "awaiting_helpful_score"
    AWAITING_LIKED_FEEDBACK = "awaiting_liked_feedback"
    AWAITING_IMPROVE_FEEDBACK = "awaiting_improve_feedback"
    AWAITING_TRANSCRIPT_PERMISSION = "awaiting_transcript_permission"
    FEEDBACK_COMPLETE = "feedback_complete"
    EVALUATION_LOADING = "evaluation_loading"
    EVALUATING = "evaluating"


class MessageRole(str, Enum):
    USER = "user"
    MODEL = "model"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str


class FeedbackAnswers(BaseModel):
    helpful_score: float | None = None
    liked: str | None = None
    improve: str | None = None
    share_transcript: bool = False


class TurnResult(BaseModel):
    """Outcome of one step of the conversation state machine."""

    phase: ConversationPhase
    messages: list[Message] = Field(default_factory=list)  # appended during this turn
    events: list[dict[str, Any]] = Field(default_factory=list)


class ConversationState(BaseModel):
    conversation_id: str
    student_first_name: str
    student_full_name: str = ""
    case_id: str
    persona: str
    chat_model: str
    eval_model: str
    phase: ConversationPhase = ConversationPhase.PRE_CHAT
    messages: list[Message] = Field(default_factory=list)
    hints_used: int = 0
    feedback: FeedbackAnswers = Field(default_factory=FeedbackAnswers)
    evaluation: EvaluationResult | None = None
