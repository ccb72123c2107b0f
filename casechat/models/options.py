from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from casechat.models.case import PersonaId

ALL_PERSONAS = [p.value for p in PersonaId]


class ChatOptions(BaseModel):
    """Per-assignment chat configuration, read-only once a conversation starts."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    hints_allowed: int = Field(default=3, ge=0, le=10)
    free_hints: int = Field(default=1, ge=0, le=5)
    ask_for_feedback: bool = False
    ask_save_transcript: bool = False
    allowed_personas: list[str] = Field(default_factory=lambda: list(ALL_PERSONAS))
    default_persona: str = PersonaId.MODERATE.value
    show_case: bool = True
    do_evaluation: bool = True
    chatbot_personality: str = ""
    min_exchanges: int = Field(default=0, ge=0)
    max_message_length: int | None = Field(default=None, gt=0)
    save_dead_transcripts: bool = False

    @field_validator("allowed_personas", mode="before")
    @classmethod
    def _split_personas(cls, value: Any) -> Any:
        # Stored as a comma-separated string in the section/case assignment
        if isinstance(value, str):
            return [p.strip().lower() for p in value.split(",") if p.strip()]
        return value

    @field_validator("default_persona", mode="before")
    @classmethod
    def _normalize_default(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _default_must_be_allowed(self) -> ChatOptions:
        if not self.allowed_personas:
            raise ValueError("allowed_personas must name at least one persona")
        if self.default_persona not in self.allowed_personas:
            raise ValueError(
                f"default_persona {self.default_persona!r} is not in allowed_personas"
            )
        return self

    @classmethod
    def resolve(cls, *layers: dict[str, Any] | None) -> ChatOptions:
        """Merge option layers (global defaults, section defaults, assignment) left to right."""
        merged: dict[str, Any] = {}
        for layer in layers:
            if not layer:
                continue
            merged.update({k: v for k, v in layer.items() if v is not None})
        return cls(**merged)
