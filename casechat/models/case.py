from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class PersonaId(str, Enum):
    STRICT = "strict"
    MODERATE = "moderate"
    LIBERAL = "liberal"
    LEADING = "leading"
    SYCOPHANTIC = "sycophantic"


class PersonaRecord(BaseModel):
    """Instructor-managed persona override; instructions may use {studentName} and {caseTitle}."""

    persona_id: str
    persona_name: str
    description: str = ""
    instructions: str
    enabled: bool = True
    sort_order: int = 0


class CaseData(BaseModel):
    model_config = ConfigDict(frozen=True)

    case_id: str
    case_title: str
    protagonist: str
    protagonist_initials: str = ""
    chat_topic: str = ""
    chat_question: str
    case_content: str
    teaching_note: str = ""  # never shown to the student
    supplementary_materials: str = ""
    arguments_for: str = ""
    arguments_against: str = ""

    @property
    def has_argument_framework(self) -> bool:
        return bool(self.arguments_for.strip() or self.arguments_against.strip())
