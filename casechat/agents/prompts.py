"""Prompt assembly for the protagonist chat and the coach evaluation.

Both prompts put content that is identical across turns and across students
sharing a case (case body, teaching note, argument framework, rubric) ahead
of anything specific to one conversation (student name, persona, transcript).
Provider prompt caches key on a stable prefix, so this ordering must hold.
"""

from __future__ import annotations

import logging
from pathlib import Path
from string import Template

from casechat.agents.personas import resolve_persona_instructions
from casechat.models.case import CaseData, PersonaRecord
from casechat.models.options import ChatOptions
from casechat.models.session import Message, MessageRole

logger = logging.getLogger(__name__)

PROMPTS_DIR = Path(__file__).parent / "prompts"

STUDENT_LABEL = "Student"


def _load_prompt(name: str) -> Template:
    path = PROMPTS_DIR / f"{name}.md"
    if path.exists():
        return Template(path.read_text(encoding="utf-8"))
    logger.warning("Prompt file not found: %s", path)
    return Template("")


def _free_hints_phrase(free_hints: int) -> str:
    if free_hints == 0:
        return "no free hints"
    return f"{free_hints} free hint{'s' if free_hints != 1 else ''}"


def build_static_case_context(case: CaseData, include_internal: bool = True) -> str:
    """Case material shared by every conversation about *case*."""
    sections = [_load_prompt("case_context").substitute(case_content=case.case_content)]
    if case.supplementary_materials.strip():
        sections.append(
            _load_prompt("supplementary").substitute(
                supplementary_materials=case.supplementary_materials
            )
        )
    if include_internal and case.teaching_note.strip():
        sections.append(_load_prompt("teaching_note").substitute(teaching_note=case.teaching_note))
    if include_internal and case.has_argument_framework:
        sections.append(
            _load_prompt("argument_framework").substitute(
                arguments_for=case.arguments_for.strip() or "(none provided)",
                arguments_against=case.arguments_against.strip() or "(none provided)",
            )
        )
    return "\n".join(sections)


def build_system_prompt(
    student_name: str,
    persona_id: str,
    case: CaseData,
    options: ChatOptions,
    persona_override: PersonaRecord | None = None,
) -> str:
    static_content = build_static_case_context(case)

    persona_instructions = resolve_persona_instructions(
        persona_id, student_name, case.case_title, persona_override
    )
    additional = options.chatbot_personality.strip()
    additional_personality = (
        f"\n\n**Additional Personality Instructions:**\n{additional}" if additional else ""
    )

    dynamic_content = _load_prompt("protagonist").substitute(
        protagonist=case.protagonist,
        case_title=case.case_title,
        student_name=student_name,
        chat_question=case.chat_question,
        persona_instructions=persona_instructions,
        additional_personality=additional_personality,
        free_hints_phrase=_free_hints_phrase(options.free_hints),
    )
    return f"{static_content}\n\n{dynamic_content}"


def format_transcript(messages: list[Message], protagonist: str) -> str:
    return "\n\n".join(
        f"{STUDENT_LABEL if m.role == MessageRole.USER else protagonist}: {m.content}"
        for m in messages
    )


def build_coach_prompt(
    transcript: str,
    student_name: str,
    case: CaseData,
    free_hints: int = 1,
) -> str:
    # The coach sees the case but not the internal teaching guide.
    static_content = build_static_case_context(case, include_internal=False)
    rubric = _load_prompt("coach_rubric").substitute(
        protagonist=case.protagonist,
        case_title=case.case_title,
        free_hints_phrase=_free_hints_phrase(free_hints),
    )
    dynamic_content = _load_prompt("coach_transcript").substitute(
        student_name=student_name,
        transcript=transcript,
    )
    return f"{static_content}\n\n{rubric}\n\n{dynamic_content}"


# ---------------------------------------------------------------------------
# Canned protagonist messages (sent locally, no model call)
# ---------------------------------------------------------------------------

def opening_message(student_name: str, case: CaseData) -> str:
    return (
        f"Hello {student_name}, I am {case.protagonist}, the protagonist of the "
        f'"{case.case_title}" case. Thank you for meeting with me today. Our time is '
        f"limited so let's get straight to my question: **{case.chat_question}**"
    )


TRANSCRIPT_CONSENT_QUESTION = (
    "**Would you be willing to let me pass this conversation transcript to the developers to "
    "help improve the simulated conversations for future students?** The conversation will be "
    "completely anonymized (your name will be removed)."
)


def closing_feedback_request(student_name: str) -> str:
    return (
        f"{student_name}, thank you for meeting with me. I am glad you were able to study this "
        "case and share your insights. I hope our conversation was challenging yet helpful. "
        "**Would you be willing to provide feedback by answering a few questions about our "
        "interaction?**"
    )


def closing_transcript_request(student_name: str) -> str:
    return (
        f"{student_name}, thank you for meeting with me. I am glad you were able to study this "
        f"case and share your insights. {TRANSCRIPT_CONSENT_QUESTION}"
    )


def closing_farewell(student_name: str) -> str:
    return (
        f"{student_name}, thank you for meeting with me today. I am glad you were able to study "
        "this case and share your insights. I hope our conversation was challenging yet helpful. "
        "Click the button below to proceed to the evaluation."
    )


def keep_going_message(student_name: str, remaining: int) -> str:
    return (
        f"We're not quite done yet, {student_name}. I'd like at least {remaining} more "
        f"exchange{'s' if remaining != 1 else ''} before we wrap up. Where do you stand on my question?"
    )


def goodbye_message(student_name: str) -> str:
    return (
        f"Thank you for your time, {student_name}. Goodbye and have a nice day. I am going to turn "
        "this over to the AI Supervisor to give you feedback."
    )


def hint_refusal(hints_allowed: int) -> str:
    if hints_allowed == 0:
        return (
            "I'm sorry, but hints have been disabled for this conversation. Please try to work "
            "through this on your own using the case materials."
        )
    return (
        f"I'm sorry, but you've already used all {hints_allowed} of your allowed hints. "
        "You'll need to work through this on your own now."
    )


HELPFUL_SCORE_REQUEST = (
    "Great! On a scale of 1 to 5, how helpful was our conversation in your thinking through this "
    "case situation? (1=not helpful, 5=extremely helpful)"
)
LIKED_REQUEST = "Thank you. What did you **like most** about this simulated conversation?"
IMPROVE_REQUEST = (
    "That's helpful. What way do you think this simulated conversation **might be improved**?"
)
DECLINED_TRANSCRIPT_REQUEST = (
    f"It has been a delight talking with you today. {TRANSCRIPT_CONSENT_QUESTION} This would be "
    "**a big help** in developing this AI chat case teaching tool."
)
DECLINED_FAREWELL = (
    "It has been a delight talking with you today. Click the button below to proceed to the "
    "evaluation."
)
FEEDBACK_FAREWELL = (
    "Thank you for your valuable feedback! Click the button below to proceed to the evaluation."
)
STAND_BY_MESSAGE = (
    "Sorry, I have been interrupted for a moment taking care of another matter. Can you please "
    "hold on for about 30 seconds and I will get back with you."
)
RETRY_ACKNOWLEDGEMENT = "Thank you for your patience."
DELAY_ERROR = "Sorry, there is a delay in AI model response. Please wait 30 seconds."
STILL_BUSY_ERROR = "The AI model is still busy. Please wait 30 seconds and try again."
EVALUATION_ERROR = (
    "Sorry, there was an error generating your performance review. Please try again."
)
