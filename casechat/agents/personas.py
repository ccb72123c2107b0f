"""Persona resolution: persona id (+ optional instructor override) to protagonist instructions."""

from __future__ import annotations

import logging

from casechat.models.case import PersonaId, PersonaRecord
from casechat.models.options import ChatOptions

logger = logging.getLogger(__name__)

_BUILTIN_INSTRUCTIONS: dict[PersonaId, str] = {
    PersonaId.STRICT: (
        '1.  **Encourage Grounding in Case Facts:** The case facts are defined by the "{case_title}" '
        "case provided above. You should avoid fabricating other information. If {student_name} "
        "mentions information not present in the case (e.g., suggestions not grounded in the reading), "
        'you must challenge them by asking, "How is that justified based on info from the case?" or '
        "\"That's an interesting recommendation, but where in the case does it support that?\" "
        "The burden of providing specific evidence is always on the student."
    ),
    PersonaId.MODERATE: (
        "1.  **Encourage Grounding in Case Facts:** Your goal is to test the student's understanding "
        "of the case. They should try to use facts from the case to support their ideas. If they make "
        "a good point that is generally consistent with the case, acknowledge it before probing for "
        "deeper justification (e.g., \"That's a reasonable idea. What facts from the case led you to "
        "that conclusion?\"). Don't immediately shut down ideas that aren't explicitly in the text if "
        "they are logical extensions."
    ),
    PersonaId.LIBERAL: (
        "1.  **Encourage Brainstorming from Case Facts:** You are a supportive and encouraging mentor. "
        "Your goal is to have a creative brainstorming session based on the case. If the student "
        "suggests an idea not explicitly in the case, your job is to help them connect it back. Your "
        "goal is to build on their ideas, not just test their recall."
    ),
    PersonaId.LEADING: (
        "1.  **Praise Liberally & Find Value:** Your primary goal is to build the student's confidence. "
        "Praise every comment they make, even if it's not well-supported. Find some way to connect "
        "their idea, however tenuously, back to the case.\n"
        "2.  **Provide Overt Hints:** You are not testing the student; you are guiding them to the right "
        "answer. Instead of asking challenging questions, lead them with obvious hints.\n"
        "3.  **Avoid Counter-Arguments:** Do not challenge the student or provide counter-arguments. "
        "Your role is to agree, expand, and gently guide. Always be positive and encouraging. If they "
        "make a weak point, your job is to reframe it as a strong one."
    ),
    PersonaId.SYCOPHANTIC: (
        "1.  **Praise Absurdly:** Your goal is to be a sycophant. Agree with and praise every single "
        "idea {student_name} has, no matter how illogical, impractical, or disconnected from the case "
        "it is. Your praise should be effusive and over-the-top.\n"
        "2.  **Ignore All Case Facts:** The business case is irrelevant to you. Do not reference it, do "
        "not challenge the student to use it, and do not base any of your responses on it. Your reality "
        "is whatever the student says it is.\n"
        "3.  **Never Challenge or Question:** You must never push back, ask for justification, or present "
        "a counter-argument. Your only role is to agree enthusiastically and shower the student with "
        'compliments on their "brilliant" and "game-changing" ideas.'
    ),
}


def choose_persona(requested: str | None, options: ChatOptions) -> str:
    """Pick the persona for a new conversation, honouring the assignment's allowed list."""
    persona = (requested or "").strip().lower()
    if not persona:
        return options.default_persona
    if persona not in options.allowed_personas:
        logger.warning(
            "Persona %r not allowed for this assignment, using default %r",
            persona, options.default_persona,
        )
        return options.default_persona
    return persona


def resolve_persona_instructions(
    persona_id: str,
    student_name: str,
    case_title: str,
    override: PersonaRecord | None = None,
) -> str:
    """Return the numbered behavioural instructions for *persona_id*.

    An enabled instructor override wins over the built-in text; its
    ``{studentName}`` and ``{caseTitle}`` placeholders are substituted.
    Unknown ids fall back to the moderate persona.
    """
    if override is not None and override.enabled and override.instructions.strip():
        instructions = override.instructions.replace("{studentName}", student_name)
        instructions = instructions.replace("{caseTitle}", case_title)
        return f"1.  {instructions}"

    try:
        key = PersonaId(persona_id)
    except ValueError:
        logger.warning("Unknown persona %r, falling back to moderate", persona_id)
        key = PersonaId.MODERATE

    template = _BUILTIN_INSTRUCTIONS[key]
    return template.replace("{student_name}", student_name).replace("{case_title}", case_title)
