"""Conversation orchestrator: drives one student's case chat from greeting to evaluation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from casechat.agents import prompts
from casechat.agents.classifiers import (
    extract_helpful_score,
    is_affirmative,
    is_hint_request,
    is_time_up,
)
from casechat.agents.evaluator import evaluate
from casechat.agents.personas import choose_persona
from casechat.agents.providers import ClientRegistry, ProviderSession, create_session
from casechat.agents.retry import RetryTimer
from casechat.config import settings
from casechat.models.case import CaseData, PersonaRecord
from casechat.models.evaluation import EvaluationRecord
from casechat.models.options import ChatOptions
from casechat.models.session import (
    ConversationPhase,
    ConversationState,
    FeedbackAnswers,
    Message,
    MessageRole,
    TurnResult,
)

logger = logging.getLogger(__name__)

Notifier = Callable[[dict[str, Any]], Awaitable[None]]
CompletionHook = Callable[[EvaluationRecord], Awaitable[None]]

_PHASE_ORDER = {phase: i for i, phase in enumerate(ConversationPhase)}


class PhaseError(Exception):
    """Raised when an operation is not valid in the conversation's current phase."""


def _user(text: str) -> Message:
    return Message(role=MessageRole.USER, content=text)


def _model(text: str) -> Message:
    return Message(role=MessageRole.MODEL, content=text)


class ConversationOrchestrator:
    """Phase state machine for a single conversation.

    All model calls for the conversation are serialised by one lock, so at
    most one request is ever in flight and turns are processed in order.
    """

    def __init__(
        self,
        conversation_id: str,
        case: CaseData,
        options: ChatOptions,
        registry: ClientRegistry,
        *,
        student_first_name: str,
        student_full_name: str = "",
        persona: str | None = None,
        persona_override: PersonaRecord | None = None,
        chat_model: str | None = None,
        eval_model: str | None = None,
        retry_delay: float | None = None,
        notifier: Notifier | None = None,
        on_complete: CompletionHook | None = None,
    ):
        self.case = case
        self.options = options
        self.registry = registry
        self.persona_override = persona_override
        self.retry_delay = settings.retry_delay_seconds if retry_delay is None else retry_delay
        self.notifier = notifier
        self.on_complete = on_complete
        self.state = ConversationState(
            conversation_id=conversation_id,
            student_first_name=student_first_name,
            student_full_name=student_full_name or student_first_name,
            case_id=case.case_id,
            persona=choose_persona(persona, options),
            chat_model=chat_model or settings.default_chat_model,
            eval_model=eval_model or chat_model or settings.default_eval_model,
        )
        self._session: ProviderSession | None = None
        self._lock = asyncio.Lock()
        self._retry: RetryTimer | None = None
        self._handlers: dict[ConversationPhase, Callable[[str], Awaitable[TurnResult]]] = {
            ConversationPhase.CHATTING: self._handle_chatting,
            ConversationPhase.AWAITING_HELPFUL_PERMISSION: self._handle_helpful_permission,
            ConversationPhase.AWAITING_HELPFUL_SCORE: self._handle_helpful_score,
            ConversationPhase.AWAITING_LIKED_FEEDBACK: self._handle_liked_feedback,
            ConversationPhase.AWAITING_IMPROVE_FEEDBACK: self._handle_improve_feedback,
            ConversationPhase.AWAITING_TRANSCRIPT_PERMISSION: self._handle_transcript_permission,
        }

    # -- read-only views ---------------------------------------------------

    @property
    def conversation_id(self) -> str:
        return self.state.conversation_id

    @property
    def phase(self) -> ConversationPhase:
        return self.state.phase

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self.state.messages)

    @property
    def hints_used(self) -> int:
        return self.state.hints_used

    @property
    def feedback(self) -> FeedbackAnswers:
        return self.state.feedback

    @property
    def session(self) -> ProviderSession | None:
        return self._session

    @property
    def retry_pending(self) -> bool:
        return self._retry is not None and self._retry.pending

    def snapshot(self) -> ConversationState:
        return self.state.model_copy(deep=True)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> TurnResult:
        """Open the model session and greet the student (PRE_CHAT -> CHATTING).

        Credential and model configuration problems surface here, before any
        student input is accepted.
        """
        if self.phase != ConversationPhase.PRE_CHAT:
            raise PhaseError(f"Conversation already started (phase={self.phase.value})")

        name = self.state.student_first_name
        system_prompt = prompts.build_system_prompt(
            name, self.state.persona, self.case, self.options, self.persona_override
        )
        opening = _model(prompts.opening_message(name, self.case))
        self._session = create_session(
            self.registry, system_prompt, self.state.chat_model, prior_history=[opening]
        )
        appended = self._append(opening)
        self._set_phase(ConversationPhase.CHATTING)
        logger.info(
            "Conversation %s started: case=%s persona=%s model=%s",
            self.conversation_id, self.case.case_id, self.state.persona, self.state.chat_model,
        )
        return TurnResult(phase=self.phase, messages=appended)

    async def restart(self) -> list[Message]:
        """Discard the conversation and return to PRE_CHAT.

        Waits for any in-flight turn so its reply lands in the discarded
        transcript. Returns the discarded messages.
        """
        self._cancel_pending_retry()
        async with self._lock:
            discarded = list(self.state.messages)
            self._reset_state()
        logger.info("Conversation %s restarted", self.conversation_id)
        return discarded

    def _reset_state(self) -> None:
        self._session = None
        self.state = ConversationState(
            conversation_id=self.state.conversation_id,
            student_first_name=self.state.student_first_name,
            student_full_name=self.state.student_full_name,
            case_id=self.state.case_id,
            persona=self.state.persona,
            chat_model=self.state.chat_model,
            eval_model=self.state.eval_model,
        )

    async def handle_message(self, text: str) -> TurnResult:
        """Process one student message in the current phase."""
        # A new message always supersedes a pending retry.
        self._cancel_pending_retry()
        async with self._lock:
            handler = self._handlers.get(self.phase)
            if handler is None:
                return self._result(
                    events=[_error(f"Messages are not accepted in phase {self.phase.value}")]
                )
            return await handler(text)

    async def proceed_to_evaluation(self) -> TurnResult:
        """FEEDBACK_COMPLETE -> EVALUATION_LOADING -> EVALUATING.

        On any evaluation failure the conversation returns to CHATTING so the
        student is not stranded.
        """
        self._cancel_pending_retry()
        async with self._lock:
            if self.phase != ConversationPhase.FEEDBACK_COMPLETE:
                raise PhaseError(f"Cannot evaluate from phase {self.phase.value}")

            if not self.options.do_evaluation:
                self._set_phase(ConversationPhase.EVALUATING)
                return self._result(events=[{"type": "evaluation_skipped"}])

            self._set_phase(ConversationPhase.EVALUATION_LOADING)
            try:
                result = await evaluate(
                    self.registry,
                    list(self.state.messages),
                    self.state.student_full_name,
                    self.state.eval_model,
                    self.case,
                    self.options,
                )
            except Exception:
                logger.exception("Evaluation failed for conversation %s", self.conversation_id)
                self._set_phase(ConversationPhase.CHATTING, allow_regress=True)
                return self._result(events=[_error(prompts.EVALUATION_ERROR)])

            self.state.evaluation = result
            self._set_phase(ConversationPhase.EVALUATING)
            await self._emit_completion()
            return self._result(
                events=[{"type": "evaluation", "result": result.model_dump(mode="json")}]
            )

    # -- CHATTING ----------------------------------------------------------

    async def _handle_chatting(self, text: str) -> TurnResult:
        if not text.strip():
            return self._result(events=[_error("Message is empty.")])

        limit = self.options.max_message_length
        if limit is not None and len(text) > limit:
            return self._result(
                events=[_error(f"Please keep your message under {limit} characters.")]
            )

        if is_time_up(text):
            return self._handle_time_up(text)

        hint = is_hint_request(text)
        if hint and self.state.hints_used >= self.options.hints_allowed:
            appended = self._append(_user(text), _model(prompts.hint_refusal(self.options.hints_allowed)))
            logger.info(
                "Hint refused for %s (%d/%d used)",
                self.conversation_id, self.state.hints_used, self.options.hints_allowed,
            )
            return self._result(appended, events=[{"type": "hint_refused"}])

        appended = self._append(_user(text))
        if hint:
            self.state.hints_used += 1

        try:
            reply = await self._require_session().send(text)
        except Exception:
            logger.warning(
                "Model call failed for %s, retrying in %.0fs",
                self.conversation_id, self.retry_delay, exc_info=True,
            )
            appended += self._append(_model(prompts.STAND_BY_MESSAGE))
            self._schedule_retry(text, len(self.state.messages) - 1)
            return self._result(
                appended,
                events=[
                    _error(prompts.DELAY_ERROR),
                    {"type": "alert", "sound": "error"},
                    {"type": "retry_scheduled", "delay_seconds": self.retry_delay},
                ],
            )

        appended += self._append(_model(reply.text))
        return self._result(
            appended,
            events=[{"type": "cache_metrics", **reply.cache.model_dump(mode="json")}],
        )

    def _handle_time_up(self, text: str) -> TurnResult:
        name = self.state.student_first_name
        sent = sum(
            1 for m in self.state.messages
            if m.role == MessageRole.USER and not is_time_up(m.content)
        )
        if sent < self.options.min_exchanges:
            remaining = self.options.min_exchanges - sent
            appended = self._append(_user(text), _model(prompts.keep_going_message(name, remaining)))
            return self._result(appended)

        if self.options.ask_for_feedback:
            closing = prompts.closing_feedback_request(name)
            next_phase = ConversationPhase.AWAITING_HELPFUL_PERMISSION
        elif self.options.ask_save_transcript:
            closing = prompts.closing_transcript_request(name)
            next_phase = ConversationPhase.AWAITING_TRANSCRIPT_PERMISSION
        else:
            closing = prompts.closing_farewell(name)
            next_phase = ConversationPhase.FEEDBACK_COMPLETE

        appended = self._append(_user(text), _model(closing))
        self._set_phase(next_phase)
        return self._result(appended)

    # -- feedback phases ---------------------------------------------------

    async def _handle_helpful_permission(self, text: str) -> TurnResult:
        appended = self._append(_user(text))
        if is_affirmative(text):
            appended += self._append(_model(prompts.HELPFUL_SCORE_REQUEST))
            self._set_phase(ConversationPhase.AWAITING_HELPFUL_SCORE)
        elif self.options.ask_save_transcript:
            appended += self._append(_model(prompts.DECLINED_TRANSCRIPT_REQUEST))
            self._set_phase(ConversationPhase.AWAITING_TRANSCRIPT_PERMISSION)
        else:
            appended += self._append(_model(prompts.DECLINED_FAREWELL))
            self._set_phase(ConversationPhase.FEEDBACK_COMPLETE)
        return self._result(appended)

    async def _handle_helpful_score(self, text: str) -> TurnResult:
        self.state.feedback.helpful_score = extract_helpful_score(text)
        appended = self._append(_user(text), _model(prompts.LIKED_REQUEST))
        self._set_phase(ConversationPhase.AWAITING_LIKED_FEEDBACK)
        return self._result(appended)

    async def _handle_liked_feedback(self, text: str) -> TurnResult:
        self.state.feedback.liked = text
        appended = self._append(_user(text), _model(prompts.IMPROVE_REQUEST))
        self._set_phase(ConversationPhase.AWAITING_IMPROVE_FEEDBACK)
        return self._result(appended)

    async def _handle_improve_feedback(self, text: str) -> TurnResult:
        self.state.feedback.improve = text
        if self.options.ask_save_transcript:
            appended = self._append(_user(text), _model(prompts.DECLINED_TRANSCRIPT_REQUEST))
            self._set_phase(ConversationPhase.AWAITING_TRANSCRIPT_PERMISSION)
        else:
            appended = self._append(_user(text), _model(prompts.FEEDBACK_FAREWELL))
            self._set_phase(ConversationPhase.FEEDBACK_COMPLETE)
        return self._result(appended)

    async def _handle_transcript_permission(self, text: str) -> TurnResult:
        if is_affirmative(text):
            self.state.feedback.share_transcript = True
        appended = self._append(
            _user(text), _model(prompts.goodbye_message(self.state.student_first_name))
        )
        self._set_phase(ConversationPhase.FEEDBACK_COMPLETE)
        events = [{"type": "transcript_consent", "share_transcript": self.state.feedback.share_transcript}]
        return self._result(appended, events=events)

    # -- retry -------------------------------------------------------------

    def _schedule_retry(self, text: str, stand_by_index: int) -> None:
        timer: RetryTimer | None = None

        async def fire() -> None:
            await self._retry_send(text, stand_by_index, timer)

        timer = RetryTimer(self.retry_delay, fire, label=f"send:{self.conversation_id}")
        self._retry = timer

    def _cancel_pending_retry(self) -> None:
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None

    async def _retry_send(self, text: str, stand_by_index: int, timer: RetryTimer | None) -> None:
        async with self._lock:
            if self._retry is not timer or self.phase != ConversationPhase.CHATTING:
                return
            self._retry = None
            try:
                reply = await self._require_session().send(text)
            except Exception:
                logger.error("Retry failed for %s", self.conversation_id, exc_info=True)
                await self._notify(_error(prompts.STILL_BUSY_ERROR))
                return

            replacement = [_model(prompts.RETRY_ACKNOWLEDGEMENT), _model(reply.text)]
            self._replace_stand_by(stand_by_index, replacement)
            logger.info("Retry succeeded for %s", self.conversation_id)
            await self._notify({
                "type": "retry_succeeded",
                "replaced_index": stand_by_index,
                "messages": [m.model_dump(mode="json") for m in replacement],
                "phase": self.phase.value,
            })

    # -- helpers -----------------------------------------------------------

    def _require_session(self) -> ProviderSession:
        if self._session is None:
            raise PhaseError("Conversation has not been started")
        return self._session

    def _append(self, *messages: Message) -> list[Message]:
        self.state.messages.extend(messages)
        return list(messages)

    def _replace_stand_by(self, index: int, replacement: list[Message]) -> None:
        # The stand-by placeholder is the only message that may ever be replaced.
        current = self.state.messages[index]
        if current.role != MessageRole.MODEL or current.content != prompts.STAND_BY_MESSAGE:
            raise RuntimeError(f"Message {index} is not a stand-by placeholder")
        self.state.messages[index:index + 1] = replacement

    def _set_phase(self, phase: ConversationPhase, allow_regress: bool = False) -> None:
        if not allow_regress and _PHASE_ORDER[phase] < _PHASE_ORDER[self.phase]:
            raise PhaseError(f"Phase cannot move back from {self.phase.value} to {phase.value}")
        if phase != self.phase:
            logger.debug("Conversation %s: %s -> %s", self.conversation_id, self.phase.value, phase.value)
        self.state.phase = phase

    def _result(self, messages: list[Message] | None = None, events: list[dict[str, Any]] | None = None) -> TurnResult:
        return TurnResult(phase=self.phase, messages=messages or [], events=events or [])

    async def _notify(self, message: dict[str, Any]) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier(message)
        except Exception:
            logger.warning("Failed to push notification for %s", self.conversation_id, exc_info=True)

    async def _emit_completion(self) -> None:
        if self.on_complete is None or self.state.evaluation is None:
            return
        result = self.state.evaluation
        feedback = self.state.feedback
        record = EvaluationRecord(
            conversation_id=self.conversation_id,
            case_id=self.state.case_id,
            total_score=result.total_score,
            criteria=list(result.criteria),
            summary=result.summary,
            hints=result.hints,
            persona=self.state.persona,
            chat_model=self.state.chat_model,
            eval_model=self.state.eval_model,
            helpful=feedback.helpful_score,
            liked=feedback.liked,
            improve=feedback.improve,
            share_transcript=feedback.share_transcript,
        )
        try:
            await self.on_complete(record)
        except Exception:
            logger.exception("Failed to store evaluation for %s", self.conversation_id)


def _error(content: str) -> dict[str, Any]:
    return {"type": "error", "content": content}
