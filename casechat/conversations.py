"""In-process registry of live conversations shared by the REST and WebSocket surfaces."""

from __future__ import annotations

import logging
import secrets
from typing import Any

from fastapi import WebSocket

from casechat.agents.orchestrator import ConversationOrchestrator
from casechat.agents.personas import choose_persona
from casechat.agents.prompts import format_transcript
from casechat.agents.providers import ClientRegistry
from casechat.cases import CaseStore
from casechat.models.evaluation import EvaluationRecord
from casechat.models.options import ChatOptions
from casechat.models.session import Message, TurnResult
from casechat.records import RecordStore
from casechat.transcripts import anonymize_transcript

logger = logging.getLogger(__name__)

_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


class ConversationNotFoundError(LookupError):
    """Raised for an unknown conversation id."""


class ConversationManager:
    def __init__(
        self,
        case_store: CaseStore | None = None,
        record_store: RecordStore | None = None,
        registry: ClientRegistry | None = None,
    ):
        self.case_store = case_store or CaseStore()
        self.record_store = record_store or RecordStore()
        self.registry = registry or ClientRegistry.from_settings()
        self._orchestrators: dict[str, ConversationOrchestrator] = {}
        self._connections: dict[str, WebSocket] = {}

    def _generate_short_id(self, length: int = 6) -> str:
        while True:
            cid = "".join(secrets.choice(_ALPHABET) for _ in range(length))
            if cid not in self._orchestrators:
                return cid

    def create(
        self,
        case_id: str,
        first_name: str,
        full_name: str = "",
        persona: str | None = None,
        chat_model: str | None = None,
        eval_model: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> tuple[ConversationOrchestrator, TurnResult]:
        """Build and start a conversation. Provider errors propagate before registration."""
        case = self.case_store.get_case(case_id)
        chat_options = ChatOptions.resolve(self.case_store.get_options(case_id), options)
        persona_id = choose_persona(persona, chat_options)
        conversation_id = self._generate_short_id()

        orchestrator = ConversationOrchestrator(
            conversation_id,
            case,
            chat_options,
            self.registry,
            student_first_name=first_name,
            student_full_name=full_name,
            persona=persona_id,
            persona_override=self.case_store.get_persona_override(persona_id),
            chat_model=chat_model,
            eval_model=eval_model,
            notifier=lambda message: self.notify(conversation_id, message),
            on_complete=self._store_completion,
        )
        turn = orchestrator.start()
        self._orchestrators[conversation_id] = orchestrator
        return orchestrator, turn

    def get(self, conversation_id: str) -> ConversationOrchestrator:
        orchestrator = self._orchestrators.get(conversation_id)
        if orchestrator is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return orchestrator

    async def restart(self, conversation_id: str) -> TurnResult:
        """Abandon the current meeting and open a fresh one with the same student and case."""
        orchestrator = self.get(conversation_id)
        discarded = await orchestrator.restart()
        if orchestrator.options.save_dead_transcripts and discarded:
            path = self.record_store.save_dead_transcript(
                conversation_id, self.anonymized_transcript(orchestrator, discarded)
            )
            logger.info("Saved abandoned transcript for %s to %s", conversation_id, path)
        return orchestrator.start()

    def anonymized_transcript(
        self, orchestrator: ConversationOrchestrator, messages: list[Message] | None = None
    ) -> str:
        state = orchestrator.state
        if messages is None:
            messages = list(orchestrator.messages)
        full_name = state.student_full_name
        parts = full_name.split()
        last_name = parts[-1] if len(parts) > 1 else ""
        transcript = format_transcript(messages, orchestrator.case.protagonist)
        return anonymize_transcript(transcript, full_name, state.student_first_name, last_name)

    async def _store_completion(self, record: EvaluationRecord) -> None:
        orchestrator = self._orchestrators.get(record.conversation_id)
        if record.share_transcript and orchestrator is not None:
            record = record.model_copy(update={"transcript": self.anonymized_transcript(orchestrator)})
        path = self.record_store.save_evaluation(record)
        logger.info(
            "Evaluation stored for %s: total=%d hints=%d share_transcript=%s (%s)",
            record.conversation_id, record.total_score, record.hints, record.share_transcript, path,
        )

    # -- push channel --------------------------------------------------------

    def connect(self, conversation_id: str, websocket: WebSocket) -> None:
        self._connections[conversation_id] = websocket

    def disconnect(self, conversation_id: str) -> None:
        self._connections.pop(conversation_id, None)

    async def notify(self, conversation_id: str, message: dict[str, Any]) -> None:
        """Send a JSON message to the active WebSocket for *conversation_id* (if any)."""
        ws = self._connections.get(conversation_id)
        if ws is None:
            return
        try:
            await ws.send_json(message)
        except Exception:
            logger.debug("Failed to push notification to conversation %s", conversation_id)


conversations = ConversationManager()
