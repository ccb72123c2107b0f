from __future__ import annotations

import logging
import os
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, ValidationError

from casechat.agents.orchestrator import ConversationOrchestrator, PhaseError
from casechat.agents.providers import MissingCredentialsError, ProviderConfigError
from casechat.cases import CaseNotFoundError
from casechat.config import settings
from casechat.conversations import ConversationNotFoundError, conversations

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Case Chat", version="0.1.0")

origins = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
]
if os.environ.get("FRONTEND_URL"):
    origins.append(os.environ["FRONTEND_URL"])

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class CreateConversationRequest(BaseModel):
    case_id: str
    first_name: str = Field(min_length=1)
    full_name: str = ""
    persona: str | None = None
    chat_model: str | None = None
    eval_model: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class MessageRequest(BaseModel):
    content: str


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

@app.exception_handler(CaseNotFoundError)
@app.exception_handler(ConversationNotFoundError)
async def not_found_handler(request: Request, exc: LookupError):
    return JSONResponse({"error": str(exc)}, status_code=404)


@app.exception_handler(PhaseError)
async def phase_error_handler(request: Request, exc: PhaseError):
    return JSONResponse({"error": str(exc)}, status_code=409)


@app.exception_handler(MissingCredentialsError)
async def missing_credentials_handler(request: Request, exc: MissingCredentialsError):
    logger.error("Cannot start conversation: %s", exc)
    return JSONResponse({"error": str(exc)}, status_code=503)


@app.exception_handler(ProviderConfigError)
async def provider_config_handler(request: Request, exc: ProviderConfigError):
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(ValidationError)
async def options_error_handler(request: Request, exc: ValidationError):
    return JSONResponse({"error": "Invalid chat options", "detail": exc.errors(include_url=False)}, status_code=400)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

def _snapshot(orchestrator: ConversationOrchestrator) -> dict:
    case = orchestrator.case
    case_view = {
        "case_id": case.case_id,
        "case_title": case.case_title,
        "protagonist": case.protagonist,
        "protagonist_initials": case.protagonist_initials,
        "chat_topic": case.chat_topic,
        "chat_question": case.chat_question,
    }
    if orchestrator.options.show_case:
        case_view["case_content"] = case.case_content
    session = orchestrator.session
    cache = session.last_cache if session is not None else None
    return {
        "conversation": orchestrator.snapshot().model_dump(mode="json"),
        "case": case_view,
        "options": orchestrator.options.model_dump(mode="json"),
        "retry_pending": orchestrator.retry_pending,
        "cache": cache.model_dump(mode="json") if cache is not None else None,
    }


@app.get("/health")
async def health():
    return {"status": "ok", "service": "case-chat"}


@app.get("/api/cases")
async def list_cases():
    return {"cases": conversations.case_store.list_cases()}


@app.post("/api/conversations")
async def create_conversation(body: CreateConversationRequest):
    orchestrator, turn = conversations.create(
        body.case_id,
        body.first_name,
        full_name=body.full_name,
        persona=body.persona,
        chat_model=body.chat_model,
        eval_model=body.eval_model,
        options=body.options,
    )
    return {
        "conversation_id": orchestrator.conversation_id,
        "turn": turn.model_dump(mode="json"),
        **_snapshot(orchestrator),
    }


@app.get("/api/conversations/{conversation_id}")
async def get_conversation(conversation_id: str):
    return _snapshot(conversations.get(conversation_id))


@app.post("/api/conversations/{conversation_id}/messages")
async def post_message(conversation_id: str, body: MessageRequest):
    turn = await conversations.get(conversation_id).handle_message(body.content)
    return turn.model_dump(mode="json")


@app.post("/api/conversations/{conversation_id}/evaluate")
async def evaluate_conversation(conversation_id: str):
    turn = await conversations.get(conversation_id).proceed_to_evaluation()
    return turn.model_dump(mode="json")


@app.get("/api/conversations/{conversation_id}/evaluation")
async def get_evaluation(conversation_id: str):
    conversations.get(conversation_id)
    record = conversations.record_store.get_evaluation(conversation_id)
    if record is None:
        return JSONResponse({"error": "Evaluation not yet available"}, status_code=404)
    return record.model_dump(mode="json")


@app.post("/api/conversations/{conversation_id}/restart")
async def restart_conversation(conversation_id: str):
    turn = await conversations.restart(conversation_id)
    return turn.model_dump(mode="json")


# WebSocket endpoint is registered in websocket.py
from casechat.websocket import router as ws_router  # noqa: E402

app.include_router(ws_router)


def run() -> None:
    import uvicorn

    uvicorn.run("casechat.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)
