"""WebSocket handler: turn results plus pushed retry outcomes for one conversation."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from casechat.agents.orchestrator import PhaseError
from casechat.agents.providers import ProviderError
from casechat.conversations import ConversationNotFoundError, conversations

logger = logging.getLogger(__name__)
router = APIRouter()


@router.websocket("/ws/{conversation_id}")
async def websocket_endpoint(websocket: WebSocket, conversation_id: str):
    await websocket.accept()

    try:
        orchestrator = conversations.get(conversation_id)
    except ConversationNotFoundError:
        await websocket.send_json({"type": "error", "content": "Invalid conversation ID"})
        await websocket.close()
        return

    conversations.connect(conversation_id, websocket)
    await websocket.send_json({
        "type": "state",
        "phase": orchestrator.phase.value,
        "messages": [m.model_dump(mode="json") for m in orchestrator.messages],
    })

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                data = {"type": "message", "content": raw}

            msg_type = data.get("type", "message")
            try:
                if msg_type == "message":
                    content = data.get("content", "")
                    if not content.strip():
                        continue
                    turn = await orchestrator.handle_message(content)
                elif msg_type == "evaluate":
                    turn = await orchestrator.proceed_to_evaluation()
                elif msg_type == "restart":
                    turn = await conversations.restart(conversation_id)
                else:
                    await websocket.send_json({"type": "error", "content": f"Unknown message type {msg_type!r}"})
                    continue
            except (PhaseError, ProviderError) as e:
                await websocket.send_json({"type": "error", "content": str(e)})
                continue

            await websocket.send_json({"type": "turn", **turn.model_dump(mode="json")})

    except WebSocketDisconnect:
        logger.info("WebSocket disconnected for conversation %s", conversation_id)
        # Keep the orchestrator alive so the conversation can be resumed
    except Exception:
        logger.exception("WebSocket error for conversation %s", conversation_id)
        try:
            await websocket.send_json({
                "type": "error",
                "content": "An unexpected error occurred. Please try again.",
            })
        except Exception:
            logger.debug("Could not report error to conversation %s", conversation_id)
    finally:
        conversations.disconnect(conversation_id)
