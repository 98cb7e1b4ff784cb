# empath/api/v1/conversation.py conversation websocket: typing signals in, proactive events out
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

import empath.global_vars as global_vars
from empath.llm import LLMDecisionService, LLMProactiveMessageService, LLMReflectionService
from empath.memory.indexer import ConversationIndexer
from empath.models.decision import StateAnalysis
from empath.models.reflection import Reflection
from empath.services.pipeline import AnalysisPipeline
from empath.services.session import ConversationSession
from empath.utils.exception import EmpathError
from .memory import get_memory

logger = logging.getLogger(__name__)

router = APIRouter()


class ConversationConnectionManager:
    """Tracks one session (and its pipeline) per connected client."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}
        self.sessions: Dict[str, ConversationSession] = {}
        self._counter = 0

    def next_client_id(self) -> str:
        self._counter += 1
        return f"conversation_{self._counter}"

    async def connect(self, websocket: WebSocket, client_id: str) -> ConversationSession:
        await websocket.accept()
        memory = await get_memory()
        pipeline = AnalysisPipeline(
            decision_service=global_vars.decision_service or LLMDecisionService(),
            reflection_service=global_vars.reflection_service or LLMReflectionService(),
            memory=memory,
            action_handler=global_vars.proactive_service or LLMProactiveMessageService(),
            settings=global_vars.pipeline_settings,
        )
        session = ConversationSession(pipeline, indexer=ConversationIndexer(memory))

        pipeline.on_decision(lambda analysis: self.send(client_id, _decision_event(analysis)))
        pipeline.on_reflection(lambda reflection: self.send(client_id, _reflection_event(reflection)))
        pipeline.on_message(lambda message: self.send(client_id, {"type": "proactive_message", **message}))
        pipeline.start()

        self.active_connections[client_id] = websocket
        self.sessions[client_id] = session
        logger.info(f"Client {client_id} connected")
        return session

    async def disconnect(self, client_id: str) -> None:
        self.active_connections.pop(client_id, None)
        session = self.sessions.pop(client_id, None)
        if session is not None:
            await session.pipeline.stop()
        logger.info(f"Client {client_id} disconnected")

    async def send(self, client_id: str, message: Dict[str, Any]) -> bool:
        websocket = self.active_connections.get(client_id)
        if websocket is None:
            return False
        try:
            await websocket.send_json(message)
            return True
        except (RuntimeError, WebSocketDisconnect) as e:
            logger.warning(f"Failed to send to {client_id}: {e}")
            self.active_connections.pop(client_id, None)
            return False


def _decision_event(analysis: StateAnalysis) -> Dict[str, Any]:
    return {"type": "decision", **analysis.to_dict()}


def _reflection_event(reflection: Reflection) -> Dict[str, Any]:
    return {"type": "reflection", **reflection.to_dict()}


async def handle_event(session: ConversationSession, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Apply one inbound event; returns the direct reply, if any."""
    event_type = data.get("type")
    if event_type == "input":
        session.update_input(str(data.get("text", "")))
        return None
    if event_type == "message":
        role = data.get("role", "user")
        if role not in ("user", "assistant"):
            return {"type": "error", "success": False, "message": f"Unknown role: {role}"}
        message = await session.add_message(role, str(data.get("content", "")))
        if data.get("next_contact_ms") is not None:
            session.pipeline.set_contact_gap(int(data["next_contact_ms"]))
        return {"type": "message_ack", "role": message.role, "timestamp": message.timestamp.isoformat()}
    if event_type == "timezone":
        offset = data.get("utc_offset_minutes")
        tz = session.set_timezone(data.get("timezone"), int(offset) if offset is not None else None)
        return {"type": "timezone_ack", "timezone": str(tz)}
    if event_type == "contact_gap":
        session.pipeline.set_contact_gap(int(data.get("ms", 0)))
        return None
    if event_type == "focus":
        session.set_focus(bool(data.get("focused", True)))
        return None
    if event_type == "responding":
        session.set_responding(bool(data.get("responding", False)))
        return None
    if event_type == "ping":
        return {"type": "pong", "timestamp": data.get("timestamp")}
    if event_type == "status_request":
        return {"type": "status", "status": session.pipeline.status()}
    return {"type": "error", "success": False, "message": f"Unknown event type: {event_type}"}


conversation_manager = ConversationConnectionManager()


async def _apply_connect_timezone(client_id: str, session: ConversationSession, websocket: WebSocket) -> None:
    params = websocket.query_params
    try:
        offset = params.get("utc_offset_minutes")
        session.set_timezone(params.get("timezone"), int(offset) if offset is not None else None)
    except ValueError as e:
        await conversation_manager.send(client_id, {"type": "error", "success": False, "message": str(e)})


@router.websocket("/ws/conversation")
async def websocket_conversation_endpoint(websocket: WebSocket):
    client_id = conversation_manager.next_client_id()
    session = await conversation_manager.connect(websocket, client_id)
    try:
        if "timezone" in websocket.query_params or "utc_offset_minutes" in websocket.query_params:
            await _apply_connect_timezone(client_id, session, websocket)
        async for raw in websocket.iter_text():
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("event must be a JSON object")
                reply = await handle_event(session, data)
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                reply = {"type": "error", "success": False, "message": f"Invalid event: {e}"}
            except EmpathError as e:
                reply = {"type": "error", "success": False, "message": str(e)}
            if reply is not None:
                await conversation_manager.send(client_id, reply)
    except WebSocketDisconnect:
        logger.info(f"Client {client_id} closed the connection")
    finally:
        await conversation_manager.disconnect(client_id)
