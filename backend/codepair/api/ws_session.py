from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketState
import asyncio
import json
import logging
import time
import uuid

from codepair.auth import resolve_caller_id_from_token_async
from codepair.core import config
from codepair.core.logger import log_event
from codepair.errors import CodePairError, ValidationError
from codepair.models import Session
from codepair.system_metrics import decrement_metric, increment_metric, set_metric

logger = logging.getLogger("codepair.ws_session")

router = APIRouter()

CLOSE_UNAUTHORIZED = 1008
CLOSE_TOO_LARGE = 1009
CLOSE_UNKNOWN_SESSION = 4404


def _token_from(websocket: WebSocket) -> str:
    auth_header = str(websocket.headers.get("authorization") or "").strip()
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return str(websocket.query_params.get("token") or "").strip()


@router.websocket("/ws/sessions/{stream_call_id}")
async def session_ws(websocket: WebSocket, stream_call_id: str):
    container = websocket.app.state.container
    try:
        caller_id = await resolve_caller_id_from_token_async(_token_from(websocket))
    except CodePairError:
        await websocket.close(code=CLOSE_UNAUTHORIZED, reason="Unauthorized")
        return

    session = await container.store.get(stream_call_id)
    if session is None:
        await websocket.close(code=CLOSE_UNKNOWN_SESSION, reason="Session not found")
        return

    session_id = session.id
    role = container.gate.classify(session, caller_id)
    role_value = role.value if role else "observer"
    connection_id = str(uuid.uuid4())
    send_lock = asyncio.Lock()

    def _log_event(event: str, **fields):
        log_event("ws_session", event, session_id, connection_id=connection_id, **fields)

    async def _safe_send(payload: dict) -> None:
        if websocket.client_state != WebSocketState.CONNECTED:
            return
        try:
            encoded = json.dumps(payload)
        except (TypeError, ValueError) as exc:
            logger.warning("ws payload encode failed | session_id=%s err=%s", session_id, exc)
            return
        try:
            async with send_lock:
                await websocket.send_text(encoded)
        except Exception as exc:
            logger.warning("ws send failed | session_id=%s err=%s", session_id, exc)

    async def _send_error(exc: CodePairError) -> None:
        increment_metric("ws_rejected_actions_total")
        _log_event("action_rejected", status_code=exc.status_code, error=exc.message)
        await _safe_send({"type": "error", "error": exc.message, "status_code": exc.status_code})

    await websocket.accept()
    container.connections.register(connection_id, session_id, caller_id, role_value)
    increment_metric("ws_connections_active")
    set_metric("ws_sessions_active", container.connections.active_session_count())
    _log_event("connect", role=role_value)

    subscription = container.store.subscribe(session_id)
    latest = {"session": session}
    sent_bank: list[dict] = []
    bank_changed = asyncio.Event()

    async def send_questions() -> None:
        items = [item.to_dict() for item in container.questions.questions_for_session(latest["session"])]
        if items == sent_bank:
            return
        sent_bank[:] = items
        await _safe_send({"type": "questions", "items": items})

    await _safe_send({"type": "state", "session": session.to_dict()})
    await send_questions()
    container.questions.add_listener(bank_changed.set)

    async def forward_state():
        async for snapshot in subscription:
            latest["session"] = Session.from_dict(snapshot)
            # Questions must reach the client before a state that selects one.
            question_id = snapshot.get("current_question_id")
            if question_id and all(item["id"] != question_id for item in sent_bank):
                await send_questions()
            await _safe_send({"type": "state", "session": snapshot})

    async def forward_questions():
        while True:
            await bank_changed.wait()
            bank_changed.clear()
            await send_questions()

    async def heartbeat():
        while True:
            await asyncio.sleep(config.WS_HEARTBEAT_INTERVAL_SEC)
            if websocket.client_state != WebSocketState.CONNECTED:
                return
            await _safe_send({"type": "ping", "ts": time.time()})

    async def handle_action(payload_type: str, payload: dict) -> None:
        interviews = container.interviews
        if payload_type == "code_update":
            await interviews.update_code(caller_id, session_id, str(payload.get("code") or ""))
        elif payload_type == "select_question":
            await interviews.set_current_question(caller_id, session_id, str(payload.get("question_id") or ""))
        elif payload_type == "switch_language":
            await interviews.switch_language(caller_id, session_id, str(payload.get("language") or ""))
        else:
            raise ValidationError(f"Unsupported message type: {payload_type or 'unknown'}", field="type")

    tasks = [
        asyncio.create_task(forward_state()),
        asyncio.create_task(forward_questions()),
        asyncio.create_task(heartbeat()),
    ]
    stop_reason = "client_disconnect"
    try:
        while True:
            msg = await websocket.receive()
            if msg["type"] == "websocket.disconnect":
                break

            text_payload = msg.get("text")
            if text_payload is None:
                continue
            text_bytes = len(text_payload.encode("utf-8"))
            if text_bytes > config.WS_MAX_TEXT_BYTES:
                logger.warning("WS message too large | session_id=%s bytes=%s", session_id, text_bytes)
                stop_reason = "message_too_large"
                await websocket.close(code=CLOSE_TOO_LARGE, reason="Message too large")
                break
            container.connections.touch(connection_id)

            try:
                payload = json.loads(text_payload)
            except ValueError:
                await _send_error(ValidationError("Message must be a JSON object"))
                continue
            if not isinstance(payload, dict):
                await _send_error(ValidationError("Message must be a JSON object"))
                continue

            payload_type = str(payload.get("type") or "").strip().lower()
            if payload_type == "ping":
                await _safe_send({"type": "pong", "ts": time.time()})
                continue
            if payload_type == "pong":
                continue

            try:
                await handle_action(payload_type, payload)
            except CodePairError as exc:
                await _send_error(exc)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        subscription.close()
        container.questions.remove_listener(bank_changed.set)
        container.connections.mark_inactive(connection_id)
        decrement_metric("ws_connections_active")
        increment_metric("ws_disconnects_total")
        set_metric("ws_sessions_active", container.connections.active_session_count())
        _log_event("disconnect", reason=stop_reason)
