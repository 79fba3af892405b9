"""Participant-side client for the live session channel.

Connects to ``/ws/sessions/{stream_call_id}`` with the ``websockets`` library,
feeds canonical snapshots into a ConvergenceController and sends the
controller's publishes back over the same socket.
"""
from __future__ import annotations

import asyncio
import json
import logging
import urllib.parse
from typing import Any, Awaitable, Callable

import websockets

from codepair.errors import CodePairError
from codepair.models import Question, Session
from codepair.session.convergence import CanonicalState, ConvergenceController
from codepair.session.role_gate import ParticipantRole, ParticipantRoleGate

logger = logging.getLogger("codepair.client")


def session_url(base_url: str, stream_call_id: str, token: str) -> str:
    query = urllib.parse.urlencode({"token": token})
    call = urllib.parse.quote(stream_call_id, safe="")
    return f"{base_url.rstrip('/')}/ws/sessions/{call}?{query}"


class WebSocketPublisher:
    def __init__(self, send: Callable[[dict], Awaitable[None]]):
        self._send = send

    async def publish_code(self, session_id: str, code: str) -> None:
        await self._send({"type": "code_update", "code": code})

    async def publish_question(self, session_id: str, question_id: str) -> None:
        await self._send({"type": "select_question", "question_id": question_id})

    async def publish_language(self, session_id: str, language: str) -> None:
        await self._send({"type": "switch_language", "language": language})


class SessionSyncClient:
    def __init__(
        self,
        url: str,
        caller_id: str,
        *,
        connect: Callable[..., Any] | None = None,
        **controller_options: Any,
    ):
        self.url = url
        self.caller_id = caller_id
        self.controller: ConvergenceController | None = None
        self.session: Session | None = None
        self.errors: list[dict] = []
        self.ready = asyncio.Event()
        self._connect = connect or websockets.connect
        self._controller_options = controller_options
        self._ws = None
        self._pending_state: CanonicalState | None = None

    async def connect(self) -> None:
        self._ws = await self._connect(self.url)

    async def _send(self, payload: dict) -> None:
        if self._ws is None:
            raise ConnectionError("Session channel is not connected")
        await self._ws.send(json.dumps(payload))

    def _build_controller(self, questions: list[Question]) -> ConvergenceController:
        role = ParticipantRoleGate.classify(self.session, self.caller_id) or ParticipantRole.GUEST
        return ConvergenceController(
            self.session.id,
            role,
            WebSocketPublisher(self._send),
            questions,
            language=self.session.current_language,
            **self._controller_options,
        )

    async def handle_message(self, data: dict) -> None:
        message_type = str(data.get("type") or "")
        if message_type == "state":
            self.session = Session.from_dict(data.get("session") or {})
            state = CanonicalState.from_session(self.session)
            if self.controller is None:
                self._pending_state = state
            else:
                self.controller.on_remote_state(state)
        elif message_type == "questions":
            questions = [Question.from_dict(item) for item in data.get("items") or []]
            if self.controller is not None:
                self.controller.set_questions(questions)
            elif self.session is not None:
                self.controller = self._build_controller(questions)
                await self.controller.bootstrap(self._pending_state or CanonicalState.from_session(self.session))
                self._pending_state = None
                self.ready.set()
        elif message_type == "error":
            self.errors.append(data)
            logger.warning("session channel rejected action | status=%s err=%s", data.get("status_code"), data.get("error"))
        elif message_type == "ping":
            await self._send({"type": "pong"})

    async def run(self) -> None:
        if self._ws is None:
            await self.connect()
        try:
            async for raw in self._ws:
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning("Dropping malformed session message")
                    continue
                if isinstance(data, dict):
                    await self.handle_message(data)
        except websockets.ConnectionClosed as exc:
            logger.info("session channel closed | code=%s", exc.code)

    def edit(self, code: str) -> None:
        self._require_controller().on_local_edit(code)

    async def select_question(self, question_id: str) -> None:
        await self._require_controller().select_question(question_id)

    async def switch_language(self, language: str) -> None:
        await self._require_controller().switch_language(language)

    def _require_controller(self) -> ConvergenceController:
        if self.controller is None:
            raise CodePairError("Session channel is not ready", 503)
        return self.controller

    async def close(self) -> None:
        if self.controller is not None:
            await self.controller.flush()
            await self.controller.close()
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
