from __future__ import annotations

import logging
import os
import uuid

from codepair.core import config
from codepair.questions.store import QuestionStore
from codepair.services.interview_service import InterviewService
from codepair.services.question_service import QuestionService
from codepair.session.registry import ConnectionRegistry
from codepair.session.role_gate import ParticipantRoleGate
from codepair.session.state_store import (
    LocalSessionStateStore,
    SessionStateStore,
    build_session_state_store,
)
from codepair.session.sweeper import MissedSessionSweeper

logger = logging.getLogger("codepair.container")

INSTANCE_ID = str(os.getenv("INSTANCE_ID") or f"api-{uuid.uuid4()}")


class ServiceContainer:
    """Everything one process needs, built once and hung off ``app.state``."""

    def __init__(
        self,
        store: SessionStateStore | None = None,
        question_store: QuestionStore | None = None,
        gate: ParticipantRoleGate | None = None,
    ):
        self.instance_id = INSTANCE_ID
        self.store = store if store is not None else self._build_store()
        self.question_store = question_store if question_store is not None else QuestionStore(config.QUESTION_STORE_PATH or None)
        self.gate = gate or ParticipantRoleGate(
            require_participant_for_code=config.CODE_UPDATE_REQUIRE_PARTICIPANT,
        )
        self.questions = QuestionService(self.question_store)
        self.sweeper = MissedSessionSweeper(self.store)
        self.interviews = InterviewService(self.store, self.questions, gate=self.gate, sweeper=self.sweeper)
        self.connections = ConnectionRegistry()

    def _build_store(self) -> SessionStateStore:
        try:
            store = build_session_state_store(self.instance_id)
            logger.info("Session state store initialized: %s", store.__class__.__name__)
            return store
        except Exception as exc:
            logger.warning(
                "Session state store fallback to LocalSessionStateStore due to init error: %s",
                exc,
            )
            return LocalSessionStateStore()

    async def start(self) -> None:
        if config.SEED_DEFAULT_QUESTIONS:
            self.questions.seed_default_questions()
        await self.store.event_bus.start()

    async def close(self) -> None:
        await self.store.event_bus.close()
