"""Keeps one participant's editor buffer converged with the canonical session state.

Local keystrokes win for a short protection window after they happen and are
published after a quiet period (debounce). Outside the window, a differing
canonical value replaces the local buffer. Question and language changes are
never debounced and always reset the buffer to the question's starter code.

Ordering between two writers is last-write-wins at the store; nothing here
tries to be stronger than that.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
import time
from typing import Any, Callable, Iterable, Protocol

from codepair.core import config
from codepair.errors import CodePairError, NotFoundError, TransientPublishFailure, UnauthorizedError
from codepair.models import DEFAULT_LANGUAGE, SUPPORTED_LANGUAGES, Question, Session, parse_language
from codepair.session.role_gate import ParticipantRole
from codepair.system_metrics import increment_metric

logger = logging.getLogger("codepair.convergence")


@dataclass
class CanonicalState:
    question_id: str | None
    code: str
    language: str
    revision: int = 0

    @classmethod
    def from_session(cls, session: Session | dict[str, Any]) -> "CanonicalState":
        data = session.to_dict() if isinstance(session, Session) else dict(session or {})
        return cls(
            question_id=data.get("current_question_id") or None,
            code=str(data.get("current_code") or ""),
            language=str(data.get("current_language") or DEFAULT_LANGUAGE),
            revision=int(data.get("revision") or 0),
        )


class SessionPublisher(Protocol):
    async def publish_code(self, session_id: str, code: str) -> None:
        ...

    async def publish_question(self, session_id: str, question_id: str) -> None:
        ...

    async def publish_language(self, session_id: str, language: str) -> None:
        ...


class ServicePublisher:
    """Publishes straight into an in-process InterviewService."""

    def __init__(self, service, caller_id: str):
        self.service = service
        self.caller_id = caller_id

    async def publish_code(self, session_id: str, code: str) -> None:
        await self.service.update_code(self.caller_id, session_id, code)

    async def publish_question(self, session_id: str, question_id: str) -> None:
        await self.service.set_current_question(self.caller_id, session_id, question_id)

    async def publish_language(self, session_id: str, language: str) -> None:
        await self.service.switch_language(self.caller_id, session_id, language)


class ConvergenceController:
    def __init__(
        self,
        session_id: str,
        role: ParticipantRole,
        publisher: SessionPublisher,
        questions: Iterable[Question] = (),
        *,
        language: str = DEFAULT_LANGUAGE,
        debounce_sec: float = config.CODE_SYNC_DEBOUNCE_MS / 1000.0,
        protection_sec: float = config.CODE_SYNC_PROTECTION_MS / 1000.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.session_id = session_id
        self.role = role
        self.publisher = publisher
        self.debounce_sec = float(debounce_sec)
        self.protection_sec = float(protection_sec)
        self.clock = clock

        self.buffer = ""
        self.language = parse_language(language)
        self.selected_question_id: str | None = None
        self.publish_failures = 0

        self._questions: dict[str, Question] = {}
        self._last_local_edit: float | None = None
        self._debounce_task: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self.set_questions(questions)

    @property
    def is_owner(self) -> bool:
        return self.role is ParticipantRole.OWNER

    @property
    def selected_question(self) -> Question | None:
        if self.selected_question_id is None:
            return None
        return self._questions.get(self.selected_question_id)

    @property
    def has_pending_publish(self) -> bool:
        return self._debounce_task is not None and not self._debounce_task.done()

    def set_questions(self, questions: Iterable[Question]) -> None:
        self._questions = {question.id: question for question in questions}

    def is_protected(self) -> bool:
        if self._last_local_edit is None:
            return False
        return (self.clock() - self._last_local_edit) < self.protection_sec

    def _starter_code(self) -> str:
        question = self.selected_question
        return question.starter_for(self.language) if question else ""

    # ---------- local edits ----------

    def on_local_edit(self, code: str | None) -> None:
        self.buffer = code or ""
        self._last_local_edit = self.clock()
        self._schedule_publish()

    def _schedule_publish(self) -> None:
        self._cancel_pending()
        self._debounce_task = asyncio.create_task(self._debounced_publish())

    def _cancel_pending(self) -> None:
        if self._debounce_task is not None and not self._debounce_task.done():
            self._debounce_task.cancel()
        self._debounce_task = None

    async def _debounced_publish(self) -> None:
        await asyncio.sleep(self.debounce_sec)
        # Past the quiet period the publish is detached: a new keystroke
        # schedules a fresh timer instead of cancelling this write.
        task = asyncio.current_task()
        if self._debounce_task is task:
            self._debounce_task = None
        if task is not None:
            self._inflight.add(task)
        try:
            await self._publish_code(self.buffer)
        finally:
            self._inflight.discard(task)

    async def _publish_code(self, code: str) -> bool:
        try:
            await self.publisher.publish_code(self.session_id, code)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.publish_failures += 1
            increment_metric("code_publish_failures_total")
            logger.warning("code publish failed | session_id=%s err=%s", self.session_id, exc)
            return False
        return True

    async def flush(self) -> bool:
        """Publishes an unsent edit now instead of waiting for the timer."""
        if not self.has_pending_publish:
            return False
        self._cancel_pending()
        return await self._publish_code(self.buffer)

    # ---------- remote updates ----------

    def on_remote_state(self, state: CanonicalState) -> bool:
        structural = False

        if state.language in SUPPORTED_LANGUAGES and state.language != self.language:
            self.language = state.language
            structural = True

        if state.question_id and state.question_id != self.selected_question_id:
            self.selected_question_id = state.question_id
            structural = True

        if structural:
            self._cancel_pending()
            self.buffer = state.code or self._starter_code()
            return True

        if self.selected_question_id is None or self.is_protected():
            return False
        if not state.code or state.code == self.buffer:
            return False
        self.buffer = state.code
        return True

    # ---------- explicit actions ----------

    def _require_owner(self, action: str) -> None:
        if not self.is_owner:
            raise UnauthorizedError(
                f"Only the interviewer can {action}",
                {"session_id": self.session_id, "action": action},
            )

    async def _publish_explicit(self, publish, value: str, action: str) -> None:
        try:
            await publish(self.session_id, value)
        except asyncio.CancelledError:
            raise
        except CodePairError:
            raise
        except Exception as exc:
            logger.warning("%s publish failed | session_id=%s err=%s", action, self.session_id, exc)
            raise TransientPublishFailure(f"Failed to publish {action}", cause=exc) from exc

    async def select_question(self, question_id: str) -> None:
        self._require_owner("select the question")
        question = self._questions.get(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)

        self._cancel_pending()
        self.selected_question_id = question.id
        self.buffer = question.starter_for(self.language)
        self._last_local_edit = None
        await self._publish_explicit(self.publisher.publish_question, question.id, "question")

    async def switch_language(self, language: str) -> None:
        self._require_owner("switch the language")
        target = parse_language(language)

        self._cancel_pending()
        self.language = target
        if self.selected_question_id is not None:
            self.buffer = self._starter_code()
        self._last_local_edit = None
        await self._publish_explicit(self.publisher.publish_language, target, "language")

    async def bootstrap(self, state: CanonicalState) -> bool:
        """Adopts the canonical question, or picks the first one when none is set.

        Only an owner publishes the pick; a guest keeps it local until the
        canonical selection arrives.
        """
        self.on_remote_state(state)
        if self.selected_question_id is not None or not self._questions:
            return False

        first = next(iter(self._questions.values()))
        self.selected_question_id = first.id
        self.buffer = first.starter_for(self.language)
        if self.is_owner and not state.question_id:
            try:
                await self._publish_explicit(self.publisher.publish_question, first.id, "question")
            except CodePairError as exc:
                logger.warning("bootstrap selection not published | session_id=%s err=%s", self.session_id, exc)
        return True

    async def close(self) -> None:
        self._cancel_pending()
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
