from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from codepair.core.logger import log_event
from codepair.errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    StaleStatusError,
    ValidationError,
)
from codepair.models import (
    ALLOWED_TRANSITIONS,
    DEFAULT_LANGUAGE,
    Question,
    Review,
    Session,
    SessionStatus,
    now_ms,
    parse_language,
    parse_result,
    parse_status,
)
from codepair.services.question_service import QuestionService
from codepair.session.role_gate import ParticipantRoleGate
from codepair.session.state_store import SessionStateStore
from codepair.session.sweeper import MissedSessionSweeper
from codepair.system_metrics import increment_metric

logger = logging.getLogger("codepair.interviews")

_CREATABLE_STATUSES = (SessionStatus.SCHEDULED, SessionStatus.LIVE)
_STATUS_ATTEMPTS = 3


def _dedupe(ids: list[str]) -> list[str]:
    seen: list[str] = []
    for raw in ids or []:
        value = str(raw or "").strip()
        if value and value not in seen:
            seen.append(value)
    return seen


class InterviewService:
    """Role-gated operations on interview sessions.

    Every call takes the caller id resolved at the request boundary; None
    means the request carried no identity.
    """

    def __init__(
        self,
        store: SessionStateStore,
        questions: QuestionService,
        gate: ParticipantRoleGate | None = None,
        sweeper: MissedSessionSweeper | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.questions = questions
        self.gate = gate or ParticipantRoleGate()
        self.clock_ms = clock_ms
        self.sweeper = sweeper or MissedSessionSweeper(store, clock_ms=clock_ms)

    async def _load(self, session_id: str) -> Session:
        session = await self.store.get_by_id(session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        return session

    def _transition_fields(self, session: Session, requested: SessionStatus) -> dict[str, Any]:
        # Status and end_time always travel in the same patch.
        if requested not in ALLOWED_TRANSITIONS[session.status]:
            raise InvalidTransitionError(session.status.value, requested.value)
        fields: dict[str, Any] = {"status": requested.value}
        if requested.is_terminal:
            fields["end_time"] = self.clock_ms()
        return fields

    async def create_session(
        self,
        caller_id: str | None,
        *,
        title: str,
        start_time: int,
        candidate_id: str,
        interviewer_ids: list[str],
        description: str | None = None,
        status: str = SessionStatus.SCHEDULED.value,
        stream_call_id: str | None = None,
    ) -> Session:
        caller = self.gate.require_caller(caller_id)
        initial_status = parse_status(status)
        if initial_status not in _CREATABLE_STATUSES:
            raise ValidationError("New sessions must be scheduled or live", field="status")

        title_value = str(title or "").strip()
        if not title_value:
            raise ValidationError("Title is required", field="title")
        candidate = str(candidate_id or "").strip()
        if not candidate:
            raise ValidationError("Candidate is required", field="candidate_id")
        interviewers = _dedupe(interviewer_ids)
        if not interviewers:
            raise ValidationError("At least one interviewer is required", field="interviewer_ids")

        session = Session(
            id=str(uuid.uuid4()),
            title=title_value,
            description=description,
            start_time=int(start_time),
            stream_call_id=str(stream_call_id or "").strip() or str(uuid.uuid4()),
            candidate_id=candidate,
            interviewer_ids=interviewers,
            status=initial_status,
            current_language=DEFAULT_LANGUAGE,
        )
        created = await self.store.insert(session)
        log_event(
            "interviews",
            "session_created",
            created.id,
            created_by=caller,
            status=created.status.value,
            stream_call_id=created.stream_call_id,
        )
        return created

    async def get_by_stream_call_id(self, stream_call_id: str) -> Session:
        session = await self.store.get(stream_call_id)
        if session is None:
            raise NotFoundError("Session", stream_call_id)
        return session

    async def get_session(self, caller_id: str | None, session_id: str) -> Session:
        self.gate.require_caller(caller_id)
        return await self._load(session_id)

    async def list_sessions(self, caller_id: str | None) -> list[Session]:
        self.gate.require_caller(caller_id)
        return await self.store.list_sessions()

    async def list_my_sessions(self, caller_id: str | None) -> list[Session]:
        caller = self.gate.require_caller(caller_id)
        return [item for item in await self.store.list_sessions() if item.candidate_id == caller]

    async def list_by_status(self, caller_id: str | None, status: str) -> list[Session]:
        self.gate.require_caller(caller_id)
        return await self.store.list_by_status(parse_status(status))

    async def list_completed(self, caller_id: str | None) -> list[Session]:
        return await self.list_by_status(caller_id, SessionStatus.COMPLETED.value)

    async def list_for_interviewer(self, caller_id: str | None) -> list[Session]:
        caller = self.gate.require_caller(caller_id)
        return [item for item in await self.store.list_sessions() if item.is_interviewer(caller)]

    async def update_status(self, caller_id: str | None, session_id: str, status: str) -> Session:
        requested = parse_status(status)
        # A concurrent writer (sweeper or another participant) may move the
        # status between read and patch; re-read and re-validate in that case.
        for _ in range(_STATUS_ATTEMPTS):
            session = await self._load(session_id)
            if requested.is_terminal:
                caller = self.gate.require_interviewer(session, caller_id, f"mark as {requested.value}")
            else:
                self.gate.require_participant(session, caller_id, "start the interview")
                caller = caller_id
            if requested == session.status:
                return session

            try:
                updated = await self.store.patch(
                    session.id,
                    self._transition_fields(session, requested),
                    expected_status=session.status,
                )
            except StaleStatusError:
                continue
            log_event("interviews", "status_changed", session.id, by=caller, status=updated.status.value)
            return updated
        raise ConflictError("Session status keeps changing, retry later", {"id": session_id})

    async def set_current_question(self, caller_id: str | None, session_id: str, question_id: str) -> Session:
        session = await self._load(session_id)
        caller = self.gate.require_owner(session, caller_id, "select the question")
        question = self.questions.get_session_question(session, question_id)

        updated = await self.store.patch(session.id, {
            "current_question_id": question.id,
            "current_code": question.starter_for(session.current_language),
        })
        log_event("interviews", "question_selected", session.id, by=caller, question_id=question.id)
        return updated

    async def switch_language(self, caller_id: str | None, session_id: str, language: str) -> Session:
        session = await self._load(session_id)
        caller = self.gate.require_owner(session, caller_id, "switch the language")
        target = parse_language(language)

        fields: dict[str, Any] = {"current_language": target}
        if session.current_question_id:
            question = self.questions.get_question(session.current_question_id)
            fields["current_code"] = question.starter_for(target)
        updated = await self.store.patch(session.id, fields)
        log_event("interviews", "language_switched", session.id, by=caller, language=target)
        return updated

    async def update_code(self, caller_id: str | None, session_id: str, code: str) -> Session:
        session = await self._load(session_id)
        self.gate.check_code_update(session, caller_id)
        updated = await self.store.patch(session.id, {"current_code": str(code or "")})
        increment_metric("code_publishes_total")
        return updated

    async def update_candidate(self, caller_id: str | None, session_id: str, candidate_id: str) -> Session:
        candidate = str(candidate_id or "").strip()
        if not candidate:
            raise ValidationError("Candidate is required", field="candidate_id")
        session = await self._load(session_id)
        caller = self.gate.check_candidate_reassignment(session, caller_id, candidate)
        if candidate == session.candidate_id:
            return session

        updated = await self.store.patch(session.id, {"candidate_id": candidate})
        log_event("interviews", "candidate_reassigned", session.id, by=caller, candidate_id=candidate)
        return updated

    async def submit_review(
        self,
        caller_id: str | None,
        session_id: str,
        review: dict[str, Any],
        result: str | None = None,
    ) -> Session:
        session = await self._load(session_id)
        caller = self.gate.require_interviewer(session, caller_id, "review")
        parsed_review = Review.from_dict(review)
        parsed_result = parse_result(result) if result is not None else session.result
        if parsed_result is None:
            raise ValidationError("A pass/fail result is required with the first review", field="result")

        fields: dict[str, Any] = {
            "review": parsed_review.to_dict(),
            "result": parsed_result.value,
            "reviewed_by": caller,
            "reviewed_at": self.clock_ms(),
        }
        expected_status = None
        if session.status is not SessionStatus.COMPLETED:
            fields.update(self._transition_fields(session, SessionStatus.COMPLETED))
            expected_status = session.status

        updated = await self.store.patch(session.id, fields, expected_status=expected_status)
        increment_metric("reviews_submitted_total")
        log_event(
            "interviews",
            "review_submitted",
            session.id,
            by=caller,
            result=parsed_result.value,
            rating=parsed_review.rating,
        )
        return updated

    async def update_result(self, caller_id: str | None, session_id: str, result: str) -> Session:
        session = await self._load(session_id)
        caller = self.gate.require_interviewer(session, caller_id, "update")
        parsed = parse_result(result)

        updated = await self.store.patch(session.id, {
            "result": parsed.value,
            "reviewed_by": caller,
            "reviewed_at": self.clock_ms(),
        })
        log_event("interviews", "result_updated", session.id, by=caller, result=parsed.value)
        return updated

    async def sweep_missed(self, caller_id: str | None) -> int:
        self.gate.require_caller(caller_id)
        return await self.sweeper.sweep()

    async def session_questions(self, caller_id: str | None, session_id: str) -> list[Question]:
        self.gate.require_caller(caller_id)
        session = await self._load(session_id)
        return self.questions.questions_for_session(session)
