from __future__ import annotations

import logging
import uuid
from typing import Any, Callable

from codepair.errors import NotFoundError, UnauthenticatedError, UnauthorizedError, ValidationError
from codepair.models import Question, QuestionExample, Session, validate_starter_code
from codepair.questions.defaults import DEFAULT_QUESTION_AUTHOR, DEFAULT_QUESTIONS
from codepair.questions.store import QuestionStore

logger = logging.getLogger("codepair.questions")


def _require_caller(caller_id: str | None) -> str:
    if not caller_id:
        raise UnauthenticatedError()
    return caller_id


def _parse_examples(raw: Any) -> list[QuestionExample]:
    examples = []
    for index, item in enumerate(raw or []):
        if not isinstance(item, dict):
            raise ValidationError(f"Example {index + 1} must be an object", field="examples")
        explanation = item.get("explanation")
        examples.append(
            QuestionExample(
                input=str(item.get("input") or ""),
                output=str(item.get("output") or ""),
                explanation=str(explanation) if explanation else None,
            )
        )
    return examples


def _editable_fields(payload: dict[str, Any]) -> dict[str, Any]:
    title = str(payload.get("title") or "").strip()
    if not title:
        raise ValidationError("Title is required", field="title")
    description = str(payload.get("description") or "").strip()
    if not description:
        raise ValidationError("Description is required", field="description")
    constraints = payload.get("constraints")
    return {
        "title": title,
        "description": description,
        "examples": _parse_examples(payload.get("examples")),
        "starter_code": validate_starter_code(payload.get("starter_code")),
        "constraints": [str(item) for item in constraints if str(item or "").strip()] if constraints else None,
    }


class QuestionService:
    def __init__(self, store: QuestionStore):
        self.store = store
        self._listeners: list[Callable[[], None]] = []

    def add_listener(self, listener: Callable[[], None]) -> None:
        """Register a callback run after every change to the bank."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable[[], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def list_questions(self, caller_id: str | None) -> list[Question]:
        caller = _require_caller(caller_id)
        return self.store.list_by_creator(caller)

    def list_questions_by_user(self, caller_id: str | None, user_id: str) -> list[Question]:
        _require_caller(caller_id)
        return self.store.list_by_creator(user_id)

    def get_question(self, question_id: str) -> Question:
        question = self.store.get(question_id)
        if question is None:
            raise NotFoundError("Question", question_id)
        return question

    def create_question(self, caller_id: str | None, payload: dict[str, Any]) -> Question:
        caller = _require_caller(caller_id)
        question = Question(
            id=str(uuid.uuid4()),
            created_by=caller,
            is_default=False,
            **_editable_fields(payload),
        )
        logger.info("question created | id=%s by=%s", question.id, caller)
        created = self.store.insert(question)
        self._notify()
        return created

    def _owned(self, caller: str, question_id: str, verb: str) -> Question:
        question = self.get_question(question_id)
        if question.is_default:
            raise UnauthorizedError(f"Default questions cannot be {verb}d", {"question_id": question_id})
        if question.created_by != caller:
            raise UnauthorizedError(f"Not authorized to {verb} this question", {"question_id": question_id})
        return question

    def update_question(self, caller_id: str | None, question_id: str, payload: dict[str, Any]) -> Question:
        caller = _require_caller(caller_id)
        question = self._owned(caller, question_id, "update")
        for name, value in _editable_fields(payload).items():
            setattr(question, name, value)
        updated = self.store.update(question)
        self._notify()
        return updated

    def delete_question(self, caller_id: str | None, question_id: str) -> None:
        caller = _require_caller(caller_id)
        self._owned(caller, question_id, "delete")
        self.store.delete(question_id)
        self._notify()
        logger.info("question deleted | id=%s by=%s", question_id, caller)

    def clear_questions(self, caller_id: str | None) -> int:
        caller = _require_caller(caller_id)
        owned = [item.id for item in self.store.list_by_creator(caller) if not item.is_default]
        removed = self.store.delete_many(owned)
        if removed:
            self._notify()
        logger.info("questions cleared | by=%s count=%s", caller, removed)
        return removed

    def seed_default_questions(self) -> int:
        seeded = 0
        for item in DEFAULT_QUESTIONS:
            if self.store.get(item["id"]) is not None:
                continue
            question = Question(
                id=item["id"],
                created_by=DEFAULT_QUESTION_AUTHOR,
                is_default=True,
                **_editable_fields(item),
            )
            self.store.insert(question)
            seeded += 1
        if seeded:
            logger.info("default questions seeded | count=%s", seeded)
            self._notify()
        return seeded

    def questions_for_session(self, session: Session) -> list[Question]:
        """Bank shown inside a live session, in stable creation order."""
        owner_id = session.interviewer_ids[0] if session.interviewer_ids else ""
        owned = [item for item in self.store.list_by_creator(owner_id) if not item.is_default]
        return owned + self.store.list_defaults()

    def get_session_question(self, session: Session, question_id: str) -> Question:
        """A question from the session's bank; anything outside it is not found."""
        for question in self.questions_for_session(session):
            if question.id == question_id:
                return question
        raise NotFoundError("Question", question_id)
