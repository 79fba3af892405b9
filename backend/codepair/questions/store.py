from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from threading import Lock

from codepair.errors import NotFoundError
from codepair.models import Question

logger = logging.getLogger("codepair.question_store")


class QuestionStore:
    """Question bank kept in insertion order.

    With a path, every write is persisted as one JSON document through a
    temp file + replace; without one the bank lives in memory only.
    """

    def __init__(self, path: str | Path | None = None):
        self._lock = Lock()
        self._path = Path(path) if path else None
        self._questions: dict[str, Question] = {}
        self._load()

    def _load(self) -> None:
        if self._path is None or not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Question store unreadable; starting empty | path=%s err=%s", self._path, exc)
            return
        items = payload.get("questions") if isinstance(payload, dict) else None
        for item in items or []:
            if not isinstance(item, dict):
                continue
            question = Question.from_dict(item)
            self._questions[question.id] = question

    def _persist(self) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self._path.with_suffix(".tmp")
        payload = {"questions": [question.to_dict() for question in self._questions.values()]}
        temp_path.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
        temp_path.replace(self._path)

    def insert(self, question: Question) -> Question:
        with self._lock:
            self._questions[question.id] = copy.deepcopy(question)
            self._persist()
        return copy.deepcopy(question)

    def get(self, question_id: str) -> Question | None:
        with self._lock:
            question = self._questions.get(str(question_id or ""))
            return copy.deepcopy(question) if question else None

    def update(self, question: Question) -> Question:
        with self._lock:
            if question.id not in self._questions:
                raise NotFoundError("Question", question.id)
            self._questions[question.id] = copy.deepcopy(question)
            self._persist()
        return copy.deepcopy(question)

    def delete(self, question_id: str) -> bool:
        with self._lock:
            removed = self._questions.pop(str(question_id or ""), None)
            if removed is not None:
                self._persist()
            return removed is not None

    def delete_many(self, question_ids: list[str]) -> int:
        with self._lock:
            removed = 0
            for question_id in question_ids:
                if self._questions.pop(question_id, None) is not None:
                    removed += 1
            if removed:
                self._persist()
            return removed

    def list_by_creator(self, user_id: str) -> list[Question]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._questions.values() if item.created_by == user_id]

    def list_defaults(self) -> list[Question]:
        with self._lock:
            return [copy.deepcopy(item) for item in self._questions.values() if item.is_default]
