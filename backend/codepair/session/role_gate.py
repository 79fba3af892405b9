"""Who may change what inside a session.

Owners are the interviewers listed on the session, the guest is its
candidate. A caller who is both (instant meetings start that way) is an
owner.
"""
from __future__ import annotations

from enum import Enum

from codepair.errors import UnauthenticatedError, UnauthorizedError
from codepair.models import Session


class ParticipantRole(str, Enum):
    OWNER = "owner"
    GUEST = "guest"


class ParticipantRoleGate:
    def __init__(self, require_participant_for_code: bool = False):
        self.require_participant_for_code = require_participant_for_code

    @staticmethod
    def require_caller(caller_id: str | None) -> str:
        if not caller_id:
            raise UnauthenticatedError()
        return caller_id

    @staticmethod
    def classify(session: Session, caller_id: str | None) -> ParticipantRole | None:
        if not caller_id:
            return None
        if session.is_interviewer(caller_id):
            return ParticipantRole.OWNER
        if caller_id == session.candidate_id:
            return ParticipantRole.GUEST
        return None

    def require_owner(self, session: Session, caller_id: str | None, action: str) -> str:
        caller = self.require_caller(caller_id)
        if self.classify(session, caller) is not ParticipantRole.OWNER:
            raise UnauthorizedError(
                f"Only the interviewer can {action}",
                {"session_id": session.id, "action": action},
            )
        return caller

    def require_interviewer(self, session: Session, caller_id: str | None, action: str) -> str:
        caller = self.require_caller(caller_id)
        if not session.is_interviewer(caller):
            raise UnauthorizedError(
                f"Not authorized to {action} this interview",
                {"session_id": session.id, "action": action},
            )
        return caller

    def require_participant(self, session: Session, caller_id: str | None, action: str) -> ParticipantRole:
        caller = self.require_caller(caller_id)
        role = self.classify(session, caller)
        if role is None:
            raise UnauthorizedError(
                f"Only session participants can {action}",
                {"session_id": session.id, "action": action},
            )
        return role

    def check_code_update(self, session: Session, caller_id: str | None) -> str:
        # Any authenticated caller may edit unless the strict flag is on.
        caller = self.require_caller(caller_id)
        if self.require_participant_for_code:
            self.require_participant(session, caller, "edit the shared code")
        return caller

    def check_candidate_reassignment(self, session: Session, caller_id: str | None, new_candidate_id: str) -> str:
        caller = self.require_caller(caller_id)
        if caller == new_candidate_id or session.is_interviewer(caller):
            return caller
        raise UnauthorizedError(
            "Only the new candidate or an interviewer can reassign the candidate",
            {"session_id": session.id},
        )
