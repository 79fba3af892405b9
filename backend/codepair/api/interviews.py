from fastapi import APIRouter, Request

from codepair.api.deps import get_container
from codepair.auth import get_caller_id
from codepair.schemas import (
    CandidateUpdateRequest,
    CodeUpdateRequest,
    CreateSessionRequest,
    LanguageSwitchRequest,
    QuestionSelectRequest,
    ResultUpdateRequest,
    ReviewRequest,
    StatusUpdateRequest,
    SweepResponse,
)

router = APIRouter(prefix="/api/interviews", tags=["interviews"])


def _sessions(items) -> list[dict]:
    return [item.to_dict() for item in items]


@router.post("", status_code=201)
async def create_interview(req: CreateSessionRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.create_session(caller_id, **req.model_dump())
    return session.to_dict()


@router.get("")
async def list_interviews(request: Request):
    caller_id = await get_caller_id(request)
    return _sessions(await get_container(request).interviews.list_sessions(caller_id))


@router.get("/mine")
async def list_my_interviews(request: Request):
    caller_id = await get_caller_id(request)
    return _sessions(await get_container(request).interviews.list_my_sessions(caller_id))


@router.get("/interviewing")
async def list_interviewing(request: Request):
    caller_id = await get_caller_id(request)
    return _sessions(await get_container(request).interviews.list_for_interviewer(caller_id))


@router.get("/completed")
async def list_completed_interviews(request: Request):
    caller_id = await get_caller_id(request)
    return _sessions(await get_container(request).interviews.list_completed(caller_id))


@router.get("/status/{status}")
async def list_interviews_by_status(status: str, request: Request):
    caller_id = await get_caller_id(request)
    return _sessions(await get_container(request).interviews.list_by_status(caller_id, status))


@router.post("/sweep-missed", response_model=SweepResponse)
async def sweep_missed_interviews(request: Request):
    caller_id = await get_caller_id(request)
    marked = await get_container(request).interviews.sweep_missed(caller_id)
    return {"marked_missed": marked}


@router.get("/by-call/{stream_call_id}")
async def get_interview_by_call(stream_call_id: str, request: Request):
    await get_caller_id(request)
    session = await get_container(request).interviews.get_by_stream_call_id(stream_call_id)
    return session.to_dict()


@router.get("/{session_id}")
async def get_interview(session_id: str, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.get_session(caller_id, session_id)
    return session.to_dict()


@router.patch("/{session_id}/status")
async def update_interview_status(session_id: str, req: StatusUpdateRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.update_status(caller_id, session_id, req.status)
    return session.to_dict()


@router.put("/{session_id}/question")
async def set_current_question(session_id: str, req: QuestionSelectRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.set_current_question(caller_id, session_id, req.question_id)
    return session.to_dict()


@router.put("/{session_id}/language")
async def switch_language(session_id: str, req: LanguageSwitchRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.switch_language(caller_id, session_id, req.language)
    return session.to_dict()


@router.put("/{session_id}/code")
async def update_code(session_id: str, req: CodeUpdateRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.update_code(caller_id, session_id, req.code)
    return session.to_dict()


@router.put("/{session_id}/candidate")
async def update_candidate(session_id: str, req: CandidateUpdateRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.update_candidate(caller_id, session_id, req.candidate_id)
    return session.to_dict()


@router.post("/{session_id}/review")
async def submit_review(session_id: str, req: ReviewRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.submit_review(
        caller_id,
        session_id,
        req.review.model_dump(),
        result=req.result,
    )
    return session.to_dict()


@router.put("/{session_id}/result")
async def update_result(session_id: str, req: ResultUpdateRequest, request: Request):
    caller_id = await get_caller_id(request)
    session = await get_container(request).interviews.update_result(caller_id, session_id, req.result)
    return session.to_dict()


@router.get("/{session_id}/questions")
async def list_session_questions(session_id: str, request: Request):
    caller_id = await get_caller_id(request)
    questions = await get_container(request).interviews.session_questions(caller_id, session_id)
    return [item.to_dict() for item in questions]
