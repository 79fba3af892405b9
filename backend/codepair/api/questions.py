from fastapi import APIRouter, Request, Response

from codepair.api.deps import get_container
from codepair.auth import get_caller_id
from codepair.schemas import ClearQuestionsResponse, QuestionRequest

router = APIRouter(prefix="/api/questions", tags=["questions"])


@router.get("")
async def list_my_questions(request: Request):
    caller_id = await get_caller_id(request)
    return [item.to_dict() for item in get_container(request).questions.list_questions(caller_id)]


@router.get("/user/{user_id}")
async def list_questions_by_user(user_id: str, request: Request):
    caller_id = await get_caller_id(request)
    return [item.to_dict() for item in get_container(request).questions.list_questions_by_user(caller_id, user_id)]


@router.get("/{question_id}")
async def get_question(question_id: str, request: Request):
    await get_caller_id(request)
    return get_container(request).questions.get_question(question_id).to_dict()


@router.post("", status_code=201)
async def create_question(req: QuestionRequest, request: Request):
    caller_id = await get_caller_id(request)
    return get_container(request).questions.create_question(caller_id, req.model_dump()).to_dict()


@router.put("/{question_id}")
async def update_question(question_id: str, req: QuestionRequest, request: Request):
    caller_id = await get_caller_id(request)
    return get_container(request).questions.update_question(caller_id, question_id, req.model_dump()).to_dict()


@router.delete("/{question_id}", status_code=204)
async def delete_question(question_id: str, request: Request):
    caller_id = await get_caller_id(request)
    get_container(request).questions.delete_question(caller_id, question_id)
    return Response(status_code=204)


@router.delete("", response_model=ClearQuestionsResponse)
async def clear_questions(request: Request):
    caller_id = await get_caller_id(request)
    return {"removed": get_container(request).questions.clear_questions(caller_id)}
