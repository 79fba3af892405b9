from pydantic import BaseModel, Field


class CreateSessionRequest(BaseModel):
    title: str
    start_time: int
    candidate_id: str
    interviewer_ids: list[str]
    description: str | None = None
    status: str = "scheduled"
    stream_call_id: str | None = None


class StatusUpdateRequest(BaseModel):
    status: str


class QuestionSelectRequest(BaseModel):
    question_id: str


class LanguageSwitchRequest(BaseModel):
    language: str


class CodeUpdateRequest(BaseModel):
    code: str = ""


class CandidateUpdateRequest(BaseModel):
    candidate_id: str


class ReviewPayload(BaseModel):
    rating: int = Field(ge=1, le=5)
    feedback: str
    overall_assessment: str
    strengths: list[str] = Field(default_factory=list)
    areas_for_improvement: list[str] = Field(default_factory=list)
    recommended_for_next_round: bool = False


class ReviewRequest(BaseModel):
    review: ReviewPayload
    result: str | None = None


class ResultUpdateRequest(BaseModel):
    result: str


class StarterCode(BaseModel):
    javascript: str
    python: str
    java: str
    cpp: str


class QuestionExamplePayload(BaseModel):
    input: str
    output: str
    explanation: str | None = None


class QuestionRequest(BaseModel):
    title: str
    description: str
    examples: list[QuestionExamplePayload] = Field(default_factory=list)
    starter_code: StarterCode
    constraints: list[str] | None = None


class SweepResponse(BaseModel):
    marked_missed: int


class ClearQuestionsResponse(BaseModel):
    removed: int
