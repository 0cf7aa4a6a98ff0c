"""
FastAPI Backend for the Exam Prep Engine

Endpoints:
    POST /practice/sessions                          - Start a practice session
    GET  /practice/sessions/{id}/next                - Next adaptive question
    POST /practice/sessions/{id}/answers             - Submit a practice answer
    POST /practice/sessions/{id}/end                 - End a practice session
    POST /exams                                      - Start a full exam
    PUT  /exams/{id}/objective/{index}               - Save an objective answer
    PUT  /exams/{id}/objective/{index}/flag          - Flag an objective question for review
    PUT  /exams/{id}/free-response/{number}          - Save a free-response answer
    POST /exams/{id}/submit                          - Submit (free-response grading runs in background)
    GET  /exams/{id}                                 - Results snapshot (poll while grading)
    GET  /learners/{id}/exams                        - Exam history
    GET  /learners/{id}/units/{unit_id}/insights     - Progress insights for a unit
    GET  /learners/{id}/reviews                      - Units due for spaced review
"""

import sys
import logging
from pathlib import Path
from typing import Dict, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from core.errors import ContentValidationError, InsufficientPool, InvalidState, NotFound
from engine import ExamPrepEngine, build_engine
from main import configure_logging

settings = Settings.from_env()
configure_logging(settings.log_level)
logger = logging.getLogger(__name__)

# ==================== Initialize ====================

app = FastAPI(
    title="Exam Prep Engine API",
    description="Adaptive practice and full-exam scoring",
    version="1.0.0"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_engine: Optional[ExamPrepEngine] = None


def get_engine() -> ExamPrepEngine:
    """Shared engine, built on first use (tests override this dependency)."""
    global _engine
    if _engine is None:
        _engine = build_engine(settings)
    return _engine


# ==================== Request Models ====================

class StartPracticeRequest(BaseModel):
    learner_id: str
    unit_id: Optional[str] = None  # None = mixed practice
    topic_id: Optional[str] = None
    target_questions: Optional[int] = Field(default=None, gt=0)


class PracticeAnswerRequest(BaseModel):
    question_id: str
    answer: str
    time_spent: Optional[float] = Field(default=None, ge=0)


class StartExamRequest(BaseModel):
    learner_id: str


class ObjectiveAnswerRequest(BaseModel):
    answer: Optional[str] = None
    time_spent: Optional[float] = Field(default=None, ge=0)


class FlagRequest(BaseModel):
    flagged: bool = True


class FreeResponseAnswerRequest(BaseModel):
    raw_text: Optional[str] = None
    part_responses: Optional[Dict[str, str]] = None
    time_spent: Optional[float] = Field(default=None, ge=0)


class SubmitExamRequest(BaseModel):
    total_time_spent: Optional[float] = Field(default=None, ge=0)


# ==================== Error Handling ====================

@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InsufficientPool)
async def insufficient_pool_handler(request: Request, exc: InsufficientPool):
    return JSONResponse(
        status_code=409,
        content={"detail": str(exc), "shortfalls": [s.to_dict() for s in exc.shortfalls]},
    )


@app.exception_handler(InvalidState)
async def invalid_state_handler(request: Request, exc: InvalidState):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ContentValidationError)
async def content_error_handler(request: Request, exc: ContentValidationError):
    return JSONResponse(status_code=500, content={"detail": str(exc)})


async def run_grading(engine: ExamPrepEngine, attempt_id: str):
    """Background task: grade the free-response section of a submitted attempt."""
    try:
        await engine.grade_free_responses(attempt_id)
    except Exception:  # background task boundary
        logger.exception("background grading failed for attempt %s", attempt_id)


# ==================== Endpoints ====================

@app.get("/")
def root():
    """Health check endpoint."""
    return {"status": "ok", "message": "Exam Prep Engine API is running"}


@app.post("/practice/sessions")
def start_practice(request: StartPracticeRequest, engine: ExamPrepEngine = Depends(get_engine)):
    return engine.start_practice(
        request.learner_id,
        unit_id=request.unit_id,
        topic_id=request.topic_id,
        target_questions=request.target_questions,
    )


@app.get("/practice/sessions/{session_id}/next")
def next_question(session_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return engine.get_next_question(session_id)


@app.post("/practice/sessions/{session_id}/answers")
def submit_practice_answer(session_id: str, request: PracticeAnswerRequest,
                           engine: ExamPrepEngine = Depends(get_engine)):
    return engine.submit_practice_answer(
        session_id, request.question_id, request.answer, time_spent=request.time_spent
    )


@app.post("/practice/sessions/{session_id}/end")
def end_practice(session_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return engine.end_practice_session(session_id)


@app.post("/exams")
def start_exam(request: StartExamRequest, engine: ExamPrepEngine = Depends(get_engine)):
    """
    Draw a new exam. Returns 409 with the shortfall list when the question
    bank cannot fill every unit and category.
    """
    return engine.start_exam(request.learner_id)


@app.put("/exams/{attempt_id}/objective/{order_index}")
def submit_objective_answer(attempt_id: str, order_index: int, request: ObjectiveAnswerRequest,
                            engine: ExamPrepEngine = Depends(get_engine)):
    return engine.submit_objective_answer(
        attempt_id, order_index, request.answer, time_spent=request.time_spent
    )


@app.put("/exams/{attempt_id}/objective/{order_index}/flag")
def flag_objective(attempt_id: str, order_index: int, request: FlagRequest,
                   engine: ExamPrepEngine = Depends(get_engine)):
    return engine.flag_objective_for_review(attempt_id, order_index, flagged=request.flagged)


@app.put("/exams/{attempt_id}/free-response/{number}")
def submit_free_response_answer(attempt_id: str, number: int, request: FreeResponseAnswerRequest,
                                engine: ExamPrepEngine = Depends(get_engine)):
    return engine.submit_free_response_answer(
        attempt_id,
        number,
        raw_text=request.raw_text,
        part_responses=request.part_responses,
        time_spent=request.time_spent,
    )


@app.post("/exams/{attempt_id}/submit")
def submit_exam(attempt_id: str, background_tasks: BackgroundTasks,
                request: Optional[SubmitExamRequest] = None,
                engine: ExamPrepEngine = Depends(get_engine)):
    """
    Submit the exam.

    The objective score comes back immediately; free-response grading is
    scheduled in the background. Poll GET /exams/{attempt_id} for the result.
    """
    total_time_spent = request.total_time_spent if request else None
    result = engine.submit_exam(attempt_id, total_time_spent=total_time_spent)
    if result["status"] == "GRADING":
        background_tasks.add_task(run_grading, engine, attempt_id)
    return result


@app.get("/exams/{attempt_id}")
def get_exam_results(attempt_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return engine.get_exam_results(attempt_id)


@app.get("/learners/{learner_id}/exams")
def get_exam_history(learner_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return {"learner_id": learner_id, "attempts": engine.get_exam_history(learner_id)}


@app.get("/learners/{learner_id}/units/{unit_id}/insights")
def get_learning_insights(learner_id: str, unit_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return engine.get_learning_insights(learner_id, unit_id)


@app.get("/learners/{learner_id}/reviews")
def get_units_due_for_review(learner_id: str, engine: ExamPrepEngine = Depends(get_engine)):
    return {"learner_id": learner_id, "due": engine.get_units_due_for_review(learner_id)}


# ==================== Run Server ====================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=True)
