"""
Quiz Service Router
Handles quiz requests and submissions, attempt history and skill statistics
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session

from db import get_db
from schemas.quiz import (
    AllStudentStatsResponse,
    AttemptDetailResponse,
    CatalogResponse,
    ClassSkillSummary,
    DifficultyLabel,
    GenerateQuizRequest,
    GenerateQuizResponse,
    QuizHistoryResponse,
    StudentStatsResponse,
    SubmitQuizRequest,
    SubmitQuizResponse,
    TopicPerformanceResponse,
    TopicSetStats,
)
from utils.question_generator import OpenAIQuestionGenerator
from utils.quiz_service import QuizService, build_quiz_service, parse_coordinate
from utils.quiz_stores import DEFAULT_HISTORY_LIMIT

router = APIRouter()


def get_question_generator():
    """Question generation collaborator; tests override this dependency."""
    return OpenAIQuestionGenerator().generate_questions


def get_quiz_service(
    db: Session = Depends(get_db),
    generate_questions=Depends(get_question_generator),
) -> QuizService:
    return build_quiz_service(db, generate_questions)


@router.post(
    "/generate",
    response_model=GenerateQuizResponse,
    summary="Request a quiz",
    description="Serve a question set the student has not attempted for the curriculum coordinate, "
    "generating a new one when none is left",
    responses={
        400: {"description": "Invalid coordinate or question count"},
        404: {"description": "No chapter text for the coordinate"},
        502: {"description": "Question generation failed or timed out"},
    },
)
def generate_quiz(request: GenerateQuizRequest, service: QuizService = Depends(get_quiz_service)):
    return service.generate_quiz(request)


@router.post(
    "/submit",
    response_model=SubmitQuizResponse,
    summary="Submit quiz answers",
    description="Grade the answers, store the attempt and update the student's skill statistics",
    responses={
        400: {"description": "No answers submitted"},
        404: {"description": "Question set not found"},
        409: {"description": "Statistics were updated concurrently; nothing was recorded, the submission can be retried"},
    },
)
def submit_quiz(request: SubmitQuizRequest, service: QuizService = Depends(get_quiz_service)):
    return service.submit_quiz(request)


@router.get("/history/{student_id}", response_model=QuizHistoryResponse, summary="Get attempt history")
def get_quiz_history(
    student_id: str = Path(..., description="Student ID"),
    subject: Optional[str] = Query(None),
    chapter: Optional[str] = Query(None),
    topic: Optional[str] = Query(None),
    limit: int = Query(DEFAULT_HISTORY_LIMIT, ge=1, le=100),
    service: QuizService = Depends(get_quiz_service),
):
    """Student's attempts, newest first"""
    return service.history(student_id, subject=subject, chapter=chapter, topic=topic, limit=limit)


@router.get("/attempt/{attempt_id}", response_model=AttemptDetailResponse, summary="Get attempt details")
def get_attempt_details(
    attempt_id: str = Path(..., description="Attempt ID"),
    service: QuizService = Depends(get_quiz_service),
):
    """One attempt together with the question set it answered"""
    return service.attempt_details(attempt_id)


@router.get("/stats/{student_id}", response_model=AllStudentStatsResponse, summary="Get all subject statistics")
def get_all_student_stats(
    student_id: str = Path(..., description="Student ID"),
    service: QuizService = Depends(get_quiz_service),
):
    return service.all_student_stats(student_id)


@router.get("/stats/{student_id}/{subject}", response_model=StudentStatsResponse, summary="Get subject statistics")
def get_student_stats(
    student_id: str = Path(..., description="Student ID"),
    subject: str = Path(..., description="Subject"),
    topic: Optional[str] = Query(None, description="Topic for topic-level statistics"),
    service: QuizService = Depends(get_quiz_service),
):
    """Running skill statistics with focus areas for one subject, or one topic of it"""
    return service.student_stats(student_id, subject, topic=topic)


@router.get("/topics/{student_id}/{subject}", response_model=TopicPerformanceResponse, summary="Get topic performance")
def get_topic_performance(
    student_id: str = Path(..., description="Student ID"),
    subject: str = Path(..., description="Subject"),
    service: QuizService = Depends(get_quiz_service),
):
    return service.topic_performance(student_id, subject)


@router.get("/sets/{student_id}/overview", response_model=TopicSetStats, summary="Get question set overview")
def get_set_overview(
    student_id: str = Path(..., description="Student ID"),
    class_number: int = Query(..., ge=1),
    subject: str = Query(..., min_length=1),
    chapter: str = Query(..., min_length=1),
    topic: str = Query(..., min_length=1),
    difficulty_label: Optional[DifficultyLabel] = Query(None),
    service: QuizService = Depends(get_quiz_service),
):
    """How many sets exist for a coordinate and how many the student has attempted"""
    coordinate = parse_coordinate(
        class_number=class_number,
        subject=subject,
        chapter=chapter,
        topic=topic,
        difficulty_label=difficulty_label,
    )
    return service.set_overview(student_id, coordinate)


@router.get("/catalog/{class_number}/{subject}", response_model=CatalogResponse, summary="Get topics with question sets")
def get_catalog(
    class_number: int = Path(..., ge=1),
    subject: str = Path(...),
    service: QuizService = Depends(get_quiz_service),
):
    return service.catalog(class_number, subject)


@router.get(
    "/class-stats/{school_id}/{class_number}/{subject}",
    response_model=ClassSkillSummary,
    summary="Get class statistics",
)
def get_class_stats(
    school_id: str = Path(..., description="School ID"),
    class_number: int = Path(..., ge=1),
    subject: str = Path(...),
    service: QuizService = Depends(get_quiz_service),
):
    """Unweighted class averages of accuracy and skill scores"""
    return service.class_stats(school_id, class_number, subject)
