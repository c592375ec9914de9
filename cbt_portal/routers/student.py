"""Student routes: available exams, taking an exam, submitting it."""

from datetime import datetime

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session, select

from cbt_portal.database import get_session
from cbt_portal.deps import require_role
from cbt_portal.models import Exam, ExamStatus, Question, QuestionType, Role, Submission, TRUE_FALSE_OPTIONS, User
from cbt_portal.schemas import SubmissionOut, SubmitIn
from cbt_portal.services import exam_service, submission_service
from cbt_portal.services.availability import ensure_exam_accessible, is_exam_accessible

router = APIRouter()

student_only = require_role([Role.STUDENT])


def _question_for_student(question: Question) -> dict:
    """Question without its correct answer."""
    options = question.options
    if question.type == QuestionType.TRUE_FALSE:
        options = list(TRUE_FALSE_OPTIONS)
    return {
        "id": question.id,
        "type": question.type,
        "question": question.question,
        "options": options,
        "marks": question.marks,
        "order": question.order,
    }


@router.get("/available")
def available_exams(
    session: Session = Depends(get_session),
    current_user: User = Depends(student_only),
):
    """Published exams the student may sit now, with their own submission status."""
    now = datetime.utcnow()
    exams = session.exec(select(Exam).where(Exam.status == ExamStatus.PUBLISHED)).all()
    visible = [e for e in exams if is_exam_accessible(e, current_user.class_level, now).allowed]

    counts = exam_service.question_counts(session, [e.id for e in visible])
    submissions = {
        s.exam_id: s
        for s in session.exec(select(Submission).where(Submission.student_id == current_user.id)).all()
    }
    return [
        {
            "id": e.id,
            "title": e.title,
            "description": e.description,
            "duration": e.duration,
            "total_marks": e.total_marks,
            "question_count": counts.get(e.id, 0),
            "start_time": e.start_time,
            "end_time": e.end_time,
            "submission_status": submissions[e.id].status if e.id in submissions else None,
        }
        for e in visible
    ]


@router.get("/{exam_id}")
def get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(student_only),
):
    exam = exam_service.get_exam(session, exam_id)
    ensure_exam_accessible(exam, current_user.class_level)
    return {
        "id": exam.id,
        "title": exam.title,
        "description": exam.description,
        "duration": exam.duration,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
        "questions": [_question_for_student(q) for q in exam_service.list_questions(session, exam.id)],
    }


@router.post("/{exam_id}/start", response_model=SubmissionOut)
def start_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(student_only),
):
    return submission_service.start_or_resume_submission(session, exam_id, current_user)


@router.post("/{exam_id}/submit", response_model=SubmissionOut)
def submit_exam(
    exam_id: int,
    payload: SubmitIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(student_only),
):
    return submission_service.record_answers_and_finalize(
        session,
        payload.submission_id,
        current_user.id,
        payload.answers,
        exam_id=exam_id,
    )
