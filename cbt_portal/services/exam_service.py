"""Exam authoring: exams, their ordered questions, and class assignment."""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from sqlmodel import Session, func, select

from cbt_portal.errors import ExamNotFound, NotOwner, QuestionNotFound, ValidationError
from cbt_portal.models import Answer, Exam, Question, Role, Submission, User
from cbt_portal.schemas import AssignIn, ExamCreateIn, MarksSummary, QuestionIn
from cbt_portal.services.question_parser import parse_question_document
from cbt_portal.utils import sanitize_plain_text, sanitize_question_text

logger = logging.getLogger(__name__)


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored times are naive UTC, matching datetime.utcnow()."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _check_window(start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
    if start_time and end_time and end_time <= start_time:
        raise ValidationError("End time must be after the start time.")


def _build_question(exam_id: int, payload: QuestionIn, order: int) -> Question:
    text = sanitize_question_text(payload.question)
    if not text:
        raise ValidationError("Question text cannot be empty after sanitization")
    options = None
    correct_answer = payload.correct_answer
    if payload.options is not None:
        options = [sanitize_plain_text(o) for o in payload.options]
        correct_answer = sanitize_plain_text(payload.correct_answer)
    return Question(
        exam_id=exam_id,
        type=payload.type,
        question=text,
        options=options,
        correct_answer=correct_answer,
        marks=payload.marks,
        order=order,
    )


def get_exam(session: Session, exam_id: int) -> Exam:
    exam = session.get(Exam, exam_id)
    if not exam:
        raise ExamNotFound(exam_id)
    return exam


def list_questions(session: Session, exam_id: int) -> List[Question]:
    return list(session.exec(select(Question).where(Question.exam_id == exam_id).order_by(Question.order)).all())


def list_exams(session: Session, created_by_id: Optional[int] = None) -> List[dict]:
    """Exams newest first, each with its question and submission counts."""
    stmt = select(Exam).order_by(Exam.created_at.desc())
    if created_by_id is not None:
        stmt = stmt.where(Exam.created_by_id == created_by_id)
    exams = session.exec(stmt).all()

    question_counts = dict(
        session.exec(select(Question.exam_id, func.count(Question.id)).group_by(Question.exam_id)).all()
    )
    submission_counts = dict(
        session.exec(select(Submission.exam_id, func.count(Submission.id)).group_by(Submission.exam_id)).all()
    )
    return [
        {
            "exam": exam,
            "question_count": question_counts.get(exam.id, 0),
            "submission_count": submission_counts.get(exam.id, 0),
        }
        for exam in exams
    ]


def ensure_exam_owner(exam: Exam, user: User) -> None:
    """Staff may only change exams they created; admins may change any."""
    if user.role == Role.STAFF and exam.created_by_id != user.id:
        raise NotOwner("You can only manage exams you created")


def recompute_exam_marks(exam: Exam, remaining_questions: Sequence[Question]) -> MarksSummary:
    """Total and passing marks after the question set shrank or grew.

    Passing marks keep their share of the old total, rounded up and capped at
    the new total. With no previous total the old passing marks are kept.
    """
    new_total = sum(q.marks for q in remaining_questions)
    old_total = exam.total_marks
    if old_total > 0:
        new_passing = math.ceil((exam.passing_marks / old_total) * new_total)
    else:
        new_passing = exam.passing_marks
    return MarksSummary(total_marks=new_total, passing_marks=min(new_passing, new_total))


def create_exam(session: Session, payload: ExamCreateIn, created_by_id: int) -> Exam:
    """Create an exam with its questions in one commit.

    Total marks always come from the questions, never from the caller.
    """
    title = sanitize_plain_text(payload.title)
    if not title:
        raise ValidationError("Exam title is required.")
    start_time = _naive_utc(payload.start_time)
    end_time = _naive_utc(payload.end_time)
    _check_window(start_time, end_time)

    total_marks = sum(q.marks for q in payload.questions)
    if payload.passing_marks > total_marks:
        raise ValidationError(
            f"Passing marks ({payload.passing_marks}) cannot exceed total marks ({total_marks})"
        )

    exam = Exam(
        title=title,
        description=sanitize_plain_text(payload.description or ""),
        duration=payload.duration,
        total_marks=total_marks,
        passing_marks=payload.passing_marks,
        status=payload.status,
        start_time=start_time,
        end_time=end_time,
        assigned_to=list(payload.assigned_to),
        created_by_id=created_by_id,
    )
    try:
        session.add(exam)
        session.flush()
        for index, q in enumerate(payload.questions, start=1):
            session.add(_build_question(exam.id, q, index))
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(exam)
    logger.info("Exam %s created with %d question(s)", exam.id, len(payload.questions))
    return exam


def create_exam_from_document(
    session: Session,
    text: str,
    title: str,
    duration: int,
    total_questions: int,
    marks_per_question: int,
    created_by_id: int,
    description: str = "",
    passing_percentage: int = 50,
) -> Exam:
    """Parse an uploaded document and store it as a DRAFT exam.

    Nothing is stored when the document yields no usable question or more
    questions than the uploader declared.
    """
    if not title or total_questions < 1 or marks_per_question < 1 or duration < 1:
        raise ValidationError(
            "Exam title, total questions, marks per question, and duration are required"
        )
    if not 0 <= passing_percentage <= 100:
        raise ValidationError("Passing percentage must be between 0 and 100")

    records = parse_question_document(text, marks_per_question)
    if not records:
        raise ValidationError("No valid questions found in document")
    if len(records) > total_questions:
        raise ValidationError(
            f"Document contains {len(records)} questions but you specified {total_questions}"
        )

    # Totals come from the stored questions, never the declared count
    total_marks = sum(r.marks for r in records)
    passing_marks = math.ceil((total_marks * passing_percentage) / 100)

    exam = Exam(
        title=sanitize_plain_text(title),
        description=sanitize_plain_text(description or ""),
        duration=duration,
        total_marks=total_marks,
        passing_marks=passing_marks,
        created_by_id=created_by_id,
    )
    try:
        session.add(exam)
        session.flush()
        for index, record in enumerate(records, start=1):
            session.add(
                Question(
                    exam_id=exam.id,
                    type=record.type,
                    question=sanitize_question_text(record.question),
                    options=[sanitize_plain_text(o) for o in record.options],
                    correct_answer=sanitize_plain_text(record.correct_answer),
                    marks=record.marks,
                    order=index,
                )
            )
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(exam)
    logger.info("Exam %s created from document with %d question(s)", exam.id, len(records))
    return exam


def add_question(session: Session, exam: Exam, payload: QuestionIn) -> Question:
    """Append a question and bring the exam totals back in line."""
    questions = list_questions(session, exam.id)
    question = _build_question(exam.id, payload, len(questions) + 1)
    exam.total_marks = sum(q.marks for q in questions) + question.marks
    exam.updated_at = datetime.utcnow()
    session.add(question)
    session.add(exam)
    session.commit()
    session.refresh(question)
    return question


def delete_question(session: Session, question_id: int, user: User) -> MarksSummary:
    """Delete a question with its answers, recompute marks and renumber.

    All of it lands in a single commit so the exam totals never disagree with
    the question set.
    """
    question = session.get(Question, question_id)
    if not question:
        raise QuestionNotFound(question_id)
    exam = get_exam(session, question.exam_id)
    ensure_exam_owner(exam, user)

    try:
        for answer in session.exec(select(Answer).where(Answer.question_id == question_id)).all():
            session.delete(answer)
        session.delete(question)
        session.flush()

        remaining = list_questions(session, exam.id)
        summary = recompute_exam_marks(exam, remaining)
        exam.total_marks = summary.total_marks
        exam.passing_marks = summary.passing_marks
        exam.updated_at = datetime.utcnow()
        session.add(exam)

        for index, q in enumerate(remaining, start=1):
            if q.order != index:
                q.order = index
                session.add(q)
        session.commit()
    except Exception:
        session.rollback()
        raise

    logger.info(
        "Question %s deleted from exam %s; totals now %s/%s",
        question_id,
        exam.id,
        summary.passing_marks,
        summary.total_marks,
    )
    return summary


def delete_all_questions(session: Session, exam: Exam, user: User) -> int:
    """Remove every question of the exam; totals drop to zero."""
    ensure_exam_owner(exam, user)
    questions = list_questions(session, exam.id)
    question_ids = [q.id for q in questions]
    try:
        if question_ids:
            for answer in session.exec(select(Answer).where(Answer.question_id.in_(question_ids))).all():
                session.delete(answer)
        for q in questions:
            session.delete(q)
        exam.total_marks = 0
        exam.passing_marks = 0
        exam.updated_at = datetime.utcnow()
        session.add(exam)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return len(questions)


def assign_exam(session: Session, exam: Exam, payload: AssignIn) -> Exam:
    """Update class assignment, status and time window; omitted fields are kept."""
    changes = payload.model_dump(exclude_unset=True)
    start_time = _naive_utc(changes["start_time"]) if "start_time" in changes else exam.start_time
    end_time = _naive_utc(changes["end_time"]) if "end_time" in changes else exam.end_time
    _check_window(start_time, end_time)

    if "assigned_to" in changes:
        exam.assigned_to = [c.strip() for c in (changes["assigned_to"] or []) if c and c.strip()]
    if changes.get("status") is not None:
        exam.status = changes["status"]
    exam.start_time = start_time
    exam.end_time = end_time
    exam.updated_at = datetime.utcnow()
    session.add(exam)
    session.commit()
    session.refresh(exam)
    return exam


def question_counts(session: Session, exam_ids: Sequence[int]) -> Dict[int, int]:
    if not exam_ids:
        return {}
    rows = session.exec(
        select(Question.exam_id, func.count(Question.id))
        .where(Question.exam_id.in_(exam_ids))
        .group_by(Question.exam_id)
    ).all()
    return dict(rows)
