"""Student attempts: start/resume, submit with auto-grading, manual grading, reset."""

import logging
from datetime import datetime
from typing import List, Mapping, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from cbt_portal.errors import InvalidSubmissionState, NotFoundError, SubmissionNotFound, ValidationError
from cbt_portal.models import Answer, Exam, QuestionType, Submission, SubmissionStatus, User
from cbt_portal.services import grading
from cbt_portal.services.availability import ensure_exam_accessible
from cbt_portal.services.exam_service import ensure_exam_owner, get_exam, list_questions

logger = logging.getLogger(__name__)


def _find_submission(session: Session, exam_id: int, student_id: int) -> Optional[Submission]:
    stmt = select(Submission).where(
        (Submission.exam_id == exam_id) & (Submission.student_id == student_id)
    )
    return session.exec(stmt).first()


def list_answers(session: Session, submission_id: int) -> List[Answer]:
    return list(session.exec(select(Answer).where(Answer.submission_id == submission_id)).all())


def get_submission(session: Session, submission_id: int) -> Submission:
    submission = session.get(Submission, submission_id)
    if not submission:
        raise SubmissionNotFound(submission_id)
    return submission


def start_or_resume_submission(
    session: Session,
    exam_id: int,
    student: User,
    now: Optional[datetime] = None,
) -> Submission:
    """Return the student's in-progress submission, creating it on first start.

    A finished submission is never reopened; resetting it is an admin action.
    """
    exam = get_exam(session, exam_id)
    ensure_exam_accessible(exam, student.class_level, now)

    # Resume if exists
    submission = _find_submission(session, exam_id, student.id)
    if submission:
        if submission.status != SubmissionStatus.IN_PROGRESS:
            raise InvalidSubmissionState("Exam already submitted")
        return submission

    submission = Submission(
        exam_id=exam_id,
        student_id=student.id,
        status=SubmissionStatus.IN_PROGRESS,
        started_at=now or datetime.utcnow(),
    )
    session.add(submission)
    try:
        session.commit()
    except IntegrityError:
        # Another request (second tab) created it first
        session.rollback()
        submission = _find_submission(session, exam_id, student.id)
        if submission is None:
            raise
        if submission.status != SubmissionStatus.IN_PROGRESS:
            raise InvalidSubmissionState("Exam already submitted")
        return submission
    session.refresh(submission)
    logger.info("Submission %s started for exam %s by student %s", submission.id, exam_id, student.id)
    return submission


def _upsert_answer(session: Session, submission_id: int, graded: grading.GradedAnswer) -> Answer:
    stmt = select(Answer).where(
        (Answer.submission_id == submission_id) & (Answer.question_id == graded.question_id)
    )
    existing = session.exec(stmt).first()
    if existing:
        existing.answer = graded.answer
        existing.is_correct = graded.is_correct
        existing.marks = graded.marks
        session.add(existing)
        return existing
    new = Answer(
        submission_id=submission_id,
        question_id=graded.question_id,
        answer=graded.answer,
        is_correct=graded.is_correct,
        marks=graded.marks,
    )
    session.add(new)
    return new


def record_answers_and_finalize(
    session: Session,
    submission_id: int,
    student_id: int,
    answer_map: Mapping[int, str],
    exam_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """Store the student's answers, auto-grade them and close the attempt.

    Args:
        session: Database session
        submission_id: Submission being finalized
        student_id: Identity of the requesting student
        answer_map: question id -> answer text
        exam_id: Exam the request was made for, when known
        now: Finalize time, defaults to utcnow

    Returns:
        The updated submission (GRADED, or SUBMITTED when essays need marking)

    Raises:
        SubmissionNotFound: Unknown submission, or one for a different exam
        NotOwner: Submission belongs to another student
        InvalidSubmissionState: Submission is not in progress
    """
    submission = grading.check_owner(session.get(Submission, submission_id), submission_id, student_id)
    if exam_id is not None and submission.exam_id != exam_id:
        raise SubmissionNotFound(submission_id)
    grading.check_can_finalize(submission)

    exam = get_exam(session, submission.exam_id)
    questions = list_questions(session, exam.id)
    graded = grading.grade_answers(questions, answer_map)
    outcome = grading.finalize_outcome(questions, graded, exam.total_marks, exam.passing_marks, now)

    try:
        for g in graded:
            _upsert_answer(session, submission.id, g)
        submission.status = outcome.status
        submission.submitted_at = outcome.submitted_at
        submission.total_score = outcome.total_score
        submission.percentage = outcome.percentage
        submission.passed = outcome.passed
        session.add(submission)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(submission)
    logger.info(
        "Submission %s finalized with status %s (%d answer(s))",
        submission.id,
        submission.status.value,
        len(graded),
    )
    return submission


def apply_manual_grades(
    session: Session,
    submission_id: int,
    essay_marks: Mapping[int, float],
    grader: User,
) -> Submission:
    """Record essay marks and complete the submission's result.

    Objective answers are not re-graded; their stored marks are summed with
    the essay marks. Concurrent graders: the last write wins.
    """
    submission = get_submission(session, submission_id)
    exam = get_exam(session, submission.exam_id)
    ensure_exam_owner(exam, grader)
    grading.check_can_grade(submission)

    answers = list_answers(session, submission.id)
    questions_by_id = {q.id: q for q in list_questions(session, exam.id)}
    updates, total_score = grading.manual_grade_total(answers, questions_by_id, essay_marks)
    percentage, passed = grading.score_summary(total_score, exam.total_marks, exam.passing_marks)

    try:
        for answer in answers:
            if answer.id in updates:
                answer.marks = updates[answer.id]
                session.add(answer)
        submission.total_score = total_score
        submission.percentage = percentage
        submission.passed = passed
        submission.status = SubmissionStatus.GRADED
        session.add(submission)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(submission)
    logger.info("Submission %s graded by user %s: %s/%s", submission.id, grader.id, total_score, exam.total_marks)
    return submission


def submission_detail(session: Session, submission: Submission) -> dict:
    """Submission with each answer next to its question, in question order."""
    questions = list_questions(session, submission.exam_id)
    answers_by_question = {a.question_id: a for a in list_answers(session, submission.id)}
    items = []
    for q in questions:
        answer = answers_by_question.get(q.id)
        items.append(
            {
                "question": q,
                "answer": answer,
                "needs_grading": q.type == QuestionType.ESSAY and answer is not None and answer.marks is None,
            }
        )
    return {"submission": submission, "items": items}


def list_pending_submissions(session: Session, staff_id: int) -> List[dict]:
    """Submissions waiting for essay marks on exams the staff member created."""
    rows = session.exec(
        select(Submission, Exam, User)
        .join(Exam, Exam.id == Submission.exam_id)
        .join(User, User.id == Submission.student_id)
        .where(Exam.created_by_id == staff_id)
        .where(Submission.status == SubmissionStatus.SUBMITTED)
        .order_by(Submission.submitted_at.desc())
    ).all()
    return [
        {
            "submission": submission,
            "exam_title": exam.title,
            "student_name": student.name,
            "admission_number": student.admission_number,
            "class_level": student.class_level,
        }
        for submission, exam, student in rows
    ]


def list_exam_submissions(session: Session, exam_id: int) -> List[dict]:
    get_exam(session, exam_id)
    rows = session.exec(
        select(Submission, User)
        .join(User, User.id == Submission.student_id)
        .where(Submission.exam_id == exam_id)
        .order_by(User.class_level, User.name)
    ).all()
    return [{"submission": submission, "student": student} for submission, student in rows]


def exam_results(session: Session, exam_id: int) -> dict:
    """Finished submissions of an exam with pass/fail counts."""
    exam = get_exam(session, exam_id)
    finished = [
        row
        for row in list_exam_submissions(session, exam_id)
        if row["submission"].status in (SubmissionStatus.SUBMITTED, SubmissionStatus.GRADED)
    ]
    results = []
    for row in finished:
        submission, student = row["submission"], row["student"]
        results.append(
            {
                "submission_id": submission.id,
                "name": student.name,
                "admission_number": student.admission_number,
                "class_level": student.class_level,
                "status": submission.status,
                "total_score": submission.total_score,
                "percentage": round(submission.percentage, 2) if submission.percentage is not None else None,
                "passed": submission.passed,
                "submitted_at": submission.submitted_at,
            }
        )
    return {
        "exam_id": exam.id,
        "title": exam.title,
        "total_marks": exam.total_marks,
        "passing_marks": exam.passing_marks,
        "duration": exam.duration,
        "total_submissions": len(results),
        "passed": sum(1 for r in results if r["passed"] is True),
        "failed": sum(1 for r in results if r["passed"] is False),
        "not_graded": sum(1 for r in results if r["passed"] is None),
        "results": results,
    }


def _delete_submissions(session: Session, submissions: Sequence[Submission]) -> List[dict]:
    """Delete submissions with their answers; returns what was removed."""
    removed = []
    for s in submissions:
        student = session.get(User, s.student_id)
        exam = session.get(Exam, s.exam_id)
        removed.append(
            {
                "id": s.id,
                "student": {
                    "name": student.name if student else None,
                    "admission_number": student.admission_number if student else None,
                },
                "exam": {"id": s.exam_id, "title": exam.title if exam else None},
            }
        )
    ids = [s.id for s in submissions]
    for answer in session.exec(select(Answer).where(Answer.submission_id.in_(ids))).all():
        session.delete(answer)
    for submission in submissions:
        session.delete(submission)
    return removed


def reset_submission(session: Session, submission_id: int) -> dict:
    """Delete a submission and its answers so the student can sit the exam again."""
    submission = get_submission(session, submission_id)
    try:
        removed = _delete_submissions(session, [submission])[0]
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Submission %s reset", submission_id)
    return removed


def bulk_reset_submissions(session: Session, submission_ids: Sequence[int]) -> List[dict]:
    """Reset several submissions at once; all ids must exist or nothing is deleted."""
    if not submission_ids:
        raise ValidationError("Submission IDs array is required")
    unique_ids = set(submission_ids)
    submissions = list(session.exec(select(Submission).where(Submission.id.in_(unique_ids))).all())
    if not submissions:
        raise NotFoundError("No valid submissions found")
    if len(submissions) != len(unique_ids):
        raise ValidationError("Some submission IDs were not found")
    try:
        removed = _delete_submissions(session, submissions)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Reset %d submission(s)", len(removed))
    return removed

