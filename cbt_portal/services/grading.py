"""Grading rules for exam submissions.

Nothing here touches the database: the functions take already loaded exam,
question and answer rows (or anything with the same attributes) and return
what should be stored. ``submission_service`` does the persistence.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from cbt_portal.errors import InvalidSubmissionState, NotOwner, SubmissionNotFound, ValidationError
from cbt_portal.models import Answer, Question, QuestionType, Submission, SubmissionStatus
from cbt_portal.utils import validate_marks

AUTO_GRADED_TYPES = {QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE}


@dataclass
class GradedAnswer:
    question_id: int
    answer: str
    is_correct: Optional[bool]
    marks: Optional[float]


@dataclass
class GradingOutcome:
    status: SubmissionStatus
    submitted_at: Optional[datetime]
    total_score: Optional[float]
    percentage: Optional[float]
    passed: Optional[bool]


def grade_answer(question: Question, answer_text: str) -> GradedAnswer:
    """Auto-grade one answer. Essays are left ungraded."""
    if question.type in AUTO_GRADED_TYPES:
        # Exact match: no trimming, case-sensitive
        is_correct = answer_text == question.correct_answer
        return GradedAnswer(
            question_id=question.id,
            answer=answer_text,
            is_correct=is_correct,
            marks=question.marks if is_correct else 0,
        )
    return GradedAnswer(question_id=question.id, answer=answer_text, is_correct=None, marks=None)


def grade_answers(questions: Iterable[Question], answer_map: Mapping[int, str]) -> List[GradedAnswer]:
    """Grade every answer whose question belongs to the exam; unknown ids are skipped."""
    by_id = {q.id: q for q in questions}
    graded = []
    for question_id, answer_text in answer_map.items():
        question = by_id.get(question_id)
        if question is None:
            continue
        graded.append(grade_answer(question, answer_text))
    return graded


def score_summary(total_score: float, total_marks: int, passing_marks: int) -> Tuple[float, bool]:
    """Return (percentage, passed). The percentage is not rounded."""
    percentage = (total_score / total_marks) * 100 if total_marks > 0 else 0.0
    return percentage, total_score >= passing_marks


def has_essay(questions: Iterable[Question]) -> bool:
    return any(q.type == QuestionType.ESSAY for q in questions)


def finalize_outcome(
    questions: Sequence[Question],
    graded: Sequence[GradedAnswer],
    total_marks: int,
    passing_marks: int,
    now: Optional[datetime] = None,
) -> GradingOutcome:
    """Compute the submission fields written when a student submits.

    Any essay question in the exam holds back the score until staff grade it.
    """
    submitted_at = now or datetime.utcnow()
    if has_essay(questions):
        return GradingOutcome(
            status=SubmissionStatus.SUBMITTED,
            submitted_at=submitted_at,
            total_score=None,
            percentage=None,
            passed=None,
        )

    total_score = sum((g.marks or 0) for g in graded)
    percentage, passed = score_summary(total_score, total_marks, passing_marks)
    return GradingOutcome(
        status=SubmissionStatus.GRADED,
        submitted_at=submitted_at,
        total_score=total_score,
        percentage=percentage,
        passed=passed,
    )


def manual_grade_total(
    answers: Sequence[Answer],
    questions_by_id: Mapping[int, Question],
    grades: Mapping[int, float],
) -> Tuple[Dict[int, float], float]:
    """Validate essay marks and work out the submission total.

    Objective answers keep the marks stored when they were auto-graded; only
    essay answers take marks from ``grades`` (answer id -> marks).

    Returns:
        (answer id -> marks to store, total score)

    Raises:
        ValidationError: If a grade targets an unknown or non-essay answer, is
            out of range, or an essay answer is left without marks
    """
    answers_by_id = {a.id: a for a in answers}
    updates: Dict[int, float] = {}

    for answer_id, marks in grades.items():
        answer = answers_by_id.get(answer_id)
        if answer is None:
            raise ValidationError(f"Answer {answer_id} does not belong to this submission")
        question = questions_by_id.get(answer.question_id)
        if question is None or question.type != QuestionType.ESSAY:
            raise ValidationError(f"Answer {answer_id} is not an essay answer")
        try:
            validate_marks(marks, question.marks)
        except ValueError as e:
            raise ValidationError(f"Answer {answer_id}: {str(e)}")
        updates[answer_id] = marks

    total = 0.0
    for answer in answers:
        question = questions_by_id.get(answer.question_id)
        if question is not None and question.type == QuestionType.ESSAY:
            marks = updates.get(answer.id, answer.marks)
            if marks is None:
                raise ValidationError(f"Essay answer {answer.id} has not been graded")
            total += marks
        else:
            total += answer.marks or 0
    return updates, total


def check_owner(submission: Optional[Submission], submission_id: int, student_id: Optional[int]) -> Submission:
    """Refuse submissions that are missing or belong to another student."""
    if submission is None:
        raise SubmissionNotFound(submission_id)
    if student_id is not None and submission.student_id != student_id:
        raise NotOwner("Submission does not belong to this student")
    return submission


def check_can_finalize(submission: Submission) -> None:
    if submission.status != SubmissionStatus.IN_PROGRESS:
        raise InvalidSubmissionState("Submission already finalized")


def check_can_grade(submission: Submission) -> None:
    if submission.status != SubmissionStatus.SUBMITTED:
        raise InvalidSubmissionState(
            f"Cannot grade a submission with status '{SubmissionStatus(submission.status).value}'. "
            f"Only submitted attempts awaiting grading can be graded."
        )
