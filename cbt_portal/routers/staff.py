"""Staff routes: own exams and essay grading."""

from fastapi import APIRouter, Body, Depends
from sqlmodel import Session

from cbt_portal.database import get_session
from cbt_portal.deps import require_role, require_staff_permission
from cbt_portal.models import Role, User
from cbt_portal.schemas import GradeIn
from cbt_portal.services import exam_service, submission_service

router = APIRouter()

staff_only = require_role([Role.STAFF])
grader = require_staff_permission("can_grade")


@router.get("/exams")
def my_exams(
    session: Session = Depends(get_session),
    current_user: User = Depends(staff_only),
):
    return exam_service.list_exams(session, created_by_id=current_user.id)


@router.get("/submissions/pending")
def pending_submissions(
    session: Session = Depends(get_session),
    current_user: User = Depends(staff_only),
):
    return submission_service.list_pending_submissions(session, current_user.id)


@router.get("/submissions/{submission_id}")
def view_submission(
    submission_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(require_role([Role.STAFF, Role.ADMIN])),
):
    submission = submission_service.get_submission(session, submission_id)
    exam = exam_service.get_exam(session, submission.exam_id)
    exam_service.ensure_exam_owner(exam, current_user)
    detail = submission_service.submission_detail(session, submission)
    detail["exam"] = exam
    return detail


@router.post("/submissions/{submission_id}/grade")
def grade_submission(
    submission_id: int,
    payload: GradeIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(grader),
):
    """Record essay marks (answer id -> marks) and finalize the result."""
    submission = submission_service.apply_manual_grades(session, submission_id, payload.grades, current_user)
    return {
        "success": True,
        "status": submission.status,
        "total_score": submission.total_score,
        "percentage": submission.percentage,
        "passed": submission.passed,
    }
