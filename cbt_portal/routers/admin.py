"""Exam authoring and administration routes (admins, and staff with permission)."""

from typing import Optional

from fastapi import APIRouter, Body, Depends, File, Form, UploadFile
from sqlmodel import Session

from cbt_portal.config import settings
from cbt_portal.database import get_session
from cbt_portal.deps import require_role, require_staff_permission
from cbt_portal.errors import PermissionDenied, ValidationError
from cbt_portal.models import Role, User
from cbt_portal.schemas import AssignIn, BulkResetIn, ExamCreateIn, QuestionIn, UserCreateIn, UserUpdateIn
from cbt_portal.services import exam_service, submission_service, user_service
from cbt_portal.services.document_text import extract_text

router = APIRouter()

admin_only = require_role([Role.ADMIN])
exam_author = require_staff_permission("can_create_exam")
admin_or_staff = require_role([Role.ADMIN, Role.STAFF])


def _owned_exam(session: Session, exam_id: int, user: User):
    """Load the exam, refusing staff who did not create it."""
    exam = exam_service.get_exam(session, exam_id)
    exam_service.ensure_exam_owner(exam, user)
    return exam


def _exam_out(session: Session, exam_id: int) -> dict:
    exam = exam_service.get_exam(session, exam_id)
    return {"exam": exam, "questions": exam_service.list_questions(session, exam.id)}


# ----------------------------------------------------------------------------
# Exams
# ----------------------------------------------------------------------------


@router.get("/exams")
def list_exams(
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    return exam_service.list_exams(session)


@router.post("/exams")
def create_exam(
    payload: ExamCreateIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(exam_author),
):
    exam = exam_service.create_exam(session, payload, created_by_id=current_user.id)
    return _exam_out(session, exam.id)


@router.get("/exams/{exam_id}")
def get_exam(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_or_staff),
):
    _owned_exam(session, exam_id, current_user)
    return _exam_out(session, exam_id)


@router.post("/exams/{exam_id}/questions")
def add_question(
    exam_id: int,
    payload: QuestionIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(exam_author),
):
    exam = _owned_exam(session, exam_id, current_user)
    question = exam_service.add_question(session, exam, payload)
    return {
        "question": question,
        "exam": {"id": exam.id, "total_marks": exam.total_marks, "passing_marks": exam.passing_marks},
    }


@router.delete("/exams/{exam_id}/questions")
def delete_all_questions(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(exam_author),
):
    exam = exam_service.get_exam(session, exam_id)
    deleted = exam_service.delete_all_questions(session, exam, current_user)
    return {
        "message": f"Successfully deleted {deleted} question(s) from exam",
        "deleted_count": deleted,
        "exam": {"id": exam_id, "new_total_marks": 0, "new_passing_marks": 0},
    }


@router.delete("/questions/{question_id}")
def delete_question(
    question_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(exam_author),
):
    summary = exam_service.delete_question(session, question_id, current_user)
    return {
        "message": "Question deleted successfully",
        "exam": {
            "new_total_marks": summary.total_marks,
            "new_passing_marks": summary.passing_marks,
        },
    }


@router.post("/questions/upload")
async def upload_questions(
    file: UploadFile = File(...),
    exam_title: str = Form(...),
    total_questions: int = Form(...),
    marks_per_question: int = Form(...),
    duration: int = Form(...),
    exam_description: Optional[str] = Form(None),
    passing_percentage: Optional[int] = Form(None),
    session: Session = Depends(get_session),
    current_user: User = Depends(exam_author),
):
    """Create a DRAFT exam from an uploaded .docx or .txt question document."""
    data = await file.read()
    if len(data) > settings.max_upload_size_mb * 1024 * 1024:
        raise ValidationError(f"File is larger than {settings.max_upload_size_mb} MB")
    text = extract_text(file.filename, file.content_type, data)

    exam = exam_service.create_exam_from_document(
        session,
        text,
        title=exam_title,
        description=exam_description or "",
        duration=duration,
        total_questions=total_questions,
        marks_per_question=marks_per_question,
        passing_percentage=passing_percentage if passing_percentage is not None else settings.default_passing_percentage,
        created_by_id=current_user.id,
    )
    question_count = len(exam_service.list_questions(session, exam.id))
    return {
        "message": f"Successfully created exam with {question_count} questions",
        "exam": {
            "id": exam.id,
            "title": exam.title,
            "total_questions": question_count,
            "total_marks": exam.total_marks,
            "passing_marks": exam.passing_marks,
            "duration": exam.duration,
        },
    }


# ----------------------------------------------------------------------------
# Assignment
# ----------------------------------------------------------------------------


@router.get("/exams/{exam_id}/assign")
def get_assignment(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_or_staff),
):
    exam = _owned_exam(session, exam_id, current_user)
    return {
        "id": exam.id,
        "title": exam.title,
        "status": exam.status,
        "assigned_to": exam.assigned_to,
        "start_time": exam.start_time,
        "end_time": exam.end_time,
    }


@router.post("/exams/{exam_id}/assign")
def assign_exam(
    exam_id: int,
    payload: AssignIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_or_staff),
):
    exam = _owned_exam(session, exam_id, current_user)
    exam = exam_service.assign_exam(session, exam, payload)
    return {"message": "Exam updated successfully", "exam": exam}


# ----------------------------------------------------------------------------
# Submissions and results
# ----------------------------------------------------------------------------


@router.get("/exams/{exam_id}/submissions")
def exam_submissions(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_or_staff),
):
    _owned_exam(session, exam_id, current_user)
    rows = submission_service.list_exam_submissions(session, exam_id)
    return [
        {
            "submission": row["submission"],
            "student": {
                "id": row["student"].id,
                "name": row["student"].name,
                "admission_number": row["student"].admission_number,
                "class_level": row["student"].class_level,
            },
        }
        for row in rows
    ]


@router.get("/exams/{exam_id}/results")
def exam_results(
    exam_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_or_staff),
):
    _owned_exam(session, exam_id, current_user)
    return submission_service.exam_results(session, exam_id)


@router.delete("/submissions/{submission_id}")
def reset_submission(
    submission_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    removed = submission_service.reset_submission(session, submission_id)
    return {
        "message": f"Successfully reset exam submission for {removed['student']['name']}",
        **removed,
    }


@router.delete("/submissions")
def bulk_reset_submissions(
    payload: BulkResetIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(admin_only),
):
    removed = submission_service.bulk_reset_submissions(session, payload.submission_ids)
    return {
        "message": f"Successfully reset {len(removed)} exam submission(s)",
        "count": len(removed),
        "submissions": removed,
    }


# ----------------------------------------------------------------------------
# Users
# ----------------------------------------------------------------------------

# Admins manage every account; staff with can_manage_students manage students only
user_manager = require_staff_permission("can_manage_students")


def _check_manages(current_user: User, role: Role) -> None:
    if current_user.role == Role.STAFF and role != Role.STUDENT:
        raise PermissionDenied("Staff can only manage student accounts")


def _user_out(user: User) -> dict:
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "admission_number": user.admission_number,
        "role": user.role,
        "class_level": user.class_level,
        "permissions": user.permissions,
        "is_active": user.is_active,
    }


@router.get("/users")
def list_users(
    role: Optional[Role] = None,
    session: Session = Depends(get_session),
    current_user: User = Depends(user_manager),
):
    if current_user.role == Role.STAFF:
        role = Role.STUDENT
    return [_user_out(u) for u in user_service.list_users(session, role)]


@router.post("/users")
def create_user(
    payload: UserCreateIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(user_manager),
):
    _check_manages(current_user, payload.role)
    user, username = user_service.create_user(session, payload)
    label = "Student" if user.role == Role.STUDENT else "Staff"
    return {
        "message": f"{label} created successfully",
        "user": {"id": user.id, "name": user.name, "role": user.role, "class_level": user.class_level},
        "username": username,
    }


@router.put("/users/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdateIn = Body(...),
    session: Session = Depends(get_session),
    current_user: User = Depends(user_manager),
):
    _check_manages(current_user, user_service.get_user(session, user_id).role)
    if payload.role is not None:
        _check_manages(current_user, payload.role)
    user = user_service.update_user(session, user_id, payload)
    return {"message": "User updated successfully", "user": _user_out(user)}


@router.delete("/users/{user_id}")
def delete_user(
    user_id: int,
    session: Session = Depends(get_session),
    current_user: User = Depends(user_manager),
):
    _check_manages(current_user, user_service.get_user(session, user_id).role)
    user_service.delete_user(session, user_id, current_user)
    return {"message": "User deleted successfully"}
