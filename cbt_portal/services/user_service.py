"""User accounts: creation rules and credential checks."""

import logging
from typing import List, Optional

from sqlmodel import Session, or_, select

from cbt_portal.errors import UserNotFound, ValidationError
from cbt_portal.models import Answer, Exam, Role, Submission, User
from cbt_portal.schemas import StaffPermissions, UserCreateIn, UserUpdateIn
from cbt_portal.security import hash_password, verify_password

logger = logging.getLogger(__name__)


def permissions_for(user: User) -> StaffPermissions:
    """Admins can do everything; staff get what their stored blob grants."""
    if user.role == Role.ADMIN:
        return StaffPermissions(can_create_exam=True, can_grade=True, can_manage_students=True)
    if user.role == Role.STAFF:
        return StaffPermissions.from_blob(user.permissions)
    return StaffPermissions()


def _check_unique(
    session: Session,
    email: Optional[str],
    admission_number: Optional[str],
    exclude_id: Optional[int] = None,
) -> None:
    """Reject an email or admission number already used by another account."""
    if email:
        existing = session.exec(select(User).where(User.email == email)).first()
        if existing and existing.id != exclude_id:
            raise ValidationError("This email is already registered.")
    if admission_number:
        existing = session.exec(select(User).where(User.admission_number == admission_number)).first()
        if existing and existing.id != exclude_id:
            raise ValidationError("This admission number is already registered.")


def create_user(session: Session, payload: UserCreateIn) -> tuple[User, str]:
    """Create a user and return it with the password it can log in with.

    Students log in with their admission number, staff with their email. When
    no password is given the username doubles as the initial password.
    """
    email = payload.email.strip().lower() if payload.email else None
    admission_number = payload.admission_number.strip() if payload.admission_number else None
    class_level = payload.class_level.strip() if payload.class_level else None

    if payload.role == Role.STUDENT and (not admission_number or not class_level):
        raise ValidationError("Admission number and class are required for students")
    if payload.role in (Role.STAFF, Role.ADMIN) and not email:
        raise ValidationError("Email is required for staff")

    _check_unique(session, email, admission_number)

    username = admission_number if payload.role == Role.STUDENT else email
    password = payload.password or username
    user = User(
        name=f"{payload.first_name.strip()} {payload.surname.strip()}",
        email=email,
        admission_number=admission_number,
        password_hash=hash_password(password),
        role=payload.role,
        class_level=class_level if payload.role == Role.STUDENT else None,
        # Permissions only mean something for staff accounts
        permissions=(payload.permissions or StaffPermissions()).model_dump() if payload.role == Role.STAFF else None,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Created %s account %s", user.role.value, user.id)
    return user, username


def list_users(session: Session, role: Optional[Role] = None) -> List[User]:
    stmt = select(User).order_by(User.created_at.desc())
    if role is not None:
        stmt = stmt.where(User.role == role)
    return list(session.exec(stmt).all())


def get_user(session: Session, user_id: int) -> User:
    user = session.get(User, user_id)
    if not user:
        raise UserNotFound(user_id)
    return user


def update_user(session: Session, user_id: int, payload: UserUpdateIn) -> User:
    """Apply an admin edit. Fields left out of the request are not touched.

    The role rules of ``create_user`` are checked against the resulting
    account, so a student keeps an admission number and class and staff keep
    an email.
    """
    user = get_user(session, user_id)
    changes = payload.model_dump(exclude_unset=True)

    email = user.email
    if "email" in changes:
        email = changes["email"].strip().lower() if changes["email"] else None
    admission_number = user.admission_number
    if "admission_number" in changes:
        admission_number = changes["admission_number"].strip() if changes["admission_number"] else None
    class_level = user.class_level
    if "class_level" in changes:
        class_level = changes["class_level"].strip() if changes["class_level"] else None
    role = changes.get("role") or user.role

    if role == Role.STUDENT and (not admission_number or not class_level):
        raise ValidationError("Admission number and class are required for students")
    if role in (Role.STAFF, Role.ADMIN) and not email:
        raise ValidationError("Email is required for staff")
    _check_unique(session, email, admission_number, exclude_id=user.id)

    user.name = f"{payload.first_name.strip()} {payload.surname.strip()}"
    user.email = email
    user.admission_number = admission_number
    user.role = role
    user.class_level = class_level if role == Role.STUDENT else None
    if role == Role.STAFF:
        if payload.permissions is not None:
            user.permissions = payload.permissions.model_dump()
        elif user.permissions is None:
            user.permissions = StaffPermissions().model_dump()
    else:
        user.permissions = None
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info("Updated account %s", user.id)
    return user


def delete_user(session: Session, user_id: int, acting_user: User) -> None:
    """Delete an account together with its submissions and their answers.

    Accounts that still own exams are kept; their exams must be removed first.
    """
    user = get_user(session, user_id)
    if user.id == acting_user.id:
        raise ValidationError("You cannot delete your own account")
    if session.exec(select(Exam).where(Exam.created_by_id == user.id)).first():
        raise ValidationError("This user still owns exams; delete those exams first")

    try:
        submissions = session.exec(select(Submission).where(Submission.student_id == user.id)).all()
        submission_ids = [s.id for s in submissions]
        if submission_ids:
            for answer in session.exec(select(Answer).where(Answer.submission_id.in_(submission_ids))).all():
                session.delete(answer)
        for submission in submissions:
            session.delete(submission)
        session.delete(user)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Deleted account %s with %d submission(s)", user_id, len(submission_ids))


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    """Find an active user by email or admission number and check the password."""
    username = username.strip()
    user = session.exec(
        select(User).where(or_(User.email == username.lower(), User.admission_number == username))
    ).first()
    if not user or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user
