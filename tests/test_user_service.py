"""Account creation, editing and deletion rules."""

import pytest
from sqlmodel import Session, select

from cbt_portal.errors import UserNotFound, ValidationError
from cbt_portal.models import Answer, Role, Submission, User
from cbt_portal.schemas import StaffPermissions, UserUpdateIn
from cbt_portal.services import submission_service, user_service
from cbt_portal.services.exam_service import list_questions


class TestUpdateUser:
    def test_omitted_fields_are_kept(self, session: Session, student_user):
        user = user_service.update_user(
            session, student_user.id, UserUpdateIn(first_name="Alicia", surname="Student", class_level="JSS2")
        )

        assert user.name == "Alicia Student"
        assert user.class_level == "JSS2"
        assert user.admission_number == "ADM001"
        assert user.role == Role.STUDENT

    def test_duplicate_admission_number_rejected(self, session: Session, student_user, other_student):
        with pytest.raises(ValidationError):
            user_service.update_user(
                session, other_student.id, UserUpdateIn(first_name="Bob", surname="Student", admission_number="ADM001")
            )

    def test_keeping_own_email_is_not_a_duplicate(self, session: Session, staff_user):
        user = user_service.update_user(
            session, staff_user.id, UserUpdateIn(first_name="Grace", surname="Teacher", email="GRACE@example.com")
        )
        assert user.email == "grace@example.com"

    def test_student_cannot_lose_admission_number(self, session: Session, student_user):
        with pytest.raises(ValidationError):
            user_service.update_user(
                session, student_user.id, UserUpdateIn(first_name="Alice", surname="Student", admission_number="")
            )

    def test_promote_student_to_staff(self, session: Session, student_user):
        user = user_service.update_user(
            session,
            student_user.id,
            UserUpdateIn(
                first_name="Alice",
                surname="Student",
                role=Role.STAFF,
                email="alice@example.com",
                permissions=StaffPermissions(can_grade=True),
            ),
        )

        assert user.role == Role.STAFF
        assert user.class_level is None
        assert user_service.permissions_for(user).can_grade is True

    def test_unknown_user(self, session: Session):
        with pytest.raises(UserNotFound):
            user_service.update_user(session, 4040, UserUpdateIn(first_name="No", surname="One"))


class TestDeleteUser:
    def test_student_deleted_with_submissions(self, session: Session, mcq_exam, student_user, admin_user):
        submission = submission_service.start_or_resume_submission(session, mcq_exam.id, student_user)
        question = list_questions(session, mcq_exam.id)[0]
        session.add(Answer(submission_id=submission.id, question_id=question.id, answer="Red"))
        session.commit()

        user_service.delete_user(session, student_user.id, admin_user)

        session.expunge_all()
        assert session.get(User, student_user.id) is None
        assert session.exec(select(Submission)).all() == []
        assert session.exec(select(Answer)).all() == []

    def test_exam_owner_is_kept(self, session: Session, mcq_exam, staff_user, admin_user):
        with pytest.raises(ValidationError):
            user_service.delete_user(session, staff_user.id, admin_user)
        assert session.get(User, staff_user.id) is not None

    def test_cannot_delete_self(self, session: Session, admin_user):
        with pytest.raises(ValidationError):
            user_service.delete_user(session, admin_user.id, admin_user)

    def test_unknown_user(self, session: Session, admin_user):
        with pytest.raises(UserNotFound):
            user_service.delete_user(session, 4040, admin_user)
