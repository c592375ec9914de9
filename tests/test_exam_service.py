"""Service-level tests for exam authoring against the in-memory database."""

import pytest
from sqlmodel import Session, select

from cbt_portal.errors import ExamNotFound, NotOwner, QuestionNotFound, ValidationError
from cbt_portal.models import Answer, Exam, ExamStatus, Question, QuestionType, Submission
from cbt_portal.schemas import AssignIn, ExamCreateIn, QuestionIn
from cbt_portal.services import exam_service, submission_service

from conftest import mc_question

DOCUMENT = """1. What is 2 + 2?
A. 3
B. 4*
C. 5

(2) Capital of Ghana? (a) Accra* (b) Kumasi
3. Broken question with no answer
A. yes
B. no
"""


class TestRecomputeExamMarks:
    def test_proportional_passing_marks(self):
        """GIVEN marks {2,2,2} with total 6 and passing 3
        WHEN one 2-mark question is removed
        THEN total is 4 and passing is ceil(3/6*4) = 2."""
        exam = Exam(title="E", duration=10, total_marks=6, passing_marks=3)
        remaining = [Question(exam_id=1, type=QuestionType.ESSAY, question="q", correct_answer="a", marks=2, order=i) for i in (1, 2)]

        summary = exam_service.recompute_exam_marks(exam, remaining)

        assert summary.total_marks == 4
        assert summary.passing_marks == 2

    def test_passing_capped_at_new_total(self):
        exam = Exam(title="E", duration=10, total_marks=0, passing_marks=5)
        remaining = [Question(exam_id=1, type=QuestionType.ESSAY, question="q", correct_answer="a", marks=2, order=1)]

        summary = exam_service.recompute_exam_marks(exam, remaining)

        assert summary.total_marks == 2
        assert summary.passing_marks == 2

    def test_no_questions_left(self):
        exam = Exam(title="E", duration=10, total_marks=4, passing_marks=2)
        summary = exam_service.recompute_exam_marks(exam, [])
        assert summary.total_marks == 0
        assert summary.passing_marks == 0


class TestDeleteQuestion:
    def test_delete_recomputes_and_renumbers(self, session: Session, make_exam, staff_user, student_user):
        exam = make_exam([mc_question(f"Q{i}", "Red", 2) for i in range(1, 4)], passing_marks=3)
        questions = exam_service.list_questions(session, exam.id)
        middle_id = questions[1].id

        submission = Submission(exam_id=exam.id, student_id=student_user.id)
        session.add(submission)
        session.commit()
        session.add(Answer(submission_id=submission.id, question_id=middle_id, answer="Red", is_correct=True, marks=2))
        session.commit()

        summary = exam_service.delete_question(session, middle_id, staff_user)

        assert (summary.total_marks, summary.passing_marks) == (4, 2)
        session.expunge_all()
        stored = session.get(Exam, exam.id)
        assert (stored.total_marks, stored.passing_marks) == (4, 2)
        remaining = exam_service.list_questions(session, exam.id)
        assert [q.question for q in remaining] == ["Q1", "Q3"]
        assert [q.order for q in remaining] == [1, 2]
        assert session.exec(select(Answer).where(Answer.question_id == middle_id)).all() == []

    def test_unknown_question(self, session: Session, staff_user):
        with pytest.raises(QuestionNotFound):
            exam_service.delete_question(session, 9999, staff_user)

    def test_staff_cannot_touch_other_staff_exam(self, session: Session, mcq_exam, restricted_staff_user):
        question = exam_service.list_questions(session, mcq_exam.id)[0]
        with pytest.raises(NotOwner):
            exam_service.delete_question(session, question.id, restricted_staff_user)
        assert session.get(Question, question.id) is not None

    def test_admin_can_delete_any(self, session: Session, mcq_exam, admin_user):
        question = exam_service.list_questions(session, mcq_exam.id)[0]
        summary = exam_service.delete_question(session, question.id, admin_user)
        assert summary.total_marks == 5

    def test_delete_all_questions(self, session: Session, mcq_exam, staff_user):
        exam = session.get(Exam, mcq_exam.id)
        deleted = exam_service.delete_all_questions(session, exam, staff_user)

        assert deleted == 3
        session.expunge_all()
        stored = session.get(Exam, mcq_exam.id)
        assert (stored.total_marks, stored.passing_marks) == (0, 0)
        assert exam_service.list_questions(session, mcq_exam.id) == []


class TestCreateExam:
    def test_total_marks_from_questions(self, session: Session, staff_user):
        payload = ExamCreateIn(
            title="Maths",
            duration=40,
            passing_marks=3,
            questions=[
                QuestionIn(type=QuestionType.MULTIPLE_CHOICE, question="1+1", options=["1", "2"], correct_answer="2", marks=2),
                QuestionIn(type=QuestionType.TRUE_FALSE, question="2 > 1", correct_answer="True", marks=1),
                QuestionIn(type=QuestionType.ESSAY, question="Explain zero", correct_answer="nothing", marks=3),
            ],
        )
        exam = exam_service.create_exam(session, payload, created_by_id=staff_user.id)

        assert exam.total_marks == 6
        assert exam.status == ExamStatus.DRAFT
        questions = exam_service.list_questions(session, exam.id)
        assert [q.order for q in questions] == [1, 2, 3]
        assert questions[1].options is None

    def test_passing_above_total_rejected(self, session: Session, staff_user):
        payload = ExamCreateIn(
            title="Maths",
            duration=40,
            passing_marks=5,
            questions=[QuestionIn(type=QuestionType.ESSAY, question="Explain", correct_answer="x", marks=2)],
        )
        with pytest.raises(ValidationError):
            exam_service.create_exam(session, payload, created_by_id=staff_user.id)
        assert session.exec(select(Exam)).all() == []

    def test_question_schema_requires_matching_answer(self):
        with pytest.raises(ValueError):
            QuestionIn(type=QuestionType.MULTIPLE_CHOICE, question="?", options=["a", "b"], correct_answer="c", marks=1)

    def test_add_question_updates_total(self, session: Session, mcq_exam):
        exam = session.get(Exam, mcq_exam.id)
        question = exam_service.add_question(
            session,
            exam,
            QuestionIn(type=QuestionType.TRUE_FALSE, question="Water is wet", correct_answer="True", marks=4),
        )
        assert question.order == 4
        session.expunge_all()
        assert session.get(Exam, mcq_exam.id).total_marks == 10

    def test_missing_exam(self, session: Session):
        with pytest.raises(ExamNotFound):
            exam_service.get_exam(session, 12345)


class TestCreateExamFromDocument:
    def test_creates_draft_exam(self, session: Session, staff_user):
        exam = exam_service.create_exam_from_document(
            session,
            DOCUMENT,
            title="Upload",
            duration=20,
            total_questions=3,
            marks_per_question=2,
            created_by_id=staff_user.id,
            passing_percentage=50,
        )

        assert exam.status == ExamStatus.DRAFT
        assert exam.total_marks == 4
        assert exam.passing_marks == 2
        questions = exam_service.list_questions(session, exam.id)
        assert [q.correct_answer for q in questions] == ["4", "Accra"]
        assert [q.order for q in questions] == [1, 2]
        assert exam.total_marks == sum(q.marks for q in questions)

    def test_dropped_question_does_not_count_towards_total(self, session: Session, staff_user, student_user):
        """GIVEN one valid and one unmarked question at 5 marks each, 2 declared
        WHEN the student answers the stored question correctly
        THEN the exam totals 5 and the student passes with 100%."""
        text = "1. Valid?\nA. yes*\nB. no\n2. Unmarked?\nA. yes\nB. no\n"
        exam = exam_service.create_exam_from_document(
            session,
            text,
            title="Partial",
            duration=20,
            total_questions=2,
            marks_per_question=5,
            created_by_id=staff_user.id,
            passing_percentage=60,
        )

        assert (exam.total_marks, exam.passing_marks) == (5, 3)
        exam_service.assign_exam(session, exam, AssignIn(status=ExamStatus.PUBLISHED))
        (question,) = exam_service.list_questions(session, exam.id)
        submission = submission_service.start_or_resume_submission(session, exam.id, student_user)
        result = submission_service.record_answers_and_finalize(
            session, submission.id, student_user.id, {question.id: "yes"}
        )

        assert result.total_score == 5
        assert result.percentage == 100.0
        assert result.passed is True

    def test_no_valid_questions_stores_nothing(self, session: Session, staff_user):
        with pytest.raises(ValidationError):
            exam_service.create_exam_from_document(
                session,
                "Just some prose without questions.",
                title="Empty",
                duration=20,
                total_questions=5,
                marks_per_question=1,
                created_by_id=staff_user.id,
            )
        assert session.exec(select(Exam)).all() == []

    def test_more_questions_than_declared(self, session: Session, staff_user):
        with pytest.raises(ValidationError):
            exam_service.create_exam_from_document(
                session,
                DOCUMENT,
                title="Too many",
                duration=20,
                total_questions=1,
                marks_per_question=1,
                created_by_id=staff_user.id,
            )
        assert session.exec(select(Exam)).all() == []


class TestAssignExam:
    def test_partial_update_keeps_other_fields(self, session: Session, scheduled_exam):
        exam = session.get(Exam, scheduled_exam.id)
        original_start = exam.start_time

        updated = exam_service.assign_exam(session, exam, AssignIn(assigned_to=["JSS1", "JSS3 "]))

        assert updated.assigned_to == ["JSS1", "JSS3"]
        assert updated.start_time == original_start
        assert updated.status == ExamStatus.PUBLISHED

    def test_clearing_assignment_opens_exam(self, session: Session, scheduled_exam):
        exam = session.get(Exam, scheduled_exam.id)
        updated = exam_service.assign_exam(session, exam, AssignIn(assigned_to=[], start_time=None))
        assert updated.assigned_to == []
        assert updated.start_time is None

    def test_end_before_start_rejected(self, session: Session, scheduled_exam):
        exam = session.get(Exam, scheduled_exam.id)
        with pytest.raises(ValidationError):
            exam_service.assign_exam(session, exam, AssignIn(end_time=exam.start_time))
