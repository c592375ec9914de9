"""SQLModel models for the School CBT Portal."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel


class Role(str, Enum):
    ADMIN = "ADMIN"
    STAFF = "STAFF"
    STUDENT = "STUDENT"


class ExamStatus(str, Enum):
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    ESSAY = "ESSAY"


class SubmissionStatus(str, Enum):
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    GRADED = "GRADED"


TRUE_FALSE_OPTIONS = ["True", "False"]


class User(SQLModel, table=True):
    """Application user that can log in and own a role (admin / staff / student)."""

    __table_args__ = (
        UniqueConstraint("email", name="uq_user_email"),
        UniqueConstraint("admission_number", name="uq_user_admission_number"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    # Staff and admins log in with their email, students with the admission number
    email: Optional[str] = None
    admission_number: Optional[str] = None
    password_hash: str
    role: Role = Field(default=Role.STUDENT)
    class_level: Optional[str] = None  # e.g. "JSS1", students only
    # Raw JSON blob; read it through schemas.StaffPermissions.from_blob
    permissions: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Exam(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str = ""
    duration: int  # minutes
    total_marks: int = 0
    passing_marks: int = 0
    status: ExamStatus = Field(default=ExamStatus.DRAFT)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    # Class levels allowed to sit the exam; empty means every class
    assigned_to: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    created_by_id: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Question(SQLModel, table=True):
    """One gradable item of an exam, kept in 1-based contiguous order."""

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    type: QuestionType
    question: str
    options: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    correct_answer: str
    marks: int
    order: int


class Submission(SQLModel, table=True):
    """One student's attempt at one exam."""

    __table_args__ = (
        UniqueConstraint("exam_id", "student_id", name="uq_submission_exam_student"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    exam_id: int = Field(foreign_key="exam.id", index=True)
    student_id: int = Field(foreign_key="user.id", index=True)
    status: SubmissionStatus = Field(default=SubmissionStatus.IN_PROGRESS)
    started_at: datetime = Field(default_factory=datetime.utcnow)
    submitted_at: Optional[datetime] = None
    # All three stay null until every essay answer has been graded
    total_score: Optional[float] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None


class Answer(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_answer_submission_question"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key="submission.id", index=True)
    question_id: int = Field(foreign_key="question.id", index=True)
    answer: str
    is_correct: Optional[bool] = None
    marks: Optional[float] = None
