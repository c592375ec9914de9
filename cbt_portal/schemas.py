"""Request/response schemas and typed views over loosely stored JSON."""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from cbt_portal.models import ExamStatus, QuestionType, Role, SubmissionStatus, TRUE_FALSE_OPTIONS


class StaffPermissions(BaseModel):
    """Typed view of ``User.permissions``."""

    can_create_exam: bool = False
    can_grade: bool = False
    can_manage_students: bool = False

    @classmethod
    def from_blob(cls, blob: Optional[dict]) -> "StaffPermissions":
        """Read the stored JSON, ignoring unknown keys and treating junk as no permission."""
        if not isinstance(blob, dict):
            return cls()
        known = {name: bool(blob.get(name, False)) for name in cls.model_fields}
        return cls(**known)


class QuestionIn(BaseModel):
    """A question authored by hand or produced by the document parser."""

    type: QuestionType
    question: str = Field(min_length=1, max_length=5000)
    options: Optional[List[str]] = None
    correct_answer: str = Field(min_length=1)
    marks: int = Field(ge=1, le=1000)

    @model_validator(mode="after")
    def check_options(self) -> "QuestionIn":
        if self.type == QuestionType.MULTIPLE_CHOICE:
            if not self.options or len(self.options) < 2:
                raise ValueError("Multiple choice questions need at least two options")
            if self.correct_answer not in self.options:
                raise ValueError("Correct answer must match one of the options")
        elif self.type == QuestionType.TRUE_FALSE:
            if self.correct_answer not in TRUE_FALSE_OPTIONS:
                raise ValueError("True/false answer must be 'True' or 'False'")
            self.options = None
        else:
            self.options = None
        return self


class ExamCreateIn(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = ""
    duration: int = Field(ge=1)
    passing_marks: int = Field(ge=0)
    status: ExamStatus = ExamStatus.DRAFT
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    assigned_to: List[str] = Field(default_factory=list)
    questions: List[QuestionIn] = Field(default_factory=list)


class AssignIn(BaseModel):
    """Partial update of an exam's availability settings; omitted fields stay as they are."""

    assigned_to: Optional[List[str]] = None
    status: Optional[ExamStatus] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class UserCreateIn(BaseModel):
    first_name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    role: Role
    email: Optional[str] = None
    admission_number: Optional[str] = None
    class_level: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    permissions: Optional[StaffPermissions] = None


class UserUpdateIn(BaseModel):
    """Name is always resent; other omitted fields keep their stored values."""

    first_name: str = Field(min_length=1)
    surname: str = Field(min_length=1)
    role: Optional[Role] = None
    email: Optional[str] = None
    admission_number: Optional[str] = None
    class_level: Optional[str] = None
    permissions: Optional[StaffPermissions] = None


class LoginIn(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)


class SubmitIn(BaseModel):
    submission_id: int
    answers: Dict[int, str] = Field(default_factory=dict)


class GradeIn(BaseModel):
    # answer id -> awarded marks
    grades: Dict[int, float] = Field(default_factory=dict)


class BulkResetIn(BaseModel):
    submission_ids: List[int] = Field(min_length=1)


class MarksSummary(BaseModel):
    total_marks: int
    passing_marks: int


class SubmissionOut(BaseModel):
    id: int
    exam_id: int
    student_id: int
    status: SubmissionStatus
    started_at: datetime
    submitted_at: Optional[datetime] = None
    total_score: Optional[float] = None
    percentage: Optional[float] = None
    passed: Optional[bool] = None
