"""Exceptions raised by the portal services.

Routers let these propagate; the handlers registered in ``main.py`` turn each
kind into the matching HTTP response.
"""

from typing import Optional


class PortalError(Exception):
    """Base class for every service-level failure."""

    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(PortalError):
    """Malformed or incomplete input; nothing was stored."""

    status_code = 400


class InvalidSubmissionState(PortalError):
    status_code = 409


class NotFoundError(PortalError):
    status_code = 404


class ExamNotFound(NotFoundError):
    def __init__(self, exam_id: int):
        super().__init__(f"Exam {exam_id} not found")
        self.exam_id = exam_id


class QuestionNotFound(NotFoundError):
    def __init__(self, question_id: int):
        super().__init__(f"Question {question_id} not found")
        self.question_id = question_id


class SubmissionNotFound(NotFoundError):
    def __init__(self, submission_id: int):
        super().__init__(f"Submission {submission_id} not found")
        self.submission_id = submission_id


class UserNotFound(NotFoundError):
    def __init__(self, user_id: int):
        super().__init__(f"User {user_id} not found")
        self.user_id = user_id


class PermissionDenied(PortalError):
    status_code = 403


class NotOwner(PermissionDenied):
    """The submission or exam belongs to somebody else."""


class ExamNotAccessible(PermissionDenied):
    """Availability policy refused the exam for this student."""

    def __init__(self, detail: str, reason: Optional[str] = None):
        super().__init__(detail)
        self.reason = reason
