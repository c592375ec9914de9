"""Decide whether a student may see and start an exam right now.

Evaluate on every request; exam status and timing can change between page
loads, so decisions are never cached.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional

from cbt_portal.errors import ExamNotAccessible
from cbt_portal.models import Exam, ExamStatus


class DenialReason(str, Enum):
    NOT_PUBLISHED = "NOT_PUBLISHED"
    NOT_STARTED = "NOT_STARTED"
    ENDED = "ENDED"
    CLASS_NOT_ASSIGNED = "CLASS_NOT_ASSIGNED"


DENIAL_MESSAGES = {
    DenialReason.NOT_PUBLISHED: "Exam not available",
    DenialReason.NOT_STARTED: "Exam not started yet",
    DenialReason.ENDED: "Exam has ended",
    DenialReason.CLASS_NOT_ASSIGNED: "Exam not available for your class",
}


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenialReason] = None


def is_exam_accessible(exam: Exam, student_class_level: Optional[str], now: datetime) -> AccessDecision:
    if exam.status != ExamStatus.PUBLISHED:
        return AccessDecision(False, DenialReason.NOT_PUBLISHED)
    if exam.start_time and now < exam.start_time:
        return AccessDecision(False, DenialReason.NOT_STARTED)
    if exam.end_time and now > exam.end_time:
        return AccessDecision(False, DenialReason.ENDED)
    # An exam with no assigned classes is open to every class
    if exam.assigned_to:
        if not student_class_level or student_class_level not in exam.assigned_to:
            return AccessDecision(False, DenialReason.CLASS_NOT_ASSIGNED)
    return AccessDecision(True)


def can_student_access_exam(exam: Exam, student_class_level: Optional[str], now: datetime) -> bool:
    return is_exam_accessible(exam, student_class_level, now).allowed


def ensure_exam_accessible(exam: Exam, student_class_level: Optional[str], now: Optional[datetime] = None) -> None:
    """Raise ExamNotAccessible with the denial reason when the policy says no."""
    decision = is_exam_accessible(exam, student_class_level, now or datetime.utcnow())
    if not decision.allowed:
        raise ExamNotAccessible(DENIAL_MESSAGES[decision.reason], reason=decision.reason.value)
