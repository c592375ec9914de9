"""Turn plain text extracted from a question document into question records.

Two layouts are understood, decided line by line:

Multi-line::

    1. What is the capital of Nigeria?
    A. Lagos
    B. Abuja*
    C. Kano
    D. Ibadan

Single-line::

    (1) What IDE is this? (a) Cursor* (b) Warp (c) None of the above

The correct option is marked with an asterisk, which is stripped from the
stored text. Questions without a marked option or with fewer than two options
are dropped rather than reported.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from cbt_portal.errors import ValidationError
from cbt_portal.models import QuestionType

logger = logging.getLogger(__name__)

SINGLE_LINE_START = re.compile(r"^\((\d+)\)\s+(.+)")
MULTI_LINE_START = re.compile(r"^(\d+)[.)]\s+(.+)")
MULTI_LINE_OPTION = re.compile(r"^[A-D][.)]\s+", re.IGNORECASE)
INLINE_OPTION_MARKER = re.compile(r"\(([A-D])\)\s+", re.IGNORECASE)
MIN_OPTIONS = 2


@dataclass
class QuestionRecord:
    question: str
    options: List[str]
    correct_answer: str
    marks: int
    type: QuestionType = QuestionType.MULTIPLE_CHOICE


@dataclass
class _OpenQuestion:
    number: str
    question: str
    options: List[str] = field(default_factory=list)
    correct_index: int = -1

    def add_option(self, text: str) -> None:
        if "*" in text:
            # Several starred options: the last one wins
            self.correct_index = len(self.options)
        self.options.append(_clean_option(text))

    def to_record(self, marks: int) -> Optional[QuestionRecord]:
        if len(self.options) < MIN_OPTIONS:
            logger.debug("Dropping question %s: only %d option(s)", self.number, len(self.options))
            return None
        if not 0 <= self.correct_index < len(self.options):
            logger.debug("Dropping question %s: no option marked with '*'", self.number)
            return None
        return QuestionRecord(
            question=self.question,
            options=list(self.options),
            correct_answer=self.options[self.correct_index],
            marks=marks,
        )


def _clean_option(text: str) -> str:
    return re.sub(r"\*+", "", text).strip()


def _parse_single_line(number: str, rest: str) -> _OpenQuestion:
    markers = list(INLINE_OPTION_MARKER.finditer(rest))
    if not markers:
        return _OpenQuestion(number=number, question=rest.strip())

    current = _OpenQuestion(number=number, question=rest[: markers[0].start()].strip())
    for index, marker in enumerate(markers):
        end = markers[index + 1].start() if index + 1 < len(markers) else len(rest)
        text = rest[marker.end():end]
        if _clean_option(text):
            current.add_option(text)
    return current


def parse_question_document(text: str, marks_per_question: int) -> List[QuestionRecord]:
    """Extract multiple choice questions from ``text`` in document order.

    Args:
        text: Raw newline-delimited text of the uploaded document
        marks_per_question: Marks given to every extracted question

    Returns:
        The valid question records; malformed questions are left out

    Raises:
        ValidationError: If marks_per_question is not a positive integer
    """
    if isinstance(marks_per_question, bool) or not isinstance(marks_per_question, int) or marks_per_question < 1:
        raise ValidationError("Marks per question must be a positive integer")

    records: List[QuestionRecord] = []
    current: Optional[_OpenQuestion] = None

    def finish() -> None:
        if current is None:
            return
        record = current.to_record(marks_per_question)
        if record is not None:
            records.append(record)

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue

        single = SINGLE_LINE_START.match(line)
        if single:
            finish()
            current = _parse_single_line(single.group(1), single.group(2))
            continue

        start = MULTI_LINE_START.match(line)
        if start:
            finish()
            current = _OpenQuestion(number=start.group(1), question=re.sub(r"\*$", "", start.group(2)).strip())
            continue

        if MULTI_LINE_OPTION.match(line) and current is not None:
            current.add_option(MULTI_LINE_OPTION.sub("", line, count=1))

    finish()
    logger.info("Parsed %d question(s) from document", len(records))
    return records
