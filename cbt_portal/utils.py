"""HTML sanitizing for authored exam content and marks range checks."""

import bleach

# Formatting teachers may keep in question text; everything else is stripped
QUESTION_TAGS = ["b", "i", "u", "em", "strong", "p", "br", "code", "pre", "ul", "ol", "li"]


def sanitize_question_text(text: str) -> str:
    return bleach.clean(text, tags=QUESTION_TAGS, attributes={}, strip=True).strip()


def sanitize_plain_text(text: str) -> str:
    """Strip all HTML from short free text such as options and titles."""
    return bleach.clean(text, tags=[], strip=True).strip()


def validate_marks(marks: float, max_marks: int) -> bool:
    """Raise ValueError unless ``0 <= marks <= max_marks``."""
    if marks is None or not 0 <= marks <= max_marks:
        raise ValueError(f"Marks {marks} out of range [0, {max_marks}]")
    return True
