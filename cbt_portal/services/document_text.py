"""Plain text extraction from uploaded question documents."""

import io
import logging

from docx import Document

from cbt_portal.errors import ValidationError

logger = logging.getLogger(__name__)

DOCX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def extract_text(filename: str, content_type: str, data: bytes) -> str:
    """Return the document's text, one paragraph per line.

    Word documents are read with python-docx; anything else must be UTF-8 text.
    """
    if not data:
        raise ValidationError("No file uploaded")

    name = (filename or "").lower()
    content_type = content_type or ""
    if name.endswith(".docx") or content_type == DOCX_CONTENT_TYPE:
        try:
            doc = Document(io.BytesIO(data))
        except Exception as e:
            raise ValidationError(f"Could not read Word document: {e}")
        text = "\n".join(paragraph.text for paragraph in doc.paragraphs)
    elif name.endswith(".txt") or content_type.startswith("text/"):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ValidationError("Text files must be UTF-8 encoded")
    else:
        raise ValidationError("Unsupported file type; upload a .docx or .txt document")

    logger.debug("Extracted %d characters from %s", len(text), filename)
    return text
