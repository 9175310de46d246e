"""Helper utility functions"""
import re
import uuid
from typing import Any, List, Optional, Tuple


# Provenance tag shared by retrieval (writer) and citation extraction (reader).
# Brackets are optional on the reading side; Page and Block are individually optional.
PROVENANCE_TAG_PATTERN = re.compile(
    r"\[?\s*SourceID:\s*(?P<file_id>[^,\]\s)]+)"
    r"(?:\s*,\s*Page:\s*(?P<page>[^,\]\s)]+))?"
    r"(?:\s*,\s*Block:\s*(?P<block>[^,\]\s)]+))?"
    r"(?:\s*,\s*File:[^\]\n]*)?"
    r"\]?"
)

_WHITESPACE = re.compile(r"[\s\u3000]+")


def format_provenance_tag(
    document_id: str,
    page: Optional[Any] = None,
    block: Optional[Any] = None,
    file_name: Optional[str] = None,
) -> str:
    """Build ``[SourceID: <id>, Page: <n>, Block: <n>]`` (optionally with a File field)"""
    parts = [f"SourceID: {document_id}"]
    if page is not None:
        parts.append(f"Page: {page}")
    if block is not None:
        parts.append(f"Block: {block}")
    if file_name:
        parts.append(f"File: {file_name}")
    return "[" + ", ".join(parts) + "]"


def find_provenance_tags(text: str) -> List[Tuple[str, Optional[str], Optional[str]]]:
    """Return every (file_id, page, block) triple mentioned in text, in order"""
    return [
        (match.group("file_id"), match.group("page"), match.group("block"))
        for match in PROVENANCE_TAG_PATTERN.finditer(text or "")
    ]


def strip_whitespace(text: str) -> str:
    """Remove every whitespace character, including the ideographic space"""
    return _WHITESPACE.sub("", text or "")


def generate_job_id() -> str:
    """Generate unique suffix for a batch job output prefix"""
    return uuid.uuid4().hex[:16]


def generate_message_id() -> str:
    """Generate unique chat message ID"""
    return f"msg_{uuid.uuid4().hex[:16]}"


def generate_annotation_id() -> str:
    """Generate unique annotation ID"""
    return str(uuid.uuid4())


def extract_text_snippets(text: str, max_length: int = 200) -> str:
    """Extract snippet from text"""
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."
