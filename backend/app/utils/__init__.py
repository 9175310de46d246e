"""Utility functions and helpers"""
from .helpers import (
    PROVENANCE_TAG_PATTERN,
    format_provenance_tag,
    find_provenance_tags,
    strip_whitespace,
    generate_job_id,
    generate_message_id,
    generate_annotation_id,
    extract_text_snippets,
)

__all__ = [
    "PROVENANCE_TAG_PATTERN",
    "format_provenance_tag",
    "find_provenance_tags",
    "strip_whitespace",
    "generate_job_id",
    "generate_message_id",
    "generate_annotation_id",
    "extract_text_snippets",
]
