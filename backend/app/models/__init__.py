"""Data models for the application"""
from .document import (
    ZERO_QUAD,
    OCRStatus,
    Block,
    Page,
    SearchIndexEntry,
    DocumentRecord,
)
from .response import (
    ChatMessageIn,
    ChatRequest,
    Source,
    ChatSession,
    StoredChatMessage,
    OCRWebhookRequest,
    OCRStatusResponse,
    OCRTriggerResponse,
    HighlightAnnotation,
)

__all__ = [
    "ZERO_QUAD",
    "OCRStatus",
    "Block",
    "Page",
    "SearchIndexEntry",
    "DocumentRecord",
    "ChatMessageIn",
    "ChatRequest",
    "Source",
    "ChatSession",
    "StoredChatMessage",
    "OCRWebhookRequest",
    "OCRStatusResponse",
    "OCRTriggerResponse",
    "HighlightAnnotation",
]
