"""API request/response models"""
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from .document import OCRStatus


class ChatMessageIn(BaseModel):
    """Single message sent by the chat UI"""
    role: str  # "user" or "assistant"
    content: str = ""


class ChatRequest(BaseModel):
    """Request for a streamed chat answer"""
    messages: List[ChatMessageIn] = Field(default_factory=list)
    sessionId: Optional[str] = None


class Source(BaseModel):
    """Citation pointing back to a document, page and block"""
    fileId: str
    page: Optional[str] = None
    blockId: Optional[str] = None  # position in the flattened block sequence
    citation: Optional[str] = None
    title: Optional[str] = None

    def dedupe_key(self) -> tuple:
        return (self.fileId, self.page, self.blockId)


class ChatSession(BaseModel):
    """Chat session as stored in the chat_sessions collection"""
    id: str
    apartment_id: Optional[str] = None
    title: Optional[str] = None


class StoredChatMessage(BaseModel):
    """Persisted chat turn"""
    id: str
    session_id: str
    role: str
    content: str
    sources: List[Source] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class OCRRecordPayload(BaseModel):
    """Row delivered by the documents insert webhook"""
    id: str
    file_path: str
    apartment_id: Optional[str] = None


class OCRWebhookRequest(BaseModel):
    """Database webhook body"""
    record: Optional[OCRRecordPayload] = None


class OCRStatusResponse(BaseModel):
    """OCR status of a document"""
    document_id: str
    ocr_status: OCRStatus
    page_count: int = 0
    block_count: int = 0
    index_entries: int = 0
    message: Optional[str] = None


class OCRTriggerResponse(BaseModel):
    """Response for an accepted OCR run"""
    document_id: str
    accepted: bool = True
    reuse_existing: bool = False
    message: str = "OCR processing started"


class HighlightAnnotation(BaseModel):
    """Highlight annotation understood by the embedded PDF viewer"""
    id: str
    type: str = "Annotation"
    motivation: str = "commenting"
    bodyValue: str = ""
    target: dict
    context: List[str] = Field(
        default_factory=lambda: [
            "https://www.w3.org/ns/anno.jsonld",
            "https://comments.acrobat.com/ns/anno.jsonld",
        ],
        serialization_alias="@context",
    )
