"""Document data models"""
from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, List, Optional
from datetime import datetime


ZERO_QUAD: List[float] = [0.0] * 8


class OCRStatus(str, Enum):
    """OCR lifecycle of an uploaded document"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Block(BaseModel):
    """One OCR/layout unit on a page.

    ``quad_points`` holds four corners in pixel space. An all-zero quad means
    no highlight is available for this block.
    """
    text: str
    quad_points: List[float] = Field(default_factory=lambda: list(ZERO_QUAD))
    page_number: int

    @property
    def has_geometry(self) -> bool:
        return any(value != 0 for value in self.quad_points)


class Page(BaseModel):
    """Data for a single PDF page"""
    page_number: int  # 1-based
    width: float = 1000.0
    height: float = 1000.0
    blocks: List[Block] = Field(default_factory=list)


class SearchIndexEntry(BaseModel):
    """Geometry-free projection of a block used for retrieval"""
    text: str
    page_number: int


class DocumentRecord(BaseModel):
    """Uploaded PDF as stored in the documents collection"""
    id: str
    apartment_id: Optional[str] = None
    file_name: str = ""
    file_path: str
    ocr_status: OCRStatus = OCRStatus.PENDING
    ocr_text: Optional[str] = None
    ocr_pages: List[Page] = Field(default_factory=list)
    ocr_search_index: List[SearchIndexEntry] = Field(default_factory=list)
    ocr_output_prefixes: Dict[str, str] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
