"""Citation generator for PDF viewer highlighting"""
from typing import List, Optional
import logging
from ..models.document import Block, DocumentRecord
from ..models.response import HighlightAnnotation, Source
from ..utils.helpers import extract_text_snippets, generate_annotation_id
from .geometry import bounding_box, is_zero_quad
from .search_index import flatten_blocks

logger = logging.getLogger(__name__)


class CitationGenerator:
    """Generate viewer highlight annotations for cited blocks"""

    def __init__(self, color: str = "#FFFF00", opacity: float = 0.4):
        """
        Initialize citation generator

        Args:
            color: Stroke color of the highlight
            opacity: Highlight opacity
        """
        self.color = color
        self.opacity = opacity
        logger.info("CitationGenerator initialized")

    @staticmethod
    def _parse_int(value: Optional[str]) -> Optional[int]:
        if value is None:
            return None
        try:
            return int(str(value).strip())
        except ValueError:
            return None

    def resolve_blocks(self, document: DocumentRecord, source: Source) -> List[Block]:
        """
        Blocks a source points at

        ``blockId`` is the position in the flattened block sequence; without
        it every block of ``page`` is returned.
        """
        blocks = flatten_blocks(document.ocr_pages)
        position = self._parse_int(source.blockId)
        page = self._parse_int(source.page)

        if position is not None:
            if 0 <= position < len(blocks):
                return [blocks[position]]
            logger.warning(f"Block {position} out of range for document {document.id} ({len(blocks)} blocks)")
            return []

        if page is not None:
            return [block for block in blocks if block.page_number == page]

        return []

    def _annotation(self, document: DocumentRecord, block: Block) -> HighlightAnnotation:
        return HighlightAnnotation(
            id=generate_annotation_id(),
            bodyValue=extract_text_snippets(block.text),
            target={
                "source": document.id,
                "selector": {
                    "node": {"index": block.page_number - 1},
                    "opacity": self.opacity,
                    "subtype": "highlight",
                    "boundingBox": bounding_box(block.quad_points),
                    "quadPoints": list(block.quad_points),
                    "strokeColor": self.color,
                    "type": "AdobeAnnoSelector",
                },
            },
        )

    def build_annotations(self, document: DocumentRecord, source: Source) -> List[HighlightAnnotation]:
        """
        Highlight annotations for one cited source

        Blocks without geometry produce no annotation.
        """
        annotations = [
            self._annotation(document, block)
            for block in self.resolve_blocks(document, source)
            if not is_zero_quad(block.quad_points)
        ]
        logger.debug(f"Built {len(annotations)} annotations for {source.fileId} page={source.page} block={source.blockId}")
        return annotations
