"""Structural extraction of pages and blocks from Document AI responses

Two response shapes are handled:

- flat: ``pages[].blocks[]`` whose text is addressed by offsets into the
  document's ``text`` (OCR processor output)
- nested: ``documentLayout.blocks[]`` tree of text, table and list blocks
  (layout parser output)
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from ..models.document import Block, Page
from .geometry import GeometryMode, to_quad_points

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 1000.0

Vertices = Sequence[Dict[str, Any]]


class ResponseShape(str, Enum):
    FLAT = "flat"
    NESTED = "nested"
    UNKNOWN = "unknown"


def detect_shape(document: Dict[str, Any]) -> ResponseShape:
    """Resolve which response shape a Document AI document uses"""
    layout = document.get("documentLayout")
    if isinstance(layout, dict) and isinstance(layout.get("blocks"), list):
        return ResponseShape.NESTED
    if isinstance(document.get("pages"), list):
        return ResponseShape.FLAT
    return ResponseShape.UNKNOWN


def extract_pages(
    document: Dict[str, Any],
    mode: GeometryMode = GeometryMode.Y_FLIP,
) -> List[Page]:
    """
    Extract pages and blocks regardless of the response shape

    Returns an empty list when the shape is not recognized; callers fall back
    to the raw text in that case.
    """
    shape = detect_shape(document)
    if shape == ResponseShape.NESTED:
        return extract_nested_pages(document, mode)
    if shape == ResponseShape.FLAT:
        return extract_flat_pages(document, mode)

    logger.warning(f"Unrecognized layout response shape (keys: {sorted(document.keys())[:10]})")
    return []


def extract_text(document: Dict[str, Any]) -> str:
    """Raw full text of a response document"""
    if document.get("text"):
        return document["text"]
    if detect_shape(document) == ResponseShape.NESTED:
        pieces: List[str] = []
        for node in document["documentLayout"]["blocks"]:
            pieces.extend(collect_text(node))
        return "\n".join(piece.strip() for piece in pieces if piece.strip())
    return ""


# ---------------------------------------------------------------------------
# Flat shape
# ---------------------------------------------------------------------------

def _page_dimensions(dimension: Optional[Dict[str, Any]]) -> Tuple[float, float]:
    dimension = dimension or {}
    width = float(dimension.get("width") or DEFAULT_PAGE_SIZE)
    height = float(dimension.get("height") or DEFAULT_PAGE_SIZE)
    return width, height


def _normalized_vertices(poly: Optional[Dict[str, Any]]) -> Optional[Vertices]:
    if not isinstance(poly, dict):
        return None
    vertices = poly.get("normalizedVertices")
    return vertices or None


def _text_from_anchor(full_text: str, layout: Dict[str, Any]) -> str:
    anchor = layout.get("textAnchor") or {}
    parts = []
    for segment in anchor.get("textSegments") or []:
        # int64 offsets arrive as strings; a missing startIndex means 0
        start = int(segment.get("startIndex") or 0)
        end = int(segment.get("endIndex") or 0)
        parts.append(full_text[start:end])
    if not parts and anchor.get("content"):
        return anchor["content"]
    return "".join(parts)


def extract_flat_pages(
    document: Dict[str, Any],
    mode: GeometryMode = GeometryMode.Y_FLIP,
) -> List[Page]:
    """Pages from the ``pages[].blocks[]`` model"""
    full_text = document.get("text") or ""
    pages: List[Page] = []

    for index, raw_page in enumerate(document.get("pages") or []):
        page_number = int(raw_page.get("pageNumber") or index + 1)
        width, height = _page_dimensions(raw_page.get("dimension"))

        blocks: List[Block] = []
        for raw_block in raw_page.get("blocks") or raw_page.get("paragraphs") or []:
            layout = raw_block.get("layout") or {}
            text = _text_from_anchor(full_text, layout).strip()
            if not text:
                continue
            vertices = _normalized_vertices(layout.get("boundingPoly"))
            blocks.append(Block(
                text=text,
                quad_points=to_quad_points(vertices, width, height, mode),
                page_number=page_number,
            ))

        pages.append(Page(page_number=page_number, width=width, height=height, blocks=blocks))

    return pages


# ---------------------------------------------------------------------------
# Nested shape
# ---------------------------------------------------------------------------

def geometry_from_layout(node: Dict[str, Any]) -> Optional[Vertices]:
    layout = node.get("layout")
    if isinstance(layout, dict):
        return _normalized_vertices(layout.get("boundingPoly"))
    return None


def geometry_from_page_layouts(node: Dict[str, Any]) -> Optional[Vertices]:
    for page_layout in node.get("pageLayouts") or []:
        vertices = _normalized_vertices((page_layout or {}).get("boundingPoly"))
        if vertices:
            return vertices
    return None


def geometry_from_bounding_box(node: Dict[str, Any]) -> Optional[Vertices]:
    return _normalized_vertices(node.get("boundingBox"))


# Tried in order, first non-empty result wins
GEOMETRY_EXTRACTORS: Tuple[Callable[[Dict[str, Any]], Optional[Vertices]], ...] = (
    geometry_from_layout,
    geometry_from_page_layouts,
    geometry_from_bounding_box,
)


def resolve_block_vertices(node: Dict[str, Any]) -> Optional[Vertices]:
    for extractor in GEOMETRY_EXTRACTORS:
        vertices = extractor(node)
        if vertices:
            return vertices
    return None


def _child_blocks(node: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Every nested block of a node in document order"""
    children: List[Dict[str, Any]] = []

    text_block = node.get("textBlock") or {}
    children.extend(text_block.get("blocks") or [])

    table = node.get("tableBlock") or {}
    for row in (table.get("headerRows") or []) + (table.get("bodyRows") or []):
        for cell in row.get("cells") or []:
            children.extend(cell.get("blocks") or [])

    list_block = node.get("listBlock") or {}
    for entry in list_block.get("listEntries") or []:
        children.extend(entry.get("blocks") or [])

    children.extend(node.get("blocks") or [])
    return children


def collect_text(node: Dict[str, Any]) -> List[str]:
    """Depth-first list of every text leaf below (and including) a node"""
    pieces: List[str] = []
    own = (node.get("textBlock") or {}).get("text")
    if own:
        pieces.append(own)
    for child in _child_blocks(node):
        pieces.extend(collect_text(child))
    return pieces


def _page_of(node: Dict[str, Any], inherited: int) -> int:
    span = node.get("pageSpan") or {}
    try:
        return int(span.get("pageStart") or inherited)
    except (TypeError, ValueError):
        return inherited


def _walk(node: Dict[str, Any], inherited_page: int, out: List[Tuple[int, str, Dict[str, Any]]]):
    page_number = _page_of(node, inherited_page)

    # Tables and lists become a single block carrying all of their text
    if node.get("tableBlock") or node.get("listBlock"):
        text = "\n".join(piece.strip() for piece in collect_text(node) if piece.strip())
        if text:
            out.append((page_number, text, node))
        return

    own = ((node.get("textBlock") or {}).get("text") or "").strip()
    if own:
        out.append((page_number, own, node))
    for child in _child_blocks(node):
        _walk(child, page_number, out)


def extract_nested_pages(
    document: Dict[str, Any],
    mode: GeometryMode = GeometryMode.Y_FLIP,
) -> List[Page]:
    """Pages synthesized from the ``documentLayout`` block tree"""
    collected: List[Tuple[int, str, Dict[str, Any]]] = []
    for node in document["documentLayout"]["blocks"]:
        _walk(node, 1, collected)

    dimensions: Dict[int, Tuple[float, float]] = {}
    for index, raw_page in enumerate(document.get("pages") or []):
        number = int(raw_page.get("pageNumber") or index + 1)
        dimensions[number] = _page_dimensions(raw_page.get("dimension"))

    pages: Dict[int, Page] = {}
    missing_geometry = 0
    for page_number, text, node in collected:
        width, height = dimensions.get(page_number, (DEFAULT_PAGE_SIZE, DEFAULT_PAGE_SIZE))
        page = pages.setdefault(
            page_number,
            Page(page_number=page_number, width=width, height=height),
        )

        vertices = resolve_block_vertices(node)
        if vertices is None:
            missing_geometry += 1
            logger.warning(
                f"No geometry for block {node.get('blockId', '?')} on page {page_number}; "
                "recording zero quad"
            )
        page.blocks.append(Block(
            text=text,
            quad_points=to_quad_points(vertices, width, height, mode),
            page_number=page_number,
        ))

    logger.debug(f"Nested layout: {len(collected)} blocks, {missing_geometry} without geometry")
    return [pages[number] for number in sorted(pages)]
