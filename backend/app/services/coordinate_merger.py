"""Backfill missing block geometry from a secondary OCR pass"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from ..models.document import Page
from ..utils.helpers import strip_whitespace

logger = logging.getLogger(__name__)

DEFAULT_PREFIX_LENGTH = 100


@dataclass
class MergeResult:
    pages: List[Page]
    backfilled: int = 0
    unmatched: int = 0


def normalize_match_key(text: str, prefix_length: int = DEFAULT_PREFIX_LENGTH) -> str:
    """Whitespace-free, lowercased prefix used to pair blocks across passes"""
    return strip_whitespace(text).lower()[:prefix_length]


def _find_by_containment(
    key: str,
    page_number: int,
    entries: Dict[Tuple[int, str], List[float]],
) -> Optional[List[float]]:
    cross_page: Optional[List[float]] = None
    for (candidate_page, candidate_key), quad in entries.items():
        if key in candidate_key or candidate_key in key:
            if candidate_page == page_number:
                return quad
            if cross_page is None:
                cross_page = quad
    return cross_page


def merge_coordinates(
    primary: List[Page],
    secondary: List[Page],
    prefix_length: int = DEFAULT_PREFIX_LENGTH,
) -> MergeResult:
    """
    Give zero-geometry blocks of the primary pass the geometry of the matching
    secondary block

    Layout and OCR segmentation of the same page often disagree, so an exact
    same-page key lookup is followed by a containment scan over every
    secondary block (same page preferred, other pages accepted only when no
    same-page candidate exists).

    Args:
        primary: Pages from the layout pass (authoritative for text/structure)
        secondary: Pages from the OCR pass (authoritative for geometry)
        prefix_length: Length of the normalized match key

    Returns:
        MergeResult with copies of the primary pages
    """
    entries: Dict[Tuple[int, str], List[float]] = {}
    for page in secondary:
        for block in page.blocks:
            key = normalize_match_key(block.text, prefix_length)
            if key and block.has_geometry:
                entries.setdefault((page.page_number, key), list(block.quad_points))

    merged = [page.model_copy(deep=True) for page in primary]
    result = MergeResult(pages=merged)
    if not entries:
        result.unmatched = sum(
            1 for page in merged for block in page.blocks if not block.has_geometry
        )
        return result

    for page in merged:
        for block in page.blocks:
            if block.has_geometry:
                continue
            key = normalize_match_key(block.text, prefix_length)
            if not key:
                result.unmatched += 1
                continue

            quad = entries.get((page.page_number, key))
            if quad is None:
                quad = _find_by_containment(key, page.page_number, entries)

            if quad is None:
                result.unmatched += 1
                continue
            block.quad_points = list(quad)
            result.backfilled += 1

    logger.info(
        f"Coordinate merge: {result.backfilled} blocks backfilled, "
        f"{result.unmatched} still without geometry"
    )
    return result
