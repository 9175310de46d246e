"""Flattened, geometry-free search index built from the page tree"""
import logging
from typing import List

from ..models.document import Block, Page, SearchIndexEntry

logger = logging.getLogger(__name__)


def flatten_blocks(pages: List[Page]) -> List[Block]:
    """Blocks in document order: pages ascending, original order within a page"""
    ordered = sorted(pages, key=lambda page: page.page_number)
    return [block for page in ordered for block in page.blocks]


def build_search_index(pages: List[Page], max_entries: int) -> List[SearchIndexEntry]:
    """
    Project the page tree to ``{text, page_number}`` entries

    Args:
        pages: Merged page/block tree
        max_entries: Upper bound on the number of entries

    Returns:
        Entries in document order, truncated to ``max_entries``
    """
    blocks = flatten_blocks(pages)
    if len(blocks) > max_entries:
        logger.warning(f"Search index truncated from {len(blocks)} to {max_entries} entries")
        blocks = blocks[:max(max_entries, 0)]

    return [SearchIndexEntry(text=block.text, page_number=block.page_number) for block in blocks]
