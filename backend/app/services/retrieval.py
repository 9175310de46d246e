"""Context retrieval for chat answers"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..utils.helpers import format_provenance_tag

logger = logging.getLogger(__name__)

NO_DOCUMENTS_CONTEXT = "No documents have been provided."


class RetrievalMode(str, Enum):
    SIMILARITY = "similarity"
    FULL_CONTEXT = "full_context"


@dataclass
class RetrievalResult:
    context: str
    mode: RetrievalMode
    passages: int = 0
    document_ids: List[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return self.passages == 0


class RetrievalService:
    """Build the provenance-tagged context block for a question"""

    def __init__(
        self,
        documents,
        embedding_service=None,
        vector_store=None,
        match_threshold: float = 0.3,
        match_count: int = 20,
    ):
        """
        Initialize retrieval service

        Args:
            documents: DocumentRepository used by full-context retrieval
            embedding_service: EmbeddingService for similarity retrieval
            vector_store: VectorStore; full-context retrieval is used when absent
            match_threshold: Minimum similarity score
            match_count: Maximum number of similarity results
        """
        self.documents = documents
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.match_threshold = match_threshold
        self.match_count = match_count

    @property
    def mode(self) -> RetrievalMode:
        if self.vector_store is not None and self.embedding_service is not None:
            return RetrievalMode.SIMILARITY
        return RetrievalMode.FULL_CONTEXT

    async def build_context(self, query: str, apartment_id: Optional[str]) -> RetrievalResult:
        """
        Retrieve passages for a question within one apartment

        Similarity search falls back to the full context of the apartment
        when it yields nothing, including after embedding or search errors.
        Returns the placeholder context when neither finds anything.
        """
        mode = self.mode
        if not apartment_id:
            return RetrievalResult(context=NO_DOCUMENTS_CONTEXT, mode=mode)

        passages, document_ids = [], []
        if mode == RetrievalMode.SIMILARITY:
            passages, document_ids = await self._similarity_passages(query, apartment_id)
            if not passages:
                # Documents whose vector indexing failed are still readable here
                logger.info(f"No similarity matches for apartment {apartment_id}, reading full context")
                mode = RetrievalMode.FULL_CONTEXT
        if mode == RetrievalMode.FULL_CONTEXT:
            passages, document_ids = await self._full_context_passages(apartment_id)

        if not passages:
            logger.info(f"No context found for apartment {apartment_id} ({mode.value})")
            return RetrievalResult(context=NO_DOCUMENTS_CONTEXT, mode=mode)

        logger.info(f"Context loaded via {mode.value}: {len(passages)} passages")
        return RetrievalResult(
            context="\n\n".join(passages),
            mode=mode,
            passages=len(passages),
            document_ids=document_ids,
        )

    async def _similarity_passages(self, query: str, apartment_id: str):
        try:
            query_vector = await self.embedding_service.embed_query(query)
        except Exception as e:
            logger.error(f"Failed to generate query embedding: {e}")
            return [], []

        try:
            chunks = await self.vector_store.match_chunks(
                query_embedding=query_vector,
                match_threshold=self.match_threshold,
                match_count=self.match_count,
                apartment_id=apartment_id,
            )
        except Exception as e:
            logger.error(f"Vector search error: {e}")
            return [], []

        passages = [
            f"{format_provenance_tag(chunk.document_id, chunk.page_number, file_name=chunk.file_name)}: {chunk.content}"
            for chunk in chunks
        ]
        document_ids = list(dict.fromkeys(chunk.document_id for chunk in chunks))
        return passages, document_ids

    async def _full_context_passages(self, apartment_id: str):
        documents = await self.documents.list_completed(apartment_id)
        passages = []
        document_ids = []
        for document in documents:
            if not document.ocr_search_index:
                continue
            document_ids.append(document.id)
            for position, entry in enumerate(document.ocr_search_index):
                tag = format_provenance_tag(document.id, entry.page_number, position)
                passages.append(f"{tag}: {entry.text}")
        return passages, document_ids
