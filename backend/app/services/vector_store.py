"""Vector store service using Pinecone"""
from pinecone import Pinecone, ServerlessSpec
from pydantic import BaseModel
from typing import List, Optional
import asyncio
import logging
from ..models.document import SearchIndexEntry

logger = logging.getLogger(__name__)


class MatchedChunk(BaseModel):
    """Ranked chunk returned by similarity search"""
    document_id: str
    page_number: int
    file_name: str = ""
    content: str
    score: float = 0.0


class VectorStore:
    """Store search index entries and run apartment-scoped similarity search"""

    def __init__(
        self,
        api_key: str,
        index_name: str,
        dimension: int = 768,
        pool_threads: int = 30
    ):
        """
        Initialize Pinecone vector store

        Args:
            api_key: Pinecone API key
            index_name: Name of the index
            dimension: Dimension of embeddings
            pool_threads: Number of threads for connection pool
        """
        self.index_name = index_name
        self.dimension = dimension

        self.pc = Pinecone(api_key=api_key, pool_threads=pool_threads)
        self._ensure_index_exists()
        self.index = self.pc.Index(index_name)

        logger.info(f"VectorStore initialized with index: {index_name}")

    def _ensure_index_exists(self):
        """Create index if it doesn't exist"""
        try:
            existing_indexes = [index.name for index in self.pc.list_indexes()]

            if self.index_name not in existing_indexes:
                logger.info(f"Creating new index: {self.index_name}")
                self.pc.create_index(
                    name=self.index_name,
                    dimension=self.dimension,
                    metric="cosine",
                    spec=ServerlessSpec(cloud="aws", region="us-east-1")
                )
            else:
                logger.info(f"Index already exists: {self.index_name}")

        except Exception as e:
            logger.error(f"Error ensuring index exists: {e}")
            raise

    async def upsert_entries(
        self,
        document_id: str,
        apartment_id: Optional[str],
        file_name: str,
        entries: List[SearchIndexEntry],
        embeddings: List[List[float]],
        batch_size: int = 100,
        max_concurrent: int = 10
    ):
        """
        Store search index entries of one document

        Args:
            document_id: Owning document
            apartment_id: Apartment used to scope searches
            file_name: Source file name shown in provenance prefixes
            entries: Search index entries in document order
            embeddings: One vector per entry
            batch_size: Number of vectors per upsert
            max_concurrent: Maximum concurrent upserts
        """
        if len(entries) != len(embeddings):
            raise ValueError("Number of entries must match number of embeddings")

        vectors = [
            {
                "id": f"{document_id}_b{position}",
                "values": embedding,
                "metadata": {
                    "document_id": document_id,
                    "apartment_id": apartment_id or "",
                    "file_name": file_name,
                    "page_number": entry.page_number,
                    "block": position,
                    "content": entry.text,
                },
            }
            for position, (entry, embedding) in enumerate(zip(entries, embeddings))
        ]

        batches = [vectors[i:i + batch_size] for i in range(0, len(vectors), batch_size)]
        semaphore = asyncio.Semaphore(max_concurrent)

        async def upsert_batch(batch: List[dict], batch_num: int):
            async with semaphore:
                # Sync client; keep it off the event loop
                await asyncio.to_thread(self.index.upsert, vectors=batch)
                logger.debug(f"Upserted batch {batch_num + 1}/{len(batches)}")

        try:
            await asyncio.gather(*[upsert_batch(batch, i) for i, batch in enumerate(batches)])
            logger.info(f"Upserted {len(vectors)} entries for document {document_id}")
        except Exception as e:
            logger.error(f"Error upserting entries: {e}")
            raise

    async def match_chunks(
        self,
        query_embedding: List[float],
        match_threshold: float,
        match_count: int,
        apartment_id: str
    ) -> List[MatchedChunk]:
        """
        Similarity search restricted to one apartment

        Args:
            query_embedding: Query embedding vector
            match_threshold: Minimum similarity score
            match_count: Maximum number of results
            apartment_id: Apartment whose documents are searched

        Returns:
            Ranked chunks above the threshold
        """
        try:
            results = await asyncio.to_thread(
                self.index.query,
                vector=query_embedding,
                top_k=match_count,
                include_metadata=True,
                filter={"apartment_id": {"$eq": apartment_id}},
            )
        except Exception as e:
            logger.error(f"Error searching vector store: {e}")
            raise

        chunks = []
        for match in results.matches:
            if match.score is not None and match.score < match_threshold:
                continue
            metadata = match.metadata or {}
            chunks.append(MatchedChunk(
                document_id=metadata.get("document_id", ""),
                page_number=int(metadata.get("page_number", 0)),
                file_name=metadata.get("file_name", ""),
                content=metadata.get("content", ""),
                score=match.score or 0.0,
            ))

        logger.info(f"Found {len(chunks)} chunks above threshold {match_threshold}")
        return chunks

    async def delete_by_document_id(self, document_id: str):
        """Delete all entries of a document before it is re-indexed"""
        try:
            await asyncio.to_thread(self.index.delete, filter={"document_id": {"$eq": document_id}})
            logger.info(f"Deleted vector entries for document: {document_id}")
        except Exception as e:
            logger.error(f"Error deleting entries: {e}")
            raise
