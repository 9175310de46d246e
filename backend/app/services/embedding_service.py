"""Embedding service using Google Vertex AI"""
from langchain_google_vertexai import VertexAIEmbeddings
from typing import List, Optional
import logging
import asyncio

logger = logging.getLogger(__name__)


class EmbeddingService:
    """Vectors for search index entries and chat questions"""

    def __init__(
        self,
        model_name: str = "text-embedding-004",
        project: Optional[str] = None,
        location: str = "us-central1",
        batch_size: int = 100,
        max_concurrent: int = 5,
    ):
        """
        Initialize embedding service

        Args:
            model_name: Vertex AI text embedding model
            project: Google Cloud project
            location: Vertex AI location
            batch_size: Texts per embedding request
            max_concurrent: Requests in flight at once
        """
        self.model_name = model_name
        self.batch_size = batch_size
        self._semaphore_size = max_concurrent
        self.embeddings = VertexAIEmbeddings(model_name=model_name, project=project, location=location)
        logger.info(f"EmbeddingService ready ({model_name}, project={project}, location={location})")

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """
        Embed index entry texts, keeping input order

        Blank texts are sent as a single space; the API rejects empty input.
        """
        if not texts:
            return []

        prepared = [text if text.strip() else " " for text in texts]
        batches = [prepared[start:start + self.batch_size] for start in range(0, len(prepared), self.batch_size)]
        semaphore = asyncio.Semaphore(self._semaphore_size)

        async def embed_batch(batch: List[str]) -> List[List[float]]:
            async with semaphore:
                return await self.embeddings.aembed_documents(batch)

        results = await asyncio.gather(*[embed_batch(batch) for batch in batches])
        vectors = [vector for batch_vectors in results for vector in batch_vectors]
        logger.info(f"Embedded {len(vectors)} texts in {len(batches)} requests")
        return vectors

    async def embed_query(self, query: str) -> List[float]:
        """Embed a chat question"""
        return await self.embeddings.aembed_query(query)
