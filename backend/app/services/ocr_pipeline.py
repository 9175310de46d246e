"""OCR ingestion workflow: PDF -> annotated page tree -> search index"""
import logging
from dataclasses import dataclass
from typing import List, Optional

from ..config import Settings
from ..models.document import DocumentRecord, OCRStatus, Page
from .coordinate_merger import merge_coordinates
from .document_ai import BatchJobOrchestrator, BatchJobResult
from .errors import ConfigurationError, DocumentNotFoundError
from .geometry import GeometryMode
from .layout_extractor import extract_flat_pages, extract_pages, extract_text
from .search_index import build_search_index

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    text: str
    pages: List[Page]
    backfilled: int = 0


class OCRPipeline:
    """Run Document AI on a stored PDF and persist the page tree and search index"""

    def __init__(
        self,
        settings: Settings,
        documents,
        orchestrator: Optional[BatchJobOrchestrator],
        embedding_service=None,
        vector_store=None,
    ):
        """
        Initialize OCR pipeline

        Args:
            settings: Application settings
            documents: DocumentRepository
            orchestrator: Batch job orchestrator (None when Document AI is not configured)
            embedding_service: Optional EmbeddingService for vector indexing
            vector_store: Optional VectorStore for vector indexing
        """
        self.settings = settings
        self.documents = documents
        self.orchestrator = orchestrator
        self.embedding_service = embedding_service
        self.vector_store = vector_store
        self.geometry_mode = GeometryMode(settings.ocr_geometry_mode)

    def check_configuration(self):
        missing = self.settings.missing_ocr_settings()
        if missing:
            raise ConfigurationError(f"OCR is not configured; missing: {', '.join(missing)}")
        if self.orchestrator is None:
            raise ConfigurationError("OCR is not configured; no batch job orchestrator available")

    def extract(self, result: BatchJobResult) -> ExtractionResult:
        """Turn result shards into the merged page tree"""
        texts: List[str] = []
        pages: List[Page] = []
        for shard in result.layout_shards:
            texts.append(extract_text(shard))
            pages.extend(extract_pages(shard, self.geometry_mode))

        backfilled = 0
        if result.ocr_shards:
            secondary: List[Page] = []
            for shard in result.ocr_shards:
                secondary.extend(extract_flat_pages(shard, self.geometry_mode))
                if not any(texts):
                    texts.append(extract_text(shard))
            merged = merge_coordinates(pages, secondary, self.settings.ocr_match_prefix_length)
            pages, backfilled = merged.pages, merged.backfilled

        text = "\n".join(t for t in texts if t)
        if not pages:
            logger.warning("No usable structure in layout results; keeping raw text only")
        return ExtractionResult(text=text, pages=pages, backfilled=backfilled)

    async def _index_vectors(self, document: DocumentRecord, index) -> None:
        if self.embedding_service is None or self.vector_store is None or not index:
            return
        try:
            embeddings = await self.embedding_service.embed_texts([entry.text for entry in index])
            await self.vector_store.delete_by_document_id(document.id)
            await self.vector_store.upsert_entries(
                document_id=document.id,
                apartment_id=document.apartment_id,
                file_name=document.file_name,
                entries=index,
                embeddings=embeddings,
            )
        except Exception as e:
            # The document is still usable through full-context retrieval
            logger.warning(f"Vector indexing failed for document {document.id}: {e}")

    async def process_document(self, document_id: str, reuse_existing: bool = False) -> DocumentRecord:
        """
        Process one document end to end

        Configuration problems raise before the document is touched. Once the
        document is marked ``processing`` every failure is recorded as
        ``failed`` with the diagnostic in ``ocr_text``.

        Args:
            document_id: Document to process
            reuse_existing: Re-read recorded job output instead of submitting new jobs

        Returns:
            The document as persisted at the end of the run
        """
        self.check_configuration()

        document = await self.documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")

        logger.info(f"Starting OCR for document {document_id} ({document.file_path}), reuse_existing={reuse_existing}")
        await self.documents.set_status(document_id, OCRStatus.PROCESSING)

        async def record_prefixes(prefixes):
            await self.documents.update(document_id, ocr_output_prefixes=prefixes)

        try:
            result = await self.orchestrator.run(document, reuse_existing=reuse_existing, on_submitted=record_prefixes)
            extraction = self.extract(result)
            index = build_search_index(extraction.pages, self.settings.search_index_max_entries)
            await self._index_vectors(document, index)

            await self.documents.set_status(
                document_id,
                OCRStatus.COMPLETED,
                ocr_text=extraction.text,
                ocr_pages=[page.model_dump() for page in extraction.pages],
                ocr_search_index=[entry.model_dump() for entry in index],
                ocr_output_prefixes=result.output_prefixes,
            )
            block_count = sum(len(page.blocks) for page in extraction.pages)
            logger.info(
                f"OCR completed for document {document_id}: {len(extraction.pages)} pages, "
                f"{block_count} blocks, {extraction.backfilled} backfilled, {len(index)} index entries"
            )

        except Exception as e:
            logger.exception(f"OCR failed for document {document_id}")
            await self.documents.set_status(document_id, OCRStatus.FAILED, ocr_text=f"OCR failed: {e}")

        return await self.documents.get(document_id)
