"""Dependency injection for API routes"""
import logging
from typing import Optional
from fastapi import Depends
from ..config import settings
from ..db import ChatRepository, DocumentRepository, get_db
from ..services import (
    BatchJobOrchestrator,
    ChatService,
    CitationGenerator,
    ConfigurationError,
    DocumentAIClient,
    EmbeddingService,
    GenerationMode,
    LLMService,
    OCRPipeline,
    RetrievalService,
    ServiceAccountTokenProvider,
    VectorStore,
)
from ..services.document_ai import load_service_account_info

logger = logging.getLogger(__name__)


# Singleton instances
_embedding_service = None
_vector_store = None
_llm_service = None
_citation_generator = None
_batch_orchestrator = None


def get_embedding_service() -> Optional[EmbeddingService]:
    """Get EmbeddingService singleton (None when vector search is disabled)"""
    global _embedding_service
    if _embedding_service is None and settings.vector_search_enabled:
        _embedding_service = EmbeddingService(
            model_name=settings.embedding_model,
            project=settings.google_cloud_project,
            location=settings.google_cloud_location,
        )
    return _embedding_service


def get_vector_store() -> Optional[VectorStore]:
    """Get VectorStore singleton (None when Pinecone is not configured)"""
    global _vector_store
    if _vector_store is None and settings.vector_search_enabled:
        _vector_store = VectorStore(
            api_key=settings.pinecone_api_key,
            index_name=settings.pinecone_index_name,
            dimension=settings.embedding_dimension,
        )
    return _vector_store


def get_llm_service() -> LLMService:
    """Get LLMService singleton"""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService(
            model_name=settings.gemini_model,
            temperature=settings.llm_temperature,
            google_api_key=settings.google_api_key,
        )
    return _llm_service


def get_citation_generator() -> CitationGenerator:
    """Get CitationGenerator singleton"""
    global _citation_generator
    if _citation_generator is None:
        _citation_generator = CitationGenerator()
    return _citation_generator


def get_batch_orchestrator() -> Optional[BatchJobOrchestrator]:
    """Get BatchJobOrchestrator singleton (None while Document AI is not configured)"""
    global _batch_orchestrator
    if _batch_orchestrator is None and not settings.missing_ocr_settings():
        try:
            info = load_service_account_info(settings.google_service_account_json)
        except ConfigurationError as e:
            logger.error(f"Document AI disabled: {e}")
            return None
        token_provider = ServiceAccountTokenProvider(info)
        client = DocumentAIClient(
            token_provider=token_provider,
            project_id=settings.google_cloud_project or token_provider.project_id,
            location=settings.documentai_location,
            poll_interval=settings.ocr_poll_interval_seconds,
            max_poll_attempts=settings.ocr_max_poll_attempts,
        )
        _batch_orchestrator = BatchJobOrchestrator(
            client=client,
            bucket_name=settings.gcs_bucket_name,
            layout_processor_id=settings.documentai_layout_processor_id,
            ocr_processor_id=settings.documentai_ocr_processor_id,
            output_root=settings.ocr_output_root,
        )
    return _batch_orchestrator


def get_document_repository(db=Depends(get_db)) -> DocumentRepository:
    return DocumentRepository(db)


def get_chat_repository(db=Depends(get_db)) -> ChatRepository:
    return ChatRepository(db)


def get_ocr_pipeline(
    documents: DocumentRepository = Depends(get_document_repository),
) -> OCRPipeline:
    """Get OCRPipeline bound to the request's document repository"""
    return OCRPipeline(
        settings=settings,
        documents=documents,
        orchestrator=get_batch_orchestrator(),
        embedding_service=get_embedding_service(),
        vector_store=get_vector_store(),
    )


def get_retrieval_service(
    documents: DocumentRepository = Depends(get_document_repository),
) -> RetrievalService:
    """Get RetrievalService; similarity search when Pinecone is configured"""
    return RetrievalService(
        documents=documents,
        embedding_service=get_embedding_service(),
        vector_store=get_vector_store(),
        match_threshold=settings.retrieval_match_threshold,
        match_count=settings.retrieval_match_count,
    )


def get_chat_service(
    retrieval: RetrievalService = Depends(get_retrieval_service),
    chat_repository: ChatRepository = Depends(get_chat_repository),
) -> ChatService:
    """Get ChatService for one chat request"""
    return ChatService(
        retrieval=retrieval,
        llm_service=get_llm_service(),
        chat_repository=chat_repository,
        generation_mode=GenerationMode(settings.chat_generation_mode),
    )
