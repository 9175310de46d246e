"""Service layer for business logic"""
from .embedding_service import EmbeddingService
from .vector_store import VectorStore
from .llm_service import LLMService
from .citation_generator import CitationGenerator
from .document_ai import BatchJobOrchestrator, DocumentAIClient, ServiceAccountTokenProvider
from .ocr_pipeline import OCRPipeline
from .retrieval import RetrievalService
from .chat_service import ChatService
from .stream_protocol import GenerationMode, StreamReceiver, receive_stream
from .errors import (
    OCRPipelineError,
    ConfigurationError,
    DocumentNotFoundError,
)

__all__ = [
    "EmbeddingService",
    "VectorStore",
    "LLMService",
    "CitationGenerator",
    "BatchJobOrchestrator",
    "DocumentAIClient",
    "ServiceAccountTokenProvider",
    "OCRPipeline",
    "RetrievalService",
    "ChatService",
    "GenerationMode",
    "StreamReceiver",
    "receive_stream",
    "OCRPipelineError",
    "ConfigurationError",
    "DocumentNotFoundError",
]
