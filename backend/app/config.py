"""Configuration and environment variables"""
from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Google Cloud
    google_cloud_project: Optional[str] = None
    google_cloud_location: str = "us-central1"
    google_service_account_json: Optional[str] = None  # raw JSON or base64 of it

    # Google AI API Key (for Gemini)
    google_api_key: Optional[str] = None

    # Document AI batch processing
    documentai_location: str = "us"
    documentai_layout_processor_id: Optional[str] = None
    documentai_ocr_processor_id: Optional[str] = None  # optional secondary OCR pass
    gcs_bucket_name: Optional[str] = None
    ocr_output_root: str = "ocr-results"
    ocr_poll_interval_seconds: float = 5.0
    ocr_max_poll_attempts: int = 60  # 5 minutes at the default interval

    # OCR post-processing
    ocr_geometry_mode: str = "y_flip"  # "y_flip" or "direct"
    ocr_match_prefix_length: int = 100
    search_index_max_entries: int = 2000

    # Pinecone (similarity retrieval is disabled when no API key is set)
    pinecone_api_key: Optional[str] = None
    pinecone_index_name: str = "condo-documents"
    embedding_dimension: int = 768

    # MongoDB
    mongodb_url: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "condo_assistant"

    # Model Configuration
    gemini_model: str = "gemini-2.0-flash"
    embedding_model: str = "text-embedding-004"
    llm_temperature: float = 0.2

    # Chat Configuration
    chat_generation_mode: str = "structured"  # "structured" or "free_text"
    retrieval_match_threshold: float = 0.3
    retrieval_match_count: int = 20

    # CORS Settings
    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    class Config:
        env_file = ".env"
        case_sensitive = False

    @property
    def vector_search_enabled(self) -> bool:
        return bool(self.pinecone_api_key)

    def missing_ocr_settings(self) -> List[str]:
        """Names of settings that must be present before an OCR job can start"""
        required = {
            "google_service_account_json": self.google_service_account_json,
            "gcs_bucket_name": self.gcs_bucket_name,
            "documentai_layout_processor_id": self.documentai_layout_processor_id,
        }
        return [name for name, value in required.items() if not value]


# Global settings instance
settings = Settings()
