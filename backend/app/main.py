"""FastAPI application entry point"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
from .config import settings
from .api.routes import documents_router, chat_router, citations_router
from .db import MongoDB

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Condominium Document Assistant API",
    description="OCR ingestion of condominium documents and cited, streamed chat answers",
    version="1.0.0"
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Chat-API-Status"],
)

# Include routers
app.include_router(documents_router, prefix="/api")
app.include_router(chat_router, prefix="/api")
app.include_router(citations_router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Condominium Document Assistant API",
        "version": "1.0.0",
        "status": "running",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "database": "connected" if MongoDB.database is not None else "disconnected",
        "ocr_configured": not settings.missing_ocr_settings(),
        "vector_search": settings.vector_search_enabled,
    }


@app.on_event("startup")
async def startup_event():
    """Startup tasks"""
    logger.info("Starting Condominium Document Assistant API")
    missing = settings.missing_ocr_settings()
    if missing:
        logger.warning(f"OCR disabled until configured: {', '.join(missing)}")

    # Connect to MongoDB
    await MongoDB.connect_db()
    logger.info("MongoDB connected successfully")


@app.on_event("shutdown")
async def shutdown_event():
    """Shutdown tasks"""
    logger.info("Shutting down Condominium Document Assistant API")

    # Close MongoDB connection
    await MongoDB.close_db()
    logger.info("MongoDB connection closed")


if __name__ == "__main__":
    import uvicorn
    import os
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=port,
    )
