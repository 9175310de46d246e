"""Document OCR endpoints"""
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from pydantic import ValidationError
from typing import List
import logging
from ...models.document import OCRStatus, SearchIndexEntry
from ...models.response import OCRStatusResponse, OCRTriggerResponse, OCRWebhookRequest
from ...db import DocumentRepository
from ...services import ConfigurationError, OCRPipeline
from ...api.dependencies import get_document_repository, get_ocr_pipeline

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/documents", tags=["documents"])


async def run_ocr(pipeline: OCRPipeline, document_id: str, reuse_existing: bool):
    """Background task wrapper; the pipeline records failures on the document itself"""
    try:
        document = await pipeline.process_document(document_id, reuse_existing=reuse_existing)
        logger.info(f"OCR run finished for {document_id}: {document.ocr_status.value if document else 'missing'}")
    except Exception:
        logger.exception(f"OCR run for {document_id} aborted")


def _require_configuration(pipeline: OCRPipeline):
    try:
        pipeline.check_configuration()
    except ConfigurationError as e:
        logger.error(str(e))
        raise HTTPException(status_code=503, detail="OCR processing is not configured on this server")


@router.post("/{document_id}/ocr", status_code=202, response_model=OCRTriggerResponse)
async def trigger_ocr(
    document_id: str,
    background_tasks: BackgroundTasks,
    reuse_existing: bool = Query(False, description="Re-read the last job output instead of resubmitting"),
    pipeline: OCRPipeline = Depends(get_ocr_pipeline),
    documents: DocumentRepository = Depends(get_document_repository),
):
    """
    Start OCR for a stored document

    Processing runs after the response is sent; poll ``GET /documents/{id}/ocr``
    for the outcome.
    """
    _require_configuration(pipeline)

    document = await documents.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")

    background_tasks.add_task(run_ocr, pipeline, document_id, reuse_existing)
    logger.info(f"OCR queued for document {document_id} (reuse_existing={reuse_existing})")
    return OCRTriggerResponse(document_id=document_id, reuse_existing=reuse_existing)


@router.post("/ocr/webhook", status_code=202, response_model=OCRTriggerResponse)
async def ocr_webhook(
    background_tasks: BackgroundTasks,
    payload: dict = Body(...),
    pipeline: OCRPipeline = Depends(get_ocr_pipeline),
    documents: DocumentRepository = Depends(get_document_repository),
):
    """
    Database insert webhook for new uploads

    Expects ``{"record": {"id", "file_path", "apartment_id"}}``.
    """
    try:
        request = OCRWebhookRequest.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Invalid webhook payload: {e}")
        raise HTTPException(status_code=400, detail="Invalid record")
    record = request.record
    if record is None or not record.id or not record.file_path:
        raise HTTPException(status_code=400, detail="Invalid record")

    _require_configuration(pipeline)

    await documents.ensure(record.id, record.file_path, record.apartment_id)
    background_tasks.add_task(run_ocr, pipeline, record.id, False)
    logger.info(f"OCR queued from webhook for document {record.id}")
    return OCRTriggerResponse(document_id=record.id)


@router.get("/{document_id}/ocr", response_model=OCRStatusResponse)
async def get_ocr_status(
    document_id: str,
    documents: DocumentRepository = Depends(get_document_repository),
):
    """OCR status with page, block and index counts"""
    document = await documents.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")

    return OCRStatusResponse(
        document_id=document.id,
        ocr_status=document.ocr_status,
        page_count=len(document.ocr_pages),
        block_count=sum(len(page.blocks) for page in document.ocr_pages),
        index_entries=len(document.ocr_search_index),
        message=document.ocr_text if document.ocr_status == OCRStatus.FAILED else None,
    )


@router.get("/{document_id}/search-index", response_model=List[SearchIndexEntry])
async def get_search_index(
    document_id: str,
    documents: DocumentRepository = Depends(get_document_repository),
):
    """Flattened ``{text, page_number}`` entries of a completed document"""
    document = await documents.get(document_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document.ocr_search_index
