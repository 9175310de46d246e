"""Citation highlighting endpoints"""
from fastapi import APIRouter, HTTPException, Depends, Query
from typing import Optional
import logging
from ...models.response import Source
from ...db import DocumentRepository
from ...services import CitationGenerator
from ...api.dependencies import get_citation_generator, get_document_repository

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/citations", tags=["citations"])


@router.get("/annotations")
async def get_annotations(
    fileId: str = Query(..., description="Cited document id"),
    page: Optional[str] = Query(None, description="1-based page number"),
    blockId: Optional[str] = Query(None, description="Position in the flattened block sequence"),
    citation_generator: CitationGenerator = Depends(get_citation_generator),
    documents: DocumentRepository = Depends(get_document_repository),
):
    """
    Viewer highlight annotations for a cited source

    Returns an empty list when the cited blocks carry no geometry.
    """
    document = await documents.get(fileId)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")

    source = Source(fileId=fileId, page=page, blockId=blockId)
    annotations = citation_generator.build_annotations(document, source)
    logger.info(f"Returning {len(annotations)} annotations for {fileId} (page={page}, block={blockId})")
    return {
        "fileId": fileId,
        "annotations": [annotation.model_dump(by_alias=True) for annotation in annotations],
    }
