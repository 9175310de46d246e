from __future__ import annotations

from fastapi.testclient import TestClient

from app.api.dependencies import get_document_repository, get_ocr_pipeline
from app.main import app
from app.models.document import Block, DocumentRecord, OCRStatus, Page, SearchIndexEntry
from app.services.errors import ConfigurationError
from conftest import FakeDocumentRepository


class _Pipeline:
    def __init__(self, documents: FakeDocumentRepository, configured: bool = True) -> None:
        self.documents = documents
        self.configured = configured
        self.runs = []

    def check_configuration(self) -> None:
        if not self.configured:
            raise ConfigurationError("OCR is not configured; missing: gcs_bucket_name")

    async def process_document(self, document_id: str, reuse_existing: bool = False):
        self.runs.append((document_id, reuse_existing))
        await self.documents.set_status(document_id, OCRStatus.COMPLETED)
        return await self.documents.get(document_id)


def _client(documents: FakeDocumentRepository, pipeline: _Pipeline) -> TestClient:
    app.dependency_overrides[get_document_repository] = lambda: documents
    app.dependency_overrides[get_ocr_pipeline] = lambda: pipeline
    return TestClient(app)


def _documents() -> FakeDocumentRepository:
    return FakeDocumentRepository([
        DocumentRecord(
            id="doc-1",
            file_path="a-1/rules.pdf",
            apartment_id="a-1",
            ocr_status=OCRStatus.COMPLETED,
            ocr_pages=[Page(page_number=1, blocks=[
                Block(text="Quiet hours", page_number=1, quad_points=[1, 2, 3, 2, 3, 1, 1, 1]),
                Block(text="Pets", page_number=1),
            ])],
            ocr_search_index=[
                SearchIndexEntry(text="Quiet hours", page_number=1),
                SearchIndexEntry(text="Pets", page_number=1),
            ],
        ),
        DocumentRecord(id="doc-2", file_path="a-1/failed.pdf", ocr_status=OCRStatus.FAILED, ocr_text="OCR failed: Document AI job timed out"),
    ])


def test_trigger_runs_ocr_in_background() -> None:
    documents = _documents()
    pipeline = _Pipeline(documents)
    client = _client(documents, pipeline)

    try:
        response = client.post("/api/documents/doc-2/ocr", params={"reuse_existing": "true"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 202
    assert response.json()["reuse_existing"] is True
    assert pipeline.runs == [("doc-2", True)]


def test_trigger_unknown_document_is_404() -> None:
    documents = _documents()
    client = _client(documents, _Pipeline(documents))

    try:
        response = client.post("/api/documents/nope/ocr")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 404


def test_trigger_without_configuration_is_503_and_touches_nothing() -> None:
    documents = _documents()
    pipeline = _Pipeline(documents, configured=False)
    client = _client(documents, pipeline)

    try:
        response = client.post("/api/documents/doc-2/ocr")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert "gcs_bucket_name" not in response.text
    assert pipeline.runs == []
    assert documents.status_history == []


def test_webhook_creates_record_and_queues_ocr() -> None:
    documents = _documents()
    pipeline = _Pipeline(documents)
    client = _client(documents, pipeline)

    try:
        response = client.post(
            "/api/documents/ocr/webhook",
            json={"type": "INSERT", "record": {"id": "doc-9", "file_path": "a-1/new.pdf", "apartment_id": "a-1"}},
        )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 202
    assert pipeline.runs == [("doc-9", False)]
    assert documents.records["doc-9"].file_name == "new.pdf"


def test_webhook_rejects_invalid_record() -> None:
    documents = _documents()
    pipeline = _Pipeline(documents)
    client = _client(documents, pipeline)

    try:
        missing = client.post("/api/documents/ocr/webhook", json={"type": "INSERT"})
        incomplete = client.post("/api/documents/ocr/webhook", json={"record": {"id": "doc-9"}})
    finally:
        app.dependency_overrides.clear()

    assert missing.status_code == 400
    assert incomplete.status_code == 400
    assert pipeline.runs == []


def test_status_and_search_index() -> None:
    documents = _documents()
    client = _client(documents, _Pipeline(documents))

    try:
        status = client.get("/api/documents/doc-1/ocr")
        failed = client.get("/api/documents/doc-2/ocr")
        index = client.get("/api/documents/doc-1/search-index")
    finally:
        app.dependency_overrides.clear()

    assert status.json() == {
        "document_id": "doc-1",
        "ocr_status": "completed",
        "page_count": 1,
        "block_count": 2,
        "index_entries": 2,
        "message": None,
    }
    assert failed.json()["message"].startswith("OCR failed")
    assert index.json() == [{"text": "Quiet hours", "page_number": 1}, {"text": "Pets", "page_number": 1}]
