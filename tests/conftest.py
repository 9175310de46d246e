"""Shared in-memory fakes for repositories, Document AI and the chat model."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pytest

from app.config import Settings
from app.models.document import DocumentRecord, OCRStatus
from app.models.response import ChatSession, StoredChatMessage
from app.services.document_ai import BatchJobOrchestrator, DocumentAIClient
from app.services.errors import TokenAcquisitionError


class FakeDocumentRepository:
    """Dictionary-backed stand-in for DocumentRepository."""

    def __init__(self, records: Optional[List[DocumentRecord]] = None) -> None:
        self.records: Dict[str, DocumentRecord] = {record.id: record for record in records or []}
        self.status_history: List[tuple] = []

    async def get(self, document_id: str) -> Optional[DocumentRecord]:
        record = self.records.get(document_id)
        return record.model_copy(deep=True) if record else None

    async def update(self, document_id: str, **fields: Any) -> None:
        data = self.records[document_id].model_dump()
        data.update(fields)
        data["updated_at"] = datetime.utcnow()
        self.records[document_id] = DocumentRecord(**data)

    async def set_status(self, document_id: str, status: OCRStatus, **fields: Any) -> None:
        self.status_history.append((document_id, status))
        await self.update(document_id, ocr_status=status.value, **fields)

    async def ensure(self, document_id: str, file_path: str, apartment_id: Optional[str] = None) -> DocumentRecord:
        if document_id not in self.records:
            self.records[document_id] = DocumentRecord(
                id=document_id,
                file_path=file_path,
                apartment_id=apartment_id,
                file_name=file_path.rsplit("/", 1)[-1],
            )
        return self.records[document_id]

    async def list_completed(self, apartment_id: str) -> List[DocumentRecord]:
        return [
            record for record in self.records.values()
            if record.apartment_id == apartment_id and record.ocr_status == OCRStatus.COMPLETED
        ]


class FakeChatRepository:
    """In-memory sessions, apartments and stored turns."""

    def __init__(self, sessions: Optional[List[ChatSession]] = None, apartments: Optional[Dict[str, str]] = None) -> None:
        self.sessions = {session.id: session for session in sessions or []}
        self.apartments = apartments or {}
        self.messages: List[StoredChatMessage] = []

    async def get_session(self, session_id: str) -> Optional[ChatSession]:
        return self.sessions.get(session_id)

    async def get_apartment_name(self, apartment_id: str) -> str:
        return self.apartments.get(apartment_id, "")

    async def add_message(self, session_id, role, content, sources=None) -> StoredChatMessage:
        message = StoredChatMessage(
            id=f"msg-{len(self.messages)}",
            session_id=session_id,
            role=role,
            content=content,
            sources=sources or [],
        )
        self.messages.append(message)
        return message

    async def list_messages(self, session_id: str) -> List[StoredChatMessage]:
        return [message for message in self.messages if message.session_id == session_id]


class FakeTokenProvider:
    project_id = "test-project"

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls = 0

    async def get_token(self) -> str:
        self.calls += 1
        if self.error is not None:
            raise TokenAcquisitionError(f"Failed to obtain access token: {self.error}", cause=self.error)
        return "test-token"


class FakeDocumentAI:
    """
    httpx handler emulating Document AI batch operations and the Cloud
    Storage JSON API for result shards.

    ``polls_until_done=None`` keeps every operation running forever.
    """

    def __init__(
        self,
        shards: Optional[Dict[str, List[dict]]] = None,
        polls_until_done: Optional[int] = 1,
        error: Optional[dict] = None,
    ) -> None:
        self.shards = shards or {}
        self.polls_until_done = polls_until_done
        self.error = error
        self.outputs: Dict[str, List[dict]] = {}
        self.submitted: List[Dict[str, str]] = []
        self.polls: Dict[str, int] = {}
        self.requests: List[httpx.Request] = []

    def register_output(self, gcs_prefix: str, documents: List[dict]) -> None:
        _, _, prefix = gcs_prefix[len("gs://"):].partition("/")
        self.outputs[prefix] = documents

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith(":batchProcess"):
            body = json.loads(request.content)
            output = body["documentOutputConfig"]["gcsOutputConfig"]["gcsUri"]
            # Output prefixes end in ``<kind>-<job id>/``
            kind = output.rstrip("/").rsplit("/", 1)[-1].split("-", 1)[0]
            self.register_output(output, self.shards.get(kind, []))
            name = f"projects/test-project/locations/us/operations/op-{len(self.submitted)}"
            self.submitted.append({"kind": kind, "output": output, "operation": name})
            return httpx.Response(200, json={"name": name})

        if "/operations/" in path:
            name = path.split("/v1/", 1)[1]
            self.polls[name] = self.polls.get(name, 0) + 1
            done = self.polls_until_done is not None and self.polls[name] >= self.polls_until_done
            payload: Dict[str, Any] = {"name": name, "done": done}
            if done and self.error:
                payload["error"] = self.error
            return httpx.Response(200, json=payload)

        if request.url.params.get("alt") == "media":
            object_name = path.split("/o/", 1)[1]
            prefix, _, file_name = object_name.rpartition("/")
            index = int(file_name.split("-")[-1].split(".")[0])
            return httpx.Response(200, content=json.dumps(self.outputs[prefix + "/"][index]).encode("utf-8"))

        if path.endswith("/o"):
            prefix = request.url.params["prefix"]
            documents = self.outputs.get(prefix, [])
            # Listing order is deliberately not the name order
            items = [{"name": f"{prefix}output-{i}.json"} for i in reversed(range(len(documents)))]
            if documents:
                items.append({"name": f"{prefix}manifest.txt"})
            return httpx.Response(200, json={"items": items})

        return httpx.Response(404, json={"error": {"message": f"unexpected request {request.method} {path}"}})


async def no_sleep(_seconds: float) -> None:
    return None


def build_orchestrator(
    fake: FakeDocumentAI,
    http_client: httpx.AsyncClient,
    token_provider: Optional[FakeTokenProvider] = None,
    max_poll_attempts: int = 5,
    ocr_processor_id: Optional[str] = "ocr-proc",
) -> BatchJobOrchestrator:
    client = DocumentAIClient(
        token_provider=token_provider or FakeTokenProvider(),
        project_id="test-project",
        location="us",
        poll_interval=5.0,
        max_poll_attempts=max_poll_attempts,
        http_client=http_client,
        sleep=no_sleep,
    )
    return BatchJobOrchestrator(
        client=client,
        bucket_name="test-bucket",
        layout_processor_id="layout-proc",
        ocr_processor_id=ocr_processor_id,
    )


class FakeLLM:
    """Streams canned fragments and records the prompt it was given."""

    def __init__(self, fragments: List[str], fail_after: Optional[int] = None) -> None:
        self.fragments = fragments
        self.fail_after = fail_after
        self.calls: List[dict] = []

    async def stream(self, mode, system_prompt, messages):
        self.calls.append({"mode": mode, "system_prompt": system_prompt, "messages": list(messages)})
        for index, fragment in enumerate(self.fragments):
            if self.fail_after is not None and index >= self.fail_after:
                raise RuntimeError("model backend unavailable")
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise RuntimeError("model backend unavailable")


@pytest.fixture
def ocr_settings() -> Settings:
    return Settings(
        _env_file=None,
        google_service_account_json='{"project_id": "test-project"}',
        gcs_bucket_name="test-bucket",
        documentai_layout_processor_id="layout-proc",
        documentai_ocr_processor_id="ocr-proc",
        pinecone_api_key=None,
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    return Settings(
        _env_file=None,
        google_service_account_json=None,
        gcs_bucket_name=None,
        documentai_layout_processor_id=None,
        pinecone_api_key=None,
    )
