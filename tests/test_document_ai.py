from __future__ import annotations

import asyncio
import base64
import json

import httpx
import pytest

from app.models.document import DocumentRecord
from app.services.document_ai import load_service_account_info, split_gcs_uri
from app.services.errors import (
    ConfigurationError,
    JobFailedError,
    JobTimeoutError,
    ShardDownloadError,
    TokenAcquisitionError,
)
from conftest import FakeDocumentAI, FakeTokenProvider, build_orchestrator

DOCUMENT = DocumentRecord(id="doc-1", file_path="apartments/a-1/rules.pdf", apartment_id="a-1")


def _shard(text: str) -> dict:
    return {"text": text, "pages": [{"pageNumber": 1, "blocks": []}]}


def test_service_account_accepts_json_and_base64() -> None:
    raw = json.dumps({"project_id": "p-1", "client_email": "svc@p-1.iam.gserviceaccount.com"})

    assert load_service_account_info(raw)["project_id"] == "p-1"
    assert load_service_account_info(base64.b64encode(raw.encode()).decode())["project_id"] == "p-1"

    with pytest.raises(ConfigurationError):
        load_service_account_info("not json at all")


def test_split_gcs_uri() -> None:
    assert split_gcs_uri("gs://bucket/ocr-results/doc/") == ("bucket", "ocr-results/doc/")
    with pytest.raises(ValueError):
        split_gcs_uri("https://example.com/file")


def test_run_submits_both_jobs_and_reads_shards_in_name_order() -> None:
    fake = FakeDocumentAI(
        shards={"layout": [_shard("layout-0"), _shard("layout-1")], "ocr": [_shard("ocr-0")]},
        polls_until_done=3,
    )
    recorded = {}

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            orchestrator = build_orchestrator(fake, http)

            async def on_submitted(prefixes):
                recorded.update(prefixes)
                assert fake.submitted == []

            return await orchestrator.run(DOCUMENT, on_submitted=on_submitted)

    result = asyncio.run(runner())

    assert [shard["text"] for shard in result.layout_shards] == ["layout-0", "layout-1"]
    assert [shard["text"] for shard in result.ocr_shards] == ["ocr-0"]
    assert set(recorded) == {"layout", "ocr"}
    assert result.output_prefixes == recorded
    assert recorded["layout"].startswith("gs://test-bucket/ocr-results/doc-1/layout-")
    assert all(count == 3 for count in fake.polls.values())

    submit = next(r for r in fake.requests if r.url.path.endswith(":batchProcess"))
    body = json.loads(submit.content)
    assert body["inputDocuments"]["gcsDocuments"]["documents"][0]["gcsUri"] == "gs://test-bucket/apartments/a-1/rules.pdf"
    assert submit.headers["Authorization"] == "Bearer test-token"
    assert submit.url.host == "us-documentai.googleapis.com"


def test_layout_only_when_no_ocr_processor() -> None:
    fake = FakeDocumentAI(shards={"layout": [_shard("layout-0")]})

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http, ocr_processor_id=None).run(DOCUMENT)

    result = asyncio.run(runner())

    assert [s["kind"] for s in fake.submitted] == ["layout"]
    assert result.ocr_shards == []


def test_error_payload_fails_the_job() -> None:
    fake = FakeDocumentAI(shards={"layout": [_shard("x")]}, error={"code": 3, "message": "Unsupported input file"})

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http, ocr_processor_id=None).run(DOCUMENT)

    with pytest.raises(JobFailedError, match="Unsupported input file"):
        asyncio.run(runner())


def test_polling_stops_at_the_attempt_ceiling() -> None:
    fake = FakeDocumentAI(shards={"layout": [_shard("x")]}, polls_until_done=None)

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http, max_poll_attempts=4, ocr_processor_id=None).run(DOCUMENT)

    with pytest.raises(JobTimeoutError, match="timed out"):
        asyncio.run(runner())

    assert list(fake.polls.values()) == [4]


def test_missing_shards_raise() -> None:
    fake = FakeDocumentAI(shards={"layout": []})

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http, ocr_processor_id=None).run(DOCUMENT)

    with pytest.raises(ShardDownloadError):
        asyncio.run(runner())


def test_token_failure_aborts_before_submission() -> None:
    fake = FakeDocumentAI(shards={"layout": [_shard("x")]})
    tokens = FakeTokenProvider(error=RuntimeError("invalid_grant"))
    notified = []

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            orchestrator = build_orchestrator(fake, http, token_provider=tokens)

            async def on_submitted(prefixes):
                notified.append(prefixes)

            return await orchestrator.run(DOCUMENT, on_submitted=on_submitted)

    with pytest.raises(TokenAcquisitionError):
        asyncio.run(runner())

    assert fake.requests == []
    assert notified == []


def test_reuse_reads_recorded_output_without_submitting() -> None:
    fake = FakeDocumentAI()
    fake.register_output("gs://test-bucket/ocr-results/doc-1/layout-old/", [_shard("old-layout")])
    fake.register_output("gs://test-bucket/ocr-results/doc-1/ocr-old/", [_shard("old-ocr")])
    document = DOCUMENT.model_copy(update={"ocr_output_prefixes": {
        "layout": "gs://test-bucket/ocr-results/doc-1/layout-old/",
        "ocr": "gs://test-bucket/ocr-results/doc-1/ocr-old/",
    }})

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http).run(document, reuse_existing=True)

    result = asyncio.run(runner())

    assert fake.submitted == []
    assert [s["text"] for s in result.layout_shards] == ["old-layout"]
    assert [s["text"] for s in result.ocr_shards] == ["old-ocr"]
    assert result.output_prefixes == document.ocr_output_prefixes


def test_reuse_without_recorded_output_submits_new_jobs() -> None:
    fake = FakeDocumentAI(shards={"layout": [_shard("fresh")]})

    async def runner():
        async with httpx.AsyncClient(transport=httpx.MockTransport(fake.handler)) as http:
            return await build_orchestrator(fake, http, ocr_processor_id=None).run(DOCUMENT, reuse_existing=True)

    result = asyncio.run(runner())

    assert len(fake.submitted) == 1
    assert result.layout_shards[0]["text"] == "fresh"
