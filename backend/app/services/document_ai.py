"""Document AI batch processing: token exchange, job submission, polling and result shards"""
import asyncio
import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from ..models.document import DocumentRecord
from ..utils.helpers import generate_job_id
from .errors import (
    ConfigurationError,
    JobFailedError,
    JobSubmissionError,
    JobTimeoutError,
    ShardDownloadError,
    TokenAcquisitionError,
)

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
STORAGE_API_URL = "https://storage.googleapis.com/storage/v1"


def load_service_account_info(raw: str) -> Dict[str, Any]:
    """Parse service account credentials given as JSON or base64-encoded JSON"""
    text = (raw or "").strip()
    if not text.startswith("{"):
        try:
            text = base64.b64decode(text, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ConfigurationError("Service account credentials are neither JSON nor base64", cause=e)
    try:
        info = json.loads(text)
    except json.JSONDecodeError as e:
        raise ConfigurationError("Service account credentials are not valid JSON", cause=e)
    if not isinstance(info, dict):
        raise ConfigurationError("Service account credentials must be a JSON object")
    return info


def split_gcs_uri(uri: str) -> Tuple[str, str]:
    """``gs://bucket/some/prefix/`` -> ``("bucket", "some/prefix/")``"""
    if not uri.startswith("gs://"):
        raise ValueError(f"Not a gs:// URI: {uri}")
    bucket, _, prefix = uri[len("gs://"):].partition("/")
    return bucket, prefix


class ServiceAccountTokenProvider:
    """Exchange a service account's signed assertion for a short-lived bearer token"""

    def __init__(self, service_account_info: Dict[str, Any]):
        self.service_account_info = service_account_info
        self.project_id: Optional[str] = service_account_info.get("project_id")
        self._credentials = None

    def _refresh(self) -> str:
        if self._credentials is None:
            self._credentials = service_account.Credentials.from_service_account_info(
                self.service_account_info,
                scopes=[CLOUD_PLATFORM_SCOPE],
            )
        if not self._credentials.valid:
            self._credentials.refresh(GoogleAuthRequest())
        return self._credentials.token

    async def get_token(self) -> str:
        try:
            return await asyncio.to_thread(self._refresh)
        except Exception as e:
            logger.error(f"Error obtaining access token: {e}")
            raise TokenAcquisitionError(f"Failed to obtain access token: {e}", cause=e)


class DocumentAIClient:
    """REST client for Document AI batch operations and their Cloud Storage output"""

    def __init__(
        self,
        token_provider,
        project_id: str,
        location: str = "us",
        poll_interval: float = 5.0,
        max_poll_attempts: int = 60,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        timeout: float = 60.0,
    ):
        """
        Initialize Document AI client

        Args:
            token_provider: Object with an async ``get_token()`` returning a bearer token
            project_id: Google Cloud project owning the processors
            location: Processor location (``us`` / ``eu``)
            poll_interval: Seconds between operation status polls
            max_poll_attempts: Polls before the job is considered timed out
            http_client: Shared httpx client; a short-lived one is used per request otherwise
            sleep: Coroutine used to wait between polls
            timeout: Per-request timeout in seconds
        """
        self.token_provider = token_provider
        self.project_id = project_id
        self.location = location
        self.poll_interval = poll_interval
        self.max_poll_attempts = max_poll_attempts
        self.base_url = f"https://{location}-documentai.googleapis.com/v1"
        self._http_client = http_client
        self._sleep = sleep
        self.timeout = timeout

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        token = await self.token_provider.get_token()
        headers = {"Authorization": f"Bearer {token}"}
        if self._http_client is not None:
            return await self._http_client.request(method, url, headers=headers, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method, url, headers=headers, **kwargs)

    async def submit_batch(
        self,
        processor_id: str,
        input_uri: str,
        output_prefix: str,
        mime_type: str = "application/pdf",
    ) -> str:
        """
        Start a batch process job

        Returns:
            Operation name used for polling
        """
        url = (
            f"{self.base_url}/projects/{self.project_id}/locations/{self.location}"
            f"/processors/{processor_id}:batchProcess"
        )
        payload = {
            "inputDocuments": {
                "gcsDocuments": {"documents": [{"gcsUri": input_uri, "mimeType": mime_type}]}
            },
            "documentOutputConfig": {"gcsOutputConfig": {"gcsUri": output_prefix}},
        }

        try:
            response = await self._request("POST", url, json=payload)
        except httpx.HTTPError as e:
            raise JobSubmissionError(f"Batch process request failed: {e}", cause=e)
        if response.status_code >= 400:
            raise JobSubmissionError(
                f"Batch process request rejected ({response.status_code}): {response.text[:500]}"
            )

        operation_name = response.json().get("name")
        if not operation_name:
            raise JobSubmissionError("Batch process response did not include an operation name")
        return operation_name

    async def get_operation(self, operation_name: str) -> Dict[str, Any]:
        """Current state of a long-running operation: ``{done, error?, metadata?}``"""
        try:
            response = await self._request("GET", f"{self.base_url}/{operation_name}")
        except httpx.HTTPError as e:
            raise JobFailedError(f"Failed to poll operation {operation_name}: {e}", cause=e)
        if response.status_code >= 400:
            raise JobFailedError(
                f"Failed to poll operation {operation_name} ({response.status_code}): {response.text[:500]}"
            )
        return response.json()

    async def wait_for_operation(self, operation_name: str) -> Dict[str, Any]:
        """
        Poll until the operation is done

        Raises:
            JobFailedError: The operation completed with an error payload
            JobTimeoutError: The operation was not done after ``max_poll_attempts`` polls
        """
        for attempt in range(1, self.max_poll_attempts + 1):
            await self._sleep(self.poll_interval)
            operation = await self.get_operation(operation_name)

            if operation.get("done"):
                error = operation.get("error")
                if error:
                    message = error.get("message") if isinstance(error, dict) else str(error)
                    raise JobFailedError(f"Document AI job failed: {message or error}")

                statuses = (operation.get("metadata") or {}).get("individualProcessStatuses") or []
                for status in statuses:
                    code = (status.get("status") or {}).get("code")
                    if code:
                        message = status["status"].get("message", "unknown error")
                        raise JobFailedError(
                            f"Document AI failed for {status.get('inputGcsSource', 'input')}: {message}"
                        )

                logger.info(f"Operation {operation_name} completed after {attempt} polls")
                return operation

            logger.debug(f"Operation {operation_name} still running (poll {attempt}/{self.max_poll_attempts})")

        raise JobTimeoutError(
            f"Document AI job timed out: not done after {self.max_poll_attempts} polls "
            f"({self.max_poll_attempts * self.poll_interval:.0f}s)"
        )

    async def list_shards(self, output_prefix: str) -> List[str]:
        """Names of every JSON result object under the prefix, sorted by name"""
        bucket, prefix = split_gcs_uri(output_prefix)
        names: List[str] = []
        page_token: Optional[str] = None

        while True:
            params = {"prefix": prefix, "fields": "items(name),nextPageToken"}
            if page_token:
                params["pageToken"] = page_token
            try:
                response = await self._request("GET", f"{STORAGE_API_URL}/b/{bucket}/o", params=params)
            except httpx.HTTPError as e:
                raise ShardDownloadError(f"Failed to list results under {output_prefix}: {e}", cause=e)
            if response.status_code >= 400:
                raise ShardDownloadError(
                    f"Failed to list results under {output_prefix} ({response.status_code})"
                )

            data = response.json()
            names.extend(
                item["name"] for item in data.get("items", [])
                if item.get("name", "").endswith(".json")
            )
            page_token = data.get("nextPageToken")
            if not page_token:
                break

        return sorted(names)

    async def download_shard(self, bucket: str, object_name: str) -> Dict[str, Any]:
        """Download and parse one result shard"""
        url = f"{STORAGE_API_URL}/b/{bucket}/o/{quote(object_name, safe='')}"
        try:
            response = await self._request("GET", url, params={"alt": "media"})
        except httpx.HTTPError as e:
            raise ShardDownloadError(f"Failed to download {object_name}: {e}", cause=e)
        if response.status_code >= 400:
            raise ShardDownloadError(f"Failed to download {object_name} ({response.status_code})")

        try:
            return json.loads(response.content)
        except json.JSONDecodeError as e:
            raise ShardDownloadError(f"Shard {object_name} is not valid JSON", cause=e)

    async def read_shards(self, output_prefix: str) -> List[Dict[str, Any]]:
        """Every result shard under the prefix, parsed, in name order"""
        bucket, _ = split_gcs_uri(output_prefix)
        names = await self.list_shards(output_prefix)
        if not names:
            raise ShardDownloadError(f"No result shards found under {output_prefix}")

        logger.info(f"Reading {len(names)} shards from {output_prefix}")
        return [await self.download_shard(bucket, name) for name in names]


@dataclass
class BatchJobResult:
    """Parsed shards of the layout job and of the optional OCR job"""
    layout_shards: List[Dict[str, Any]]
    ocr_shards: List[Dict[str, Any]] = field(default_factory=list)
    output_prefixes: Dict[str, str] = field(default_factory=dict)


class BatchJobOrchestrator:
    """Run the layout job and the optional OCR job for one document"""

    LAYOUT = "layout"
    OCR = "ocr"

    def __init__(
        self,
        client: DocumentAIClient,
        bucket_name: str,
        layout_processor_id: str,
        ocr_processor_id: Optional[str] = None,
        output_root: str = "ocr-results",
    ):
        self.client = client
        self.bucket_name = bucket_name
        self.layout_processor_id = layout_processor_id
        self.ocr_processor_id = ocr_processor_id
        self.output_root = output_root.strip("/")

    def input_uri(self, document: DocumentRecord) -> str:
        return f"gs://{self.bucket_name}/{document.file_path.lstrip('/')}"

    def output_prefix(self, document: DocumentRecord, kind: str) -> str:
        return f"gs://{self.bucket_name}/{self.output_root}/{document.id}/{kind}-{generate_job_id()}/"

    async def _run_job(self, kind: str, processor_id: str, input_uri: str, output_prefix: str):
        operation_name = await self.client.submit_batch(processor_id, input_uri, output_prefix)
        logger.info(f"Submitted {kind} job {operation_name} -> {output_prefix}")
        await self.client.wait_for_operation(operation_name)
        return await self.client.read_shards(output_prefix)

    async def run(
        self,
        document: DocumentRecord,
        reuse_existing: bool = False,
        on_submitted: Optional[Callable[[Dict[str, str]], Awaitable[Any]]] = None,
    ) -> BatchJobResult:
        """
        Produce the result shards for a document

        Args:
            document: Document whose stored PDF is analyzed
            reuse_existing: Re-read the recorded output prefixes instead of submitting jobs
            on_submitted: Called with the new output prefixes before jobs are submitted

        Returns:
            BatchJobResult with shards in name order
        """
        recorded = document.ocr_output_prefixes or {}
        if reuse_existing and recorded.get(self.LAYOUT):
            logger.info(f"Reusing recorded results for document {document.id}")
            layout_shards = await self.client.read_shards(recorded[self.LAYOUT])
            ocr_shards = []
            if recorded.get(self.OCR):
                ocr_shards = await self.client.read_shards(recorded[self.OCR])
            return BatchJobResult(layout_shards, ocr_shards, dict(recorded))
        if reuse_existing:
            logger.warning(f"No recorded results for document {document.id}; submitting new jobs")

        # Fails before anything is submitted when the credentials are unusable
        await self.client.token_provider.get_token()

        input_uri = self.input_uri(document)
        jobs = {self.LAYOUT: self.layout_processor_id}
        if self.ocr_processor_id:
            jobs[self.OCR] = self.ocr_processor_id
        prefixes = {kind: self.output_prefix(document, kind) for kind in jobs}

        if on_submitted is not None:
            await on_submitted(prefixes)

        outcomes = await asyncio.gather(
            *[self._run_job(kind, processor_id, input_uri, prefixes[kind]) for kind, processor_id in jobs.items()],
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        shards = dict(zip(jobs.keys(), outcomes))
        return BatchJobResult(
            layout_shards=shards[self.LAYOUT],
            ocr_shards=shards.get(self.OCR, []),
            output_prefixes=prefixes,
        )
