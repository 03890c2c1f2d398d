import asyncio
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote

import aiohttp
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from document_analysis_client.errors import (
    NotFoundError,
    ResultFetchError,
    ResultNotFoundError,
    StatusCheckError,
    UploadError,
    ValidationError,
)
from document_analysis_client.models import (
    ClientConfig,
    JobStatus,
    StatusResponse,
    UploadResponse,
    default_base_url,
)


class DocumentAnalysisClient:
    """HTTP access to the document analysis backend.

    Wraps the three backend operations (submit, status, result) and maps every
    aiohttp failure onto the library's error taxonomy. The client can own its
    ``aiohttp.ClientSession`` (created lazily, closed by :meth:`close`) or use
    one passed in by the caller.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        config: Optional[ClientConfig] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = (base_url or default_base_url()).rstrip("/")
        self.config = config or ClientConfig()
        self.logger = logger
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "DocumentAnalysisClient":
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
            self._session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            if not self._session.closed:
                await self._session.close()
            self._session = None

    def _job_url(self, job_id: str, action: str) -> str:
        return f"{self.base_url}/analyze/{quote(job_id, safe='')}/{action}"

    def validate_document(self, filename: str, content: bytes) -> None:
        """Reject documents the backend would not accept, without a network call"""
        if not filename.lower().endswith(tuple(self.config.allowed_extensions)):
            raise ValidationError("Please select a .txt file")
        if len(content) > self.config.max_upload_bytes:
            raise ValidationError("File size must be less than 1MB")

    async def submit_document(self, filename: str, content: bytes) -> UploadResponse:
        """Uploads a document for analysis and returns the new job identifier"""
        self.validate_document(filename, content)
        url = f"{self.base_url}/analyze"

        form = aiohttp.FormData()
        form.add_field("file", content, filename=filename, content_type="text/plain")

        try:
            async with self._get_session().post(url, data=form) as response:
                response.raise_for_status()
                data = await response.json()
            upload = UploadResponse.model_validate(data)
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise UploadError("Failed to upload file. Please try again.") from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.error(f"Upload to {url} failed: {e!r}")
            raise UploadError("Failed to upload file. Please try again.") from e
        except (ValueError, PydanticValidationError) as e:
            self.logger.error(f"Unexpected upload response from {url}: {e}")
            raise UploadError("Upload response did not contain a job ID") from e

        self.logger.info(f"File {filename} uploaded successfully, jobId: {upload.job_id}")
        return upload

    async def submit_file(self, path: Union[str, Path]) -> UploadResponse:
        path = Path(path)
        return await self.submit_document(path.name, path.read_bytes())

    async def get_status(self, job_id: str) -> StatusResponse:
        """Fetches the status of a job from the server"""
        start_time = asyncio.get_event_loop().time()
        url = self._job_url(job_id, "status")

        try:
            async with self._get_session().get(url) as response:
                if response.status == 404:
                    self.logger.error(f"Job {job_id} not found at {url}")
                    raise NotFoundError(f"Job {job_id} not found")
                response.raise_for_status()
                data = await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise StatusCheckError(f"Failed to check status of job {job_id}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Error checking status at {url}: {e!r}")
            raise StatusCheckError(f"Failed to check status of job {job_id}") from e

        try:
            status_response = StatusResponse(
                job_id=data.get("jobId", job_id),
                status=JobStatus(data["status"]),
                raw_response=data,
                elapsed_time=asyncio.get_event_loop().time() - start_time,
            )
        except (KeyError, TypeError, AttributeError, ValueError, PydanticValidationError) as e:
            self.logger.error(f"Unexpected status payload from {url}: {data!r}")
            raise StatusCheckError(f"Unexpected status payload for job {job_id}") from e

        if status_response.job_id != job_id:
            self.logger.error(f"Status from {url} belongs to job {status_response.job_id}")
            raise StatusCheckError(f"Unexpected status payload for job {job_id}")
        return status_response

    async def fetch_result_payload(self, job_id: str) -> Any:
        """Returns the decoded result document of a completed job, unvalidated"""
        url = self._job_url(job_id, "result")

        try:
            async with self._get_session().get(url) as response:
                if response.status == 404:
                    self.logger.warning(f"Result for job {job_id} not found at {url}")
                    raise ResultNotFoundError(f"Result for job {job_id} not found")
                response.raise_for_status()
                return await response.json()
        except aiohttp.ClientResponseError as e:
            self.logger.error(f"HTTP error {e.status} at {url}: {e.message}")
            raise ResultFetchError(f"Failed to fetch result of job {job_id}") from e
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            self.logger.error(f"Error fetching result at {url}: {e!r}")
            raise ResultFetchError(f"Failed to fetch result of job {job_id}") from e
