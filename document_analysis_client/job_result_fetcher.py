from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from document_analysis_client.errors import MalformedResultError
from document_analysis_client.models import JobResult


class JobResultFetcher:
    """Retrieves and validates the result of a completed job.

    Holds no per-job state: each call to :meth:`fetch` issues a single request
    through ``client.fetch_result_payload``. Absent results surface as
    ``ResultNotFoundError``, transport problems as ``ResultFetchError`` and
    payloads of the wrong shape as ``MalformedResultError``.
    """

    def __init__(self, client):
        self.client = client
        self.logger = logger

    async def fetch(self, job_id: str) -> JobResult:
        payload = await self.client.fetch_result_payload(job_id)
        result = self._validate(job_id, payload)
        self.logger.debug(f"Fetched result for job {job_id} with {len(result.topics)} topics")
        return result

    def _validate(self, job_id: str, payload) -> JobResult:
        if not isinstance(payload, dict):
            raise MalformedResultError(f"Result for job {job_id} is not an object")

        try:
            result = JobResult.model_validate(payload)
        except PydanticValidationError as e:
            self.logger.error(f"Malformed result for job {job_id}: {e}")
            raise MalformedResultError(f"Result for job {job_id} is malformed") from e

        if result.job_id != job_id:
            raise MalformedResultError(
                f"Result belongs to job {result.job_id}, expected {job_id}"
            )
        return result
