import random
import string
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Optional

from aiohttp import web
from loguru import logger

TOPICS = [
    "Technology",
    "Innovation",
    "Digital Transformation",
    "Software Development",
    "AI & Machine Learning",
    "Web Development",
]


@dataclass
class MockJob:
    file_name: str
    will_fail: bool
    created_at: datetime = field(default_factory=datetime.now)


def _new_job_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "job_" + "".join(random.choices(alphabet, k=9))


class AnalysisServer:
    """In-memory stand-in for the document analysis backend"""

    def __init__(
        self,
        completion_time: float = 10.0,
        failure_rate: float = 0.0,
        result_delay: float = 0.0,
    ):
        self.completion_time = completion_time
        self.failure_rate = failure_rate
        self.result_delay = result_delay
        self.jobs: Dict[str, MockJob] = {}
        self.runner: Optional[web.AppRunner] = None
        self.app = web.Application()
        self.app.router.add_post("/api/analyze", self.handle_upload)
        self.app.router.add_get("/api/analyze/{job_id}/status", self.handle_status)
        self.app.router.add_get("/api/analyze/{job_id}/result", self.handle_result)
        self.logger = logger

    def add_job(self, file_name: str, will_fail: bool = False) -> str:
        job_id = _new_job_id()
        self.jobs[job_id] = MockJob(file_name=file_name, will_fail=will_fail)
        return job_id

    def _elapsed(self, job: MockJob) -> float:
        return (datetime.now() - job.created_at).total_seconds()

    def _status(self, job: MockJob) -> str:
        if self._elapsed(job) < self.completion_time:
            return "processing"
        return "failed" if job.will_fail else "completed"

    def _get_job(self, request: web.Request) -> MockJob:
        job = self.jobs.get(request.match_info["job_id"])
        if job is None:
            raise web.HTTPNotFound(
                text='{"error": "Job not found"}', content_type="application/json"
            )
        return job

    async def handle_upload(self, request: web.Request) -> web.Response:
        post = await request.post()
        upload = post.get("file")
        if not isinstance(upload, web.FileField):
            raise web.HTTPBadRequest(
                text='{"error": "Missing file"}', content_type="application/json"
            )

        job_id = self.add_job(upload.filename, will_fail=random.random() < self.failure_rate)
        self.logger.info(f"Accepted {upload.filename} as {job_id}")
        return web.json_response({"jobId": job_id})

    async def handle_status(self, request: web.Request) -> web.Response:
        job_id = request.match_info["job_id"]
        job = self._get_job(request)
        status = self._status(job)
        self.logger.info(f"Returning {status} status for {job_id} (elapsed: {self._elapsed(job):.1f}s)")
        return web.json_response({"jobId": job_id, "status": status})

    async def handle_result(self, request: web.Request) -> web.Response:
        job_id = request.match_info["job_id"]
        job = self._get_job(request)
        ready_at = self.completion_time + self.result_delay
        if self._status(job) != "completed" or self._elapsed(job) < ready_at:
            self.logger.info(f"Result for {job_id} is not available")
            raise web.HTTPNotFound(
                text='{"error": "Result not found"}', content_type="application/json"
            )

        return web.json_response(
            {
                "jobId": job_id,
                "summary": (
                    f'This document "{job.file_name}" discusses various technological '
                    "concepts and innovations. The analysis reveals comprehensive coverage "
                    "of modern development practices, emerging technologies, and their "
                    "practical applications in today's digital landscape."
                ),
                "topics": TOPICS,
                "sentiment": "Positive",
            }
        )

    async def start(self, port: int = 3001):
        self.runner = web.AppRunner(self.app)
        await self.runner.setup()
        site = web.TCPSite(self.runner, "localhost", port)
        await site.start()
        self.logger.info(f"Server started on port {port}")
        return site

    async def stop(self) -> None:
        if self.runner is not None:
            await self.runner.cleanup()
            self.runner = None
