import asyncio
from typing import Any, Callable, Optional, Set

from loguru import logger

from document_analysis_client.errors import ResultFetchError, StatusCheckError, ValidationError
from document_analysis_client.job_result_fetcher import JobResultFetcher
from document_analysis_client.models import JobStatus, PollerState, StatusResponse

POLL_INTERVAL_SECONDS = 3.0
MIN_JOB_ID_LENGTH = 3

INITIAL_CHECK_FAILED = "Job not found or failed to check status"
STATUS_CHECK_FAILED = "Failed to check job status"
RESULT_UNAVAILABLE = "Job is completed but failed to retrieve results"


def validate_job_id(job_id: Optional[str]) -> str:
    """Returns the trimmed job ID or raises ValidationError"""
    if job_id is not None and not isinstance(job_id, str):
        raise ValidationError("Job ID must be a string")
    job_id = (job_id or "").strip()
    if not job_id:
        raise ValidationError("Please enter a job ID")
    if len(job_id) < MIN_JOB_ID_LENGTH:
        raise ValidationError(f"Job ID must be at least {MIN_JOB_ID_LENGTH} characters")
    return job_id


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


class PollingSession:
    """Bookkeeping for the single job currently being watched"""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self.timer: Optional[asyncio.Task] = None
        self.terminated = False
        self.result_fetched = False
        self.finished = asyncio.Event()

    def stop(self) -> None:
        """Stops the timer. Safe to call repeatedly and from inside the timer itself."""
        timer, self.timer = self.timer, None
        self.terminated = True
        # The timer task stops itself by leaving its loop; cancelling it would
        # interrupt the result fetch that follows.
        if timer is not None and timer is not _current_task() and not timer.done():
            timer.cancel()


class JobStatusPoller:
    """Drives one job at a time from its first status query to a terminal state.

    ``check`` queries the status once. A ``processing`` job arms a background
    timer that re-queries every ``POLL_INTERVAL_SECONDS`` until the job is
    ``completed`` or ``failed``, a query fails, or the caller resets. Each
    tick only starts after the previous one finished, so a session never has
    more than one query in flight. Every response is checked against the
    current session before it is applied; answers arriving for a reset or
    replaced session are dropped.

    State transitions are published, in the order they are decided, to the
    optional ``on_state_change`` callback and kept in :attr:`state`.
    """

    def __init__(
        self,
        client,
        result_fetcher: Optional[JobResultFetcher] = None,
        on_state_change: Optional[Callable[[PollerState], Any]] = None,
    ):
        self.client = client
        self.result_fetcher = result_fetcher or JobResultFetcher(client)
        self.on_state_change = on_state_change
        self.logger = logger
        self._state = PollerState()
        self._session: Optional[PollingSession] = None
        self._timers: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "JobStatusPoller":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    @property
    def state(self) -> PollerState:
        return self._state

    @property
    def is_polling(self) -> bool:
        return self._session is not None and self._session.timer is not None

    def _publish(self, state: PollerState) -> None:
        self._state = state
        self.logger.debug(f"Job {state.job_id} state changed: {state!r}")
        if self.on_state_change is not None:
            self.on_state_change(state)

    def _end_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            self.logger.debug(f"Stopping session for job {session.job_id}")
            session.stop()
            session.finished.set()

    def _abandon_check(self, session: PollingSession, error: Optional[str]) -> None:
        """Drops a session whose initial check did not complete"""
        if self._session is not session:
            return
        self._session = None
        session.stop()
        try:
            if error is None:
                self._state = PollerState()
            else:
                self._publish(PollerState(job_id=session.job_id, error=error))
        finally:
            session.finished.set()

    def _fail_polling(self, session: PollingSession) -> None:
        if self._session is not session or session.finished.is_set():
            return
        session.stop()
        try:
            self._publish(
                self._state.model_copy(update={"polling": False, "error": STATUS_CHECK_FAILED})
            )
        finally:
            session.finished.set()

    async def check(self, job_id: str) -> PollerState:
        """Queries the job once and, while it is processing, keeps polling in the background"""
        job_id = validate_job_id(job_id)

        self._end_session()
        session = PollingSession(job_id)
        self._session = session
        self._state = PollerState(job_id=job_id)

        try:
            status_response = await self.client.get_status(job_id)
        except asyncio.CancelledError:
            self._abandon_check(session, None)
            raise
        except Exception as e:
            self.logger.error(f"Status check error for job {job_id}: {e!r}")
            self._abandon_check(session, INITIAL_CHECK_FAILED)
            raise

        if self._session is not session:
            self.logger.debug(f"Discarding initial status of replaced session for job {job_id}")
            return self._state

        self.logger.info(f"Initial status check for job {job_id}: {status_response.status.value}")
        if status_response.status is JobStatus.processing:
            self._publish(PollerState(job_id=job_id, status=JobStatus.processing))
            self._start_polling(session)
            self._publish(self._state.model_copy(update={"polling": True}))
            return self._state

        session.stop()
        try:
            return await self._finish(session, status_response)
        except asyncio.CancelledError:
            self._abandon_check(session, None)
            raise

    def _start_polling(self, session: PollingSession) -> None:
        self.logger.debug(f"Starting polling for job {session.job_id}")
        timer = asyncio.create_task(self._poll(session), name=f"poll-{session.job_id}")
        self._timers.add(timer)
        timer.add_done_callback(self._timers.discard)
        session.timer = timer

    async def _poll(self, session: PollingSession) -> None:
        try:
            while not session.terminated:
                await asyncio.sleep(POLL_INTERVAL_SECONDS)
                if session.terminated:
                    break
                await self._tick(session)
        except asyncio.CancelledError:
            raise
        except Exception:
            self.logger.exception(f"Polling for job {session.job_id} stopped unexpectedly")
            self._fail_polling(session)

    def _is_live(self, session: PollingSession) -> bool:
        return self._session is session and not session.terminated

    async def _tick(self, session: PollingSession) -> None:
        try:
            status_response = await self.client.get_status(session.job_id)
        except StatusCheckError as e:
            if not self._is_live(session):
                return
            self.logger.error(f"Polling error for job {session.job_id}: {e}")
            self._fail_polling(session)
            return

        if not self._is_live(session):
            self.logger.debug(f"Discarding late status for job {session.job_id}")
            return

        self.logger.debug(f"Polling result for job {session.job_id}: {status_response.status.value}")
        if status_response.status is JobStatus.processing:
            return

        session.stop()
        await self._finish(session, status_response)

    async def _finish(self, session: PollingSession, status_response: StatusResponse) -> PollerState:
        """Publishes the terminal state of a session whose timer is already stopped"""
        job_id = session.job_id
        if status_response.status is JobStatus.failed:
            state = PollerState(job_id=job_id, status=JobStatus.failed)
        else:
            state = await self._fetch_result(session)

        if self._session is not session:
            self.logger.debug(f"Discarding outcome of replaced session for job {job_id}")
            return self._state

        self.logger.info(f"Job {job_id} finished with status {state.status.value}")
        try:
            self._publish(state)
        finally:
            session.finished.set()
        return state

    async def _fetch_result(self, session: PollingSession) -> PollerState:
        job_id = session.job_id
        if session.result_fetched:
            raise RuntimeError(f"Result for job {job_id} was already fetched")
        session.result_fetched = True

        try:
            result = await self.result_fetcher.fetch(job_id)
        except Exception as e:
            if isinstance(e, ResultFetchError):
                self.logger.error(f"Failed to get results for job {job_id}: {e}")
            else:
                self.logger.exception(f"Unexpected error fetching results for job {job_id}")
            return PollerState(
                job_id=job_id,
                status=JobStatus.completed,
                result_unavailable=True,
                error=RESULT_UNAVAILABLE,
            )
        return PollerState(job_id=job_id, status=JobStatus.completed, result=result)

    async def wait(self) -> PollerState:
        """Waits until the current session ends and returns the state it left behind"""
        session = self._session
        if session is not None:
            await session.finished.wait()
        return self._state

    def reset(self) -> None:
        """Stops any polling and clears status, result and error"""
        self._end_session()
        self._publish(PollerState())

    def teardown(self) -> None:
        """Same cancellation as reset, without notifying the departing consumer"""
        self._end_session()
        self._state = PollerState()

    async def aclose(self) -> None:
        self.teardown()
        timers = [t for t in self._timers if t is not _current_task()]
        await asyncio.gather(*timers, return_exceptions=True)
