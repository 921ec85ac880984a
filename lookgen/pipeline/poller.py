"""
Job Status Poller

Bounded-retry polling of one remote job at a time.

Lifecycle of a poll session:
1. start() performs one fresh status read immediately
2. Re-reads on a fixed timer until a terminal status or max attempts
3. Exactly one of on_complete / on_error fires, guarded by a one-shot flag

Transport errors stop polling immediately. Nothing is retried
automatically; callers use retry() to restart the last session.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from lookgen.core.config import settings
from lookgen.core.exceptions import (
    GenerationCancelledError,
    JobFailedError,
    LookgenBaseException,
    PollingTimeoutError,
    TransportError,
)
from lookgen.core.logging import get_logger
from lookgen.core.metrics import record_job_outcome, record_poll_attempt
from lookgen.core.scheduling import IScheduler, get_scheduler
from lookgen.engines.generation.client import IGenerationClient
from lookgen.modules.jobs.models import Job, JobStatus, PollState

logger = get_logger(__name__)

OnComplete = Callable[[Job], Union[None, Awaitable[None]]]
OnError = Callable[[LookgenBaseException], Union[None, Awaitable[None]]]


class JobPoller:
    """Single-flight status poller for remote generation jobs."""

    def __init__(self, client: IGenerationClient, scheduler: Optional[IScheduler] = None):
        self.client = client
        self.scheduler = scheduler or get_scheduler()
        self._state: Optional[PollState] = None
        self._on_complete: Optional[OnComplete] = None
        self._on_error: Optional[OnError] = None
        self._final_check = False
        self._last_start: Optional[Dict[str, Any]] = None
        self._waiter: Optional[asyncio.Future] = None

    @property
    def state(self) -> Optional[PollState]:
        return self._state

    @property
    def active(self) -> bool:
        return self._state is not None and self._state.active

    @property
    def job_id(self) -> Optional[str]:
        return self._state.job_id if self._state else None

    async def start(
        self,
        job_id: str,
        on_complete: OnComplete,
        on_error: OnError,
        interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        job_type: Optional[str] = None,
        final_check: bool = False
    ) -> None:
        """
        Begin polling job_id.

        Starting the job already being polled is a no-op. Starting a
        different job stops the current session first.
        """
        if self.active and self._state.job_id == job_id:
            logger.debug("poll_already_active", job_id=job_id)
            return

        if self._state is not None:
            self.stop()

        state = PollState(
            job_id=job_id,
            max_attempts=max_attempts or settings.POLL_MAX_ATTEMPTS,
            interval_ms=interval_ms or settings.POLL_INTERVAL_MS,
            job_type=job_type
        )
        self._state = state
        self._on_complete = on_complete
        self._on_error = on_error
        self._final_check = final_check
        self._last_start = {
            "job_id": job_id,
            "on_complete": on_complete,
            "on_error": on_error,
            "interval_ms": state.interval_ms,
            "max_attempts": state.max_attempts,
            "job_type": job_type,
            "final_check": final_check,
        }

        logger.info(
            "poll_started",
            job_id=job_id,
            job_type=job_type,
            interval_ms=state.interval_ms,
            max_attempts=state.max_attempts
        )

        await self._tick(state)

    def stop(self) -> None:
        """Stop polling. Reads still in flight are discarded when they return."""
        state = self._state
        if state is not None:
            state.token.cancel()
            self._state = None
            logger.debug("poll_stopped", job_id=state.job_id, attempts=state.attempts_used)

        waiter, self._waiter = self._waiter, None
        if waiter is not None and not waiter.done():
            waiter.set_exception(
                GenerationCancelledError(
                    "Polling stopped",
                    job_id=state.job_id if state else None
                )
            )

    async def retry(self) -> None:
        """Reset attempts and restart the last session."""
        if self._last_start is None:
            raise RuntimeError("Nothing to retry: poller was never started")

        logger.info("poll_retry", job_id=self._last_start["job_id"])
        self.stop()
        await self.start(**self._last_start)

    async def poll_now(self) -> None:
        """One immediate out-of-band read of the active job."""
        state = self._state
        if state is None or not state.active:
            return
        await self._read(state)

    async def wait(
        self,
        job_id: str,
        interval_ms: Optional[int] = None,
        max_attempts: Optional[int] = None,
        job_type: Optional[str] = None,
        final_check: bool = False
    ) -> Job:
        """
        Poll job_id to completion.

        Returns:
            The succeeded Job

        Raises:
            JobFailedError: the job reached the failed status
            PollingTimeoutError: attempts exhausted
            TransportError: a status read failed
            GenerationCancelledError: stop() was called while waiting
        """
        self.stop()

        future = asyncio.get_running_loop().create_future()

        def resolve(job: Job):
            if not future.done():
                future.set_result(job)

        def reject(error: LookgenBaseException):
            if not future.done():
                future.set_exception(error)

        await self.start(
            job_id,
            resolve,
            reject,
            interval_ms=interval_ms,
            max_attempts=max_attempts,
            job_type=job_type,
            final_check=final_check
        )
        if not future.done():
            self._waiter = future

        return await future

    # =========================================================================
    # Internals
    # =========================================================================

    def _schedule(self, state: PollState):
        self.scheduler.call_later(state.interval_seconds, lambda: self._tick(state), state.token)

    async def _tick(self, state: PollState):
        if not state.active:
            return

        # poll_now() may have used up the last attempt
        if state.exhausted:
            await self._on_exhausted(state)
            return

        await self._read(state)

        if not state.active:
            return
        if state.exhausted:
            await self._on_exhausted(state)
        else:
            self._schedule(state)

    async def _fetch(self, state: PollState) -> Optional[Job]:
        try:
            return await self.client.get_job_fresh(state.job_id)
        except LookgenBaseException:
            raise
        except Exception as e:
            raise TransportError(
                f"Failed to read job status: {e}",
                job_id=state.job_id
            ) from e

    async def _read(self, state: PollState):
        state.attempts_used += 1
        record_poll_attempt(state.job_type)

        try:
            job = await self._fetch(state)
        except LookgenBaseException as e:
            if not state.active:
                return
            logger.warning("poll_read_failed", job_id=state.job_id, error=str(e))
            await self._finish(state, error=e)
            return

        if not state.active:
            logger.debug("poll_result_discarded", job_id=state.job_id)
            return

        if job is None:
            await self._finish(
                state,
                error=TransportError(f"Job {state.job_id} not found", job_id=state.job_id)
            )
            return

        logger.debug(
            "poll_attempt",
            job_id=state.job_id,
            attempt=state.attempts_used,
            max_attempts=state.max_attempts,
            status=job.status.value
        )
        await self._settle(state, job)

    async def _settle(self, state: PollState, job: Job) -> bool:
        """Complete the session if job is terminal. Returns True if it was."""
        if job.status == JobStatus.SUCCEEDED:
            await self._finish(state, job=job)
            return True

        if job.status == JobStatus.FAILED:
            await self._finish(
                state,
                error=JobFailedError(
                    job.error or "Generation failed",
                    job_type=job.job_type.value,
                    job_id=job.id
                )
            )
            return True

        return False

    async def _on_exhausted(self, state: PollState):
        if self._final_check:
            try:
                job = await self._fetch(state)
            except LookgenBaseException as e:
                logger.warning("poll_final_check_failed", job_id=state.job_id, error=str(e))
                job = None

            if not state.active:
                return
            if job is not None and await self._settle(state, job):
                logger.info("poll_final_check_resolved", job_id=state.job_id, status=job.status.value)
                return

        logger.warning("poll_timeout", job_id=state.job_id, attempts=state.attempts_used)
        await self._finish(
            state,
            error=PollingTimeoutError(attempts=state.attempts_used, job_id=state.job_id)
        )

    async def _finish(
        self,
        state: PollState,
        job: Optional[Job] = None,
        error: Optional[LookgenBaseException] = None
    ):
        if state.completed:
            return
        state.completed = True
        state.token.cancel()

        on_complete, on_error = self._on_complete, self._on_error
        if self._state is state:
            self._state = None
            self._waiter = None

        if error is None:
            record_job_outcome(state.job_type, "succeeded")
            logger.info("poll_completed", job_id=state.job_id, attempts=state.attempts_used)
            result = on_complete(job)
        else:
            if isinstance(error, PollingTimeoutError):
                outcome = "timeout"
            elif isinstance(error, JobFailedError):
                outcome = "failed"
            else:
                outcome = "error"
            record_job_outcome(state.job_type, outcome)
            logger.info("poll_failed", job_id=state.job_id, outcome=outcome, error=error.message)
            result = on_error(error)

        if inspect.isawaitable(result):
            await result
