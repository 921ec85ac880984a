"""
Remote Generation Service Client

Job-store and worker-trigger contract consumed by the generation core:
- create_job: persist a new job in queued status
- trigger_execution: ask the remote worker to start (fire-and-forget)
- get_job_fresh: status read that bypasses every caching layer
- get_active_job / get_recent_job: find a job already submitted, so a
  caller can re-attach to it instead of creating a duplicate

HttpGenerationClient talks to a PostgREST-style job store and the
worker's HTTP trigger endpoint.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Dict, Any, List, Sequence, Union

import httpx

from lookgen.core.config import settings
from lookgen.core.exceptions import TransportError
from lookgen.core.logging import get_logger
from lookgen.modules.jobs.models import Job, JobStatus, JobType

logger = get_logger(__name__)

JobPredicate = Callable[[Job], bool]

ACTIVE_STATUSES = ("queued", "processing", "running")
FINISHED_STATUSES = (JobStatus.SUCCEEDED.value, JobStatus.FAILED.value)


class IGenerationClient(ABC):
    """Interface for the remote job service."""

    @abstractmethod
    async def create_job(self, owner_id: str, job_type: JobType, input: Dict[str, Any]) -> Job:
        """Persist a new job in queued status."""
        pass

    @abstractmethod
    async def trigger_execution(self, job_id: str) -> None:
        """
        Ask the remote worker to start.

        Raises:
            TransportError: the call failed at the network layer. The
                worker may still have started.
        """
        pass

    @abstractmethod
    async def get_job_fresh(self, job_id: str) -> Optional[Job]:
        """Read the job's true current state, or None if it does not exist."""
        pass

    @abstractmethod
    async def get_active_job(
        self,
        owner_id: str,
        job_type: JobType,
        predicate: Optional[JobPredicate] = None
    ) -> Optional[Job]:
        """Newest queued or processing job of job_type matching predicate."""
        pass

    @abstractmethod
    async def get_recent_job(
        self,
        owner_id: str,
        job_type: JobType,
        predicate: Optional[JobPredicate] = None
    ) -> Optional[Job]:
        """Newest job of job_type that finished within the recent window."""
        pass


# =============================================================================
# PostgREST Base Client
# =============================================================================

class RestClient:
    """Shared HTTP plumbing for PostgREST-style tables."""

    service = "generation"

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.api_url = (api_url or settings.GENERATION_API_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.GENERATION_API_KEY
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
            headers["apikey"] = self.api_key
        return headers

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout or self.timeout,
            headers=self._headers(),
            transport=self._transport
        )

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Union[Dict[str, Any], List[Dict[str, Any]]]] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Any:
        url = f"{self.api_url}/rest/v1/{path}"
        try:
            async with self._client() as client:
                response = await client.request(method, url, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(
                f"{method} {path} failed: network error: {e}",
                service=self.service
            ) from e

        if response.status_code >= 400:
            raise TransportError(
                f"{method} {path} failed: {response.status_code} {response.text[:200]}",
                service=self.service,
                http_status=response.status_code
            )

        if not response.content:
            return None
        return response.json()


# =============================================================================
# HTTP Implementation
# =============================================================================

class HttpGenerationClient(RestClient, IGenerationClient):
    """Job store over PostgREST plus the worker's HTTP trigger."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        runner_url: Optional[str] = None,
        timeout: Optional[float] = None,
        trigger_timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(api_url=api_url, api_key=api_key, timeout=timeout, transport=transport)
        self.runner_url = runner_url or settings.JOB_RUNNER_URL
        self.trigger_timeout = trigger_timeout or settings.TRIGGER_TIMEOUT_SECONDS

        if not self.runner_url.startswith(("http://", "https://")):
            raise ValueError(f"Invalid job runner URL configuration: {self.runner_url!r}")

    async def create_job(self, owner_id: str, job_type: JobType, input: Dict[str, Any]) -> Job:
        rows = await self._request(
            "POST",
            "ai_jobs",
            json={
                "owner_user_id": owner_id,
                "job_type": JobType(job_type).value,
                "input": input,
                "status": JobStatus.QUEUED.value,
            },
            headers={"Prefer": "return=representation"}
        )

        if not rows:
            raise TransportError("Job store returned no row for created job", service=self.service)

        job = Job.model_validate(rows[0] if isinstance(rows, list) else rows)
        logger.info("job_created", job_id=job.id, job_type=job.job_type.value)
        return job

    async def trigger_execution(self, job_id: str) -> None:
        try:
            async with self._client(timeout=self.trigger_timeout) as client:
                response = await client.post(self.runner_url, json={"job_id": job_id})
        except httpx.TimeoutException:
            # Long-running jobs outlive the trigger request; the worker keeps going
            logger.info("trigger_timed_out", job_id=job_id)
            return
        except httpx.HTTPError as e:
            raise TransportError(
                f"Failed to trigger job execution: network error: {e}",
                service="job_runner",
                job_id=job_id
            ) from e

        if response.status_code >= 400:
            raise TransportError(
                f"Job runner returned {response.status_code}: {response.text[:200]}",
                service="job_runner",
                http_status=response.status_code,
                job_id=job_id
            )

        logger.debug("job_triggered", job_id=job_id)

    async def get_job_fresh(self, job_id: str) -> Optional[Job]:
        rows = await self._request(
            "GET",
            "ai_jobs",
            params={"id": f"eq.{job_id}", "select": "*"},
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"}
        )

        if not rows:
            return None
        return Job.model_validate(rows[0])

    async def get_active_job(
        self,
        owner_id: str,
        job_type: JobType,
        predicate: Optional[JobPredicate] = None
    ) -> Optional[Job]:
        rows = await self._request(
            "GET",
            "ai_jobs",
            params={
                "select": "*",
                "owner_user_id": f"eq.{owner_id}",
                "job_type": f"eq.{JobType(job_type).value}",
                "status": f"in.({','.join(ACTIVE_STATUSES)})",
                "order": "created_at.desc",
                "limit": str(settings.JOB_LOOKUP_LIMIT),
            },
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"}
        )
        return self._first_match(rows, predicate)

    async def get_recent_job(
        self,
        owner_id: str,
        job_type: JobType,
        predicate: Optional[JobPredicate] = None
    ) -> Optional[Job]:
        since = datetime.now(timezone.utc) - timedelta(seconds=settings.RECENT_JOB_WINDOW_SECONDS)
        rows = await self._request(
            "GET",
            "ai_jobs",
            params={
                "select": "*",
                "owner_user_id": f"eq.{owner_id}",
                "job_type": f"eq.{JobType(job_type).value}",
                "status": f"in.({','.join(FINISHED_STATUSES)})",
                "updated_at": f"gte.{since.isoformat()}",
                "order": "updated_at.desc",
                "limit": str(settings.JOB_LOOKUP_LIMIT),
            },
            headers={"Cache-Control": "no-store", "Pragma": "no-cache"}
        )
        return self._first_match(rows, predicate)

    @staticmethod
    def _first_match(
        rows: Optional[Sequence[Dict[str, Any]]],
        predicate: Optional[JobPredicate]
    ) -> Optional[Job]:
        for row in rows or []:
            job = Job.model_validate(row)
            if predicate is None or predicate(job):
                return job
        return None
