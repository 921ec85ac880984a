"""
Single-Stage Jobs

Create, trigger and wait for one remote job: headshots, body
composites and product shots. These use the shorter single-image
polling bound. resume() re-attaches to a job submitted earlier, e.g.
before a restart, instead of creating a duplicate.
"""

from typing import Any, Dict, Optional

from lookgen.core.config import settings
from lookgen.core.exceptions import TransportError
from lookgen.core.logging import LogContext, get_logger
from lookgen.core.metrics import track_stage_latency
from lookgen.core.scheduling import IScheduler
from lookgen.engines.generation.client import IGenerationClient, JobPredicate
from lookgen.modules.jobs.models import Job, JobStatus, JobType
from lookgen.pipeline.poller import JobPoller

logger = get_logger(__name__)


class JobRunner:
    """Runs one job to completion."""

    def __init__(
        self,
        client: IGenerationClient,
        poller: Optional[JobPoller] = None,
        scheduler: Optional[IScheduler] = None,
        interval_ms: Optional[int] = None
    ):
        self.client = client
        self.poller = poller or JobPoller(client, scheduler=scheduler)
        self.interval_ms = interval_ms or settings.POLL_INTERVAL_MS

    async def start(self, owner_id: str, job_type: JobType, input: Dict[str, Any]) -> Job:
        """Create the job and trigger it without waiting."""
        job = await self.client.create_job(owner_id, job_type, input)

        try:
            await self.client.trigger_execution(job.id)
        except TransportError as e:
            logger.warning("trigger_failed_continuing", job_id=job.id, error=e.message)

        return job

    async def run(
        self,
        owner_id: str,
        job_type: JobType,
        input: Dict[str, Any],
        max_attempts: Optional[int] = None,
        final_check: bool = True
    ) -> Job:
        """
        Create, trigger and poll a job to success.

        Raises:
            JobFailedError: the worker reported failure
            PollingTimeoutError: the job did not finish in time
            TransportError: the job could not be created or read
        """
        job = await self.start(owner_id, job_type, input)
        return await self._wait(owner_id, job, max_attempts, final_check)

    async def resume(
        self,
        owner_id: str,
        job_type: JobType,
        predicate: Optional[JobPredicate] = None,
        max_attempts: Optional[int] = None
    ) -> Optional[Job]:
        """
        Re-attach to a job already submitted for this owner.

        An in-flight job is polled to completion; a job that succeeded
        within the recent window is returned as is. None means nothing
        to re-attach to and the caller should start a new job.
        """
        active = await self.client.get_active_job(owner_id, job_type, predicate)
        if active is not None:
            logger.info("job_reattached", job_id=active.id, job_type=active.job_type.value)
            return await self._wait(owner_id, active, max_attempts, final_check=True)

        recent = await self.client.get_recent_job(owner_id, job_type, predicate)
        if recent is not None and recent.status == JobStatus.SUCCEEDED:
            logger.info("job_recently_completed", job_id=recent.id, job_type=recent.job_type.value)
            return recent

        return None

    async def _wait(
        self,
        owner_id: str,
        job: Job,
        max_attempts: Optional[int],
        final_check: bool
    ) -> Job:
        job_type = job.job_type.value
        with LogContext(owner_id=owner_id, job_id=job.id, job_type=job_type):
            with track_stage_latency(job_type):
                return await self.poller.wait(
                    job.id,
                    interval_ms=self.interval_ms,
                    max_attempts=max_attempts or settings.SINGLE_IMAGE_MAX_ATTEMPTS,
                    job_type=job_type,
                    final_check=final_check
                )

    async def generate_headshot(
        self,
        owner_id: str,
        selfie_image_id: str,
        hair_style: Optional[str] = None,
        makeup_style: Optional[str] = None,
        prompt_text: Optional[str] = None
    ) -> Job:
        job_input: Dict[str, Any] = {"selfie_image_id": selfie_image_id}
        if prompt_text:
            job_input["prompt_text"] = prompt_text
        else:
            job_input["hair_style"] = hair_style
            job_input["makeup_style"] = makeup_style
        return await self.run(owner_id, JobType.HEADSHOT_GENERATE, job_input)

    async def generate_body_composite(
        self,
        owner_id: str,
        body_photo_image_id: str,
        headshot_image_id: Optional[str] = None
    ) -> Job:
        job_input: Dict[str, Any] = {"body_photo_image_id": body_photo_image_id}
        if headshot_image_id:
            job_input["headshot_image_id"] = headshot_image_id
        return await self.run(owner_id, JobType.BODY_COMPOSITE, job_input)

    async def generate_product_shot(self, owner_id: str, image_id: str, wardrobe_item_id: str) -> Job:
        return await self.run(
            owner_id,
            JobType.PRODUCT_SHOT,
            {"image_id": image_id, "wardrobe_item_id": wardrobe_item_id}
        )

    async def resume_product_shot(self, owner_id: str, wardrobe_item_id: str) -> Optional[Job]:
        return await self.resume(
            owner_id,
            JobType.PRODUCT_SHOT,
            lambda job: job.input.get("wardrobe_item_id") == wardrobe_item_id
        )
