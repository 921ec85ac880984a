"""
Outfit Generation Orchestrator

Multi-stage pipeline for one outfit render:
1. Validating - reference body and face images must exist
2. Staging - private working copy of the outfit + category names
3. Compositing - pre-composited grid, or built on demand
4. Mannequin - only when the selection exceeds the model's item limit
5. Render - final outfit render, fed by the mannequin output if any

Any stage failure archives the working copy and raises one
categorized error. Only one pipeline runs per orchestrator.
"""

from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from lookgen.core.config import settings
from lookgen.core.exceptions import (
    GenerationCancelledError,
    GenerationInProgressError,
    JobFailedError,
    LookgenBaseException,
    TransportError,
    ValidationError,
)
from lookgen.core.logging import LogContext, get_logger, with_logging
from lookgen.core.metrics import track_stage_latency
from lookgen.core.scheduling import IScheduler
from lookgen.engines.compositing.sources import OutfitCompositor
from lookgen.engines.generation.client import IGenerationClient
from lookgen.engines.generation.repository import IWardrobeRepository
from lookgen.modules.jobs.models import CompositeResult, Job, JobType
from lookgen.modules.outfits.models import GenerationRequest, RenderResult, WardrobeItem
from lookgen.pipeline.poller import JobPoller
from lookgen.pipeline.precompositor import BackgroundPreCompositor

logger = get_logger(__name__)

PRO_MODEL_MARKERS = ("pro", "ultra")


def get_outfit_render_item_limit(model: Optional[str]) -> int:
    """Max items the model accepts in one render request."""
    name = (model or "").lower()
    if any(marker in name for marker in PRO_MODEL_MARKERS):
        return settings.RENDER_ITEM_LIMIT_PRO
    return settings.RENDER_ITEM_LIMIT_DEFAULT


class GenerationPhase(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    STAGING = "staging"
    COMPOSITING = "compositing"
    MANNEQUIN = "mannequin"
    RENDER = "render"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


class _Run:
    """Local bookkeeping for one generate() call."""

    def __init__(self, request: GenerationRequest):
        self.request = request
        self.outfit_id: Optional[str] = None
        self.archived = False
        self.cancelled = False


class GenerationOrchestrator:
    """Sequences the mannequin and render jobs of an outfit generation."""

    def __init__(
        self,
        client: IGenerationClient,
        repository: IWardrobeRepository,
        poller: Optional[JobPoller] = None,
        compositor: Optional[OutfitCompositor] = None,
        precompositor: Optional[BackgroundPreCompositor] = None,
        scheduler: Optional[IScheduler] = None,
        item_limit: Optional[int] = None,
        interval_ms: Optional[int] = None,
        mannequin_max_attempts: Optional[int] = None,
        render_max_attempts: Optional[int] = None,
        on_phase: Optional[Callable[["GenerationPhase"], None]] = None
    ):
        self.client = client
        self.repository = repository
        self.poller = poller or JobPoller(client, scheduler=scheduler)
        self.compositor = compositor
        self.precompositor = precompositor
        self.item_limit = item_limit
        self.interval_ms = interval_ms or settings.POLL_INTERVAL_MS
        self.mannequin_max_attempts = mannequin_max_attempts or settings.MANNEQUIN_MAX_ATTEMPTS
        self.render_max_attempts = render_max_attempts or settings.RENDER_MAX_ATTEMPTS
        self.on_phase = on_phase

        self._run: Optional[_Run] = None
        self._current_job_id: Optional[str] = None
        self._phase = GenerationPhase.IDLE

    @property
    def generating(self) -> bool:
        return self._run is not None

    @property
    def current_job_id(self) -> Optional[str]:
        return self._current_job_id

    @property
    def phase(self) -> GenerationPhase:
        return self._phase

    async def generate(self, request: GenerationRequest) -> RenderResult:
        """
        Run the full pipeline for request.

        Raises:
            GenerationInProgressError: another pipeline is active
            ValidationError: prerequisites missing, nothing was created
            JobFailedError / PollingTimeoutError / TransportError:
                a stage failed; the working copy has been archived
            GenerationCancelledError: cancel() was called
        """
        if self._run is not None or self._current_job_id is not None:
            raise GenerationInProgressError()

        run = _Run(request)
        self._run = run

        try:
            return await self._execute(run)
        except GenerationCancelledError:
            logger.info("generation_cancelled", outfit_id=run.outfit_id)
            if self._run is run:
                self._set_phase(run, GenerationPhase.CANCELLED)
            raise
        except LookgenBaseException as e:
            if run.cancelled:
                raise GenerationCancelledError(job_id=e.job_id) from e
            await self._fail(run, e)
            raise
        except Exception as e:
            if run.cancelled:
                raise GenerationCancelledError() from e
            error = LookgenBaseException(f"Generation failed: {e}", stage=self._phase.value)
            await self._fail(run, error)
            raise error from e
        finally:
            if self._run is run:
                self._run = None
                self._current_job_id = None

    def cancel(self) -> None:
        """
        Stop local tracking of the active pipeline.

        The remote job may keep running; only local observation stops.
        """
        run = self._run
        if run is None:
            return

        run.cancelled = True
        self._run = None
        self._current_job_id = None
        self.poller.stop()
        self._set_phase(run, GenerationPhase.CANCELLED, force=True)
        logger.info("generation_cancel_requested", outfit_id=run.outfit_id)

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def _execute(self, run: _Run) -> RenderResult:
        request = run.request
        self._set_phase(run, GenerationPhase.VALIDATING)

        if not request.items:
            raise ValidationError("Select at least one item to generate an outfit")

        assets = await self.repository.get_reference_assets(request.owner_id)
        self._check_cancelled(run)

        missing = assets.missing()
        if missing:
            raise ValidationError(
                f"Please upload your {' and '.join(missing)} in settings before generating"
            )

        model = request.model_preference or assets.render_model(settings.DEFAULT_MODEL_PREFERENCE)

        self._set_phase(run, GenerationPhase.STAGING)
        run.outfit_id = await self.repository.create_working_copy(
            request.owner_id,
            request.title,
            request.items,
            notes=request.notes
        )
        self._check_cancelled(run)

        category_names = await self.repository.get_category_names(
            [item.category_id for item in request.items if item.category_id]
        )
        self._check_cancelled(run)
        selected = self._describe_selection(request.items, category_names)

        self._set_phase(run, GenerationPhase.COMPOSITING)
        composite = await self._resolve_composite(request)
        self._check_cancelled(run)

        limit = self.item_limit or get_outfit_render_item_limit(model)
        logger.info(
            "generation_planned",
            outfit_id=run.outfit_id,
            items_count=len(request.items),
            item_limit=limit,
            model=model,
            has_composite=composite is not None
        )

        mannequin_image_id = None
        if len(request.items) > limit:
            self._set_phase(run, GenerationPhase.MANNEQUIN)
            mannequin_image_id = await self._mannequin_stage(run, selected, model, composite)

        self._set_phase(run, GenerationPhase.RENDER)
        render_input: Dict[str, Any] = {
            "user_id": request.owner_id,
            "outfit_id": run.outfit_id,
            "selected": selected,
            "body_shot_image_id": assets.body_shot_image_id,
            "headshot_image_id": assets.headshot_image_id,
            "model_preference": model,
            "settings": {
                "items_count": len(request.items),
                "used_client_stacking": composite is not None,
            },
        }
        if composite is not None:
            render_input["stacked_image_id"] = composite.storage_key
        if mannequin_image_id:
            render_input["mannequin_image_id"] = mannequin_image_id

        render_job = await self._render_stage(run, render_input)

        self._set_phase(run, GenerationPhase.SUCCEEDED)
        logger.info("generation_succeeded", outfit_id=run.outfit_id, job_id=render_job.id)

        return RenderResult(
            outfit_id=run.outfit_id,
            job_id=render_job.id,
            image_id=render_job.result_image_id(),
            mannequin_image_id=mannequin_image_id,
            stacked_image_id=composite.storage_key if composite else None,
            job=render_job
        )

    @with_logging("mannequin")
    async def _mannequin_stage(
        self,
        run: _Run,
        selected: List[Dict[str, Any]],
        model: str,
        composite: Optional[CompositeResult]
    ) -> str:
        job_input: Dict[str, Any] = {
            "user_id": run.request.owner_id,
            "outfit_id": run.outfit_id,
            "selected": selected,
            "model_preference": model,
        }
        if composite is not None:
            job_input["stacked_image_id"] = composite.storage_key

        job = await self._run_job(run, JobType.OUTFIT_MANNEQUIN, job_input, self.mannequin_max_attempts)

        mannequin_image_id = (job.result or {}).get("mannequin_image_id")
        if not mannequin_image_id:
            raise JobFailedError(
                "Mannequin generation finished without an image",
                job_type=JobType.OUTFIT_MANNEQUIN.value,
                job_id=job.id,
                stage="mannequin"
            )
        return mannequin_image_id

    @with_logging("render")
    async def _render_stage(self, run: _Run, job_input: Dict[str, Any]) -> Job:
        return await self._run_job(run, JobType.OUTFIT_RENDER, job_input, self.render_max_attempts)

    async def _run_job(
        self,
        run: _Run,
        job_type: JobType,
        job_input: Dict[str, Any],
        max_attempts: int
    ) -> Job:
        """Create, trigger and poll one job to success."""
        job = await self.client.create_job(run.request.owner_id, job_type, job_input)
        self._check_cancelled(run)
        self._current_job_id = job.id

        with LogContext(owner_id=run.request.owner_id, job_id=job.id, job_type=job_type.value):
            try:
                await self.client.trigger_execution(job.id)
            except TransportError as e:
                # The worker may have started anyway; polling decides
                logger.warning("trigger_failed_continuing", error=e.message)
            self._check_cancelled(run)

            with track_stage_latency(job_type.value):
                return await self.poller.wait(
                    job.id,
                    interval_ms=self.interval_ms,
                    max_attempts=max_attempts,
                    job_type=job_type.value,
                    final_check=True
                )

    async def _resolve_composite(self, request: GenerationRequest) -> Optional[CompositeResult]:
        """Speculative composite if it matches, else build on demand."""
        if self.precompositor is not None:
            composite = await self.precompositor.get_stored_or_await_pending(request.selection_signature)
            if composite is not None:
                logger.info("composite_reused", storage_key=composite.storage_key)
                return composite

        if self.compositor is None:
            return None

        try:
            return await self.compositor.build(request.owner_id, request.items)
        except LookgenBaseException as e:
            logger.warning("composite_unavailable", error=e.message)
            return None

    @staticmethod
    def _describe_selection(
        items: List[WardrobeItem],
        category_names: Dict[str, str]
    ) -> List[Dict[str, Any]]:
        selected = []
        for item in items:
            category = category_names.get(item.category_id, "") if item.category_id else ""
            selected.append({
                "category": category,
                "category_id": item.category_id,
                "subcategory_id": item.subcategory_id,
                "wardrobe_item_id": item.id,
                "text_snapshot": item.text_snapshot(category),
            })
        return selected

    # =========================================================================
    # Failure Handling
    # =========================================================================

    def _check_cancelled(self, run: _Run):
        if run.cancelled:
            raise GenerationCancelledError(stage=self._phase.value)

    async def _fail(self, run: _Run, error: LookgenBaseException):
        logger.error(
            "generation_failed",
            outfit_id=run.outfit_id,
            error=error.message,
            error_type=type(error).__name__,
            user_message=error.user_message
        )
        await self._archive(run)
        self._set_phase(run, GenerationPhase.FAILED)

    async def _archive(self, run: _Run):
        if run.outfit_id is None or run.archived:
            return
        run.archived = True
        try:
            await self.repository.archive(run.outfit_id)
        except LookgenBaseException as e:
            logger.error("working_copy_archive_failed", outfit_id=run.outfit_id, error=e.message)

    def _set_phase(self, run: _Run, phase: GenerationPhase, force: bool = False):
        # A cancelled run no longer owns the phase
        if run.cancelled and not force:
            return
        if self._phase == phase:
            return
        self._phase = phase
        logger.debug("generation_phase", phase=phase.value)
        if self.on_phase is not None:
            self.on_phase(phase)
