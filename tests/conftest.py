import asyncio
import heapq
import inspect
import io
from typing import Any, Dict, List, Optional, Sequence, Union
from unittest.mock import AsyncMock

import pytest
from PIL import Image

from lookgen.core.exceptions import TransportError
from lookgen.core.logging import setup_logging
from lookgen.core.scheduling import CancelToken, IScheduler
from lookgen.engines.generation.client import IGenerationClient
from lookgen.engines.generation.repository import IWardrobeRepository
from lookgen.modules.jobs.models import Job, JobStatus, JobType
from lookgen.modules.outfits.models import ItemImage, ReferenceAssets, WardrobeItem


@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    setup_logging(log_level="WARNING", json_format=True)


# =============================================================================
# Simulated Time
# =============================================================================

async def drain(rounds: int = 10):
    """Let ready tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class VirtualScheduler(IScheduler):
    """Deterministic scheduler; time only moves on advance()."""

    def __init__(self):
        self._now = 0.0
        self._seq = 0
        self._queue: List[Any] = []

    def now(self) -> float:
        return self._now

    def call_later(self, delay, callback, token: CancelToken) -> None:
        heapq.heappush(self._queue, (self._now + max(delay, 0.0), self._seq, callback, token))
        self._seq += 1

    @property
    def pending(self) -> int:
        """Scheduled callbacks whose token is still live."""
        return sum(1 for entry in self._queue if not entry[3].cancelled)

    async def advance(self, seconds: float):
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, callback, token = heapq.heappop(self._queue)
            self._now = due
            if token.cancelled:
                continue
            result = callback()
            if inspect.isawaitable(result):
                await result
            await drain()
        self._now = target
        await drain()


async def run_until_done(
    scheduler: VirtualScheduler,
    task: asyncio.Task,
    step: float = 2.0,
    timeout: float = 10.0
):
    """
    Advance simulated time until task finishes.

    With no timer pending, real time passes instead so thread-backed
    storage calls can complete.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    await drain()
    while not task.done():
        if loop.time() > deadline:
            task.cancel()
            raise TimeoutError("task did not finish")
        if scheduler.pending:
            await scheduler.advance(step)
        else:
            await asyncio.sleep(0.001)
    return await task


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


# =============================================================================
# Remote Job Service
# =============================================================================

class FakeGenerationClient(IGenerationClient):
    """
    In-memory job service.

    Each job type follows a planned sequence of statuses, one per status
    read; the last status repeats.
    """

    def __init__(self):
        self.jobs: Dict[str, Job] = {}
        self.created: List[Job] = []
        self.triggered: List[str] = []
        self.reads: List[str] = []
        self.events: List[tuple] = []
        self.read_error: Optional[Exception] = None
        self.trigger_error: Optional[Exception] = None
        self._plans: Dict[str, Dict[str, Any]] = {}
        self._sequences: Dict[str, List[str]] = {}

    def plan(
        self,
        job_type: Union[JobType, str],
        statuses: Sequence[str],
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        self._plans[JobType(job_type).value] = {
            "statuses": list(statuses),
            "result": result,
            "error": error,
        }

    def created_types(self) -> List[str]:
        return [job.job_type.value for job in self.created]

    def reads_for(self, job_id: str) -> int:
        return sum(1 for read in self.reads if read == job_id)

    async def create_job(self, owner_id: str, job_type: JobType, input: Dict[str, Any]) -> Job:
        job = Job(
            id=f"job-{len(self.created) + 1}",
            owner_id=owner_id,
            job_type=job_type,
            input=input
        )
        plan = self._plans.get(job.job_type.value, {"statuses": ["succeeded"]})
        self._sequences[job.id] = list(plan["statuses"])
        self.jobs[job.id] = job
        self.created.append(job)
        self.events.append(("create", job.job_type.value, job.id))
        return job

    async def trigger_execution(self, job_id: str) -> None:
        self.triggered.append(job_id)
        if self.trigger_error is not None:
            raise self.trigger_error

    async def get_job_fresh(self, job_id: str) -> Optional[Job]:
        self.reads.append(job_id)
        if self.read_error is not None:
            raise self.read_error

        job = self.jobs.get(job_id)
        if job is None:
            return None

        sequence = self._sequences[job_id]
        status = sequence.pop(0) if len(sequence) > 1 else sequence[0]
        plan = self._plans.get(job.job_type.value, {})

        update: Dict[str, Any] = {"status": JobStatus(status)}
        if status == "succeeded":
            update["result"] = plan.get("result") or {"image_id": f"img-{job_id}"}
        elif status == "failed":
            update["error"] = plan.get("error") or "Generation failed"

        job = job.model_copy(update=update)
        self.jobs[job_id] = job
        self.events.append(("read", job.job_type.value, status))
        return job

    async def get_active_job(self, owner_id, job_type, predicate=None) -> Optional[Job]:
        return self._newest(owner_id, job_type, predicate, finished=False)

    async def get_recent_job(self, owner_id, job_type, predicate=None) -> Optional[Job]:
        return self._newest(owner_id, job_type, predicate, finished=True)

    def _newest(self, owner_id, job_type, predicate, finished: bool) -> Optional[Job]:
        for job in reversed(list(self.jobs.values())):
            if job.owner_id != owner_id or job.job_type != JobType(job_type):
                continue
            if job.is_terminal != finished:
                continue
            if predicate is None or predicate(job):
                return job
        return None


@pytest.fixture
def generation_client() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def transport_error() -> TransportError:
    return TransportError("network error: connection reset")


# =============================================================================
# Wardrobe Data Store
# =============================================================================

@pytest.fixture
def reference_assets() -> ReferenceAssets:
    return ReferenceAssets(
        body_shot_image_id="body-1",
        headshot_image_id="head-1",
        ai_model_preference="gemini-2.5-flash-image"
    )


@pytest.fixture
def wardrobe_repository(reference_assets) -> AsyncMock:
    repository = AsyncMock(spec=IWardrobeRepository)
    repository.get_reference_assets.return_value = reference_assets
    repository.create_working_copy.return_value = "outfit-1"
    repository.get_category_names.return_value = {"cat-top": "Tops", "cat-bottom": "Bottoms"}
    repository.archive.return_value = None
    return repository


def make_items(count: int, with_images: bool = True) -> List[WardrobeItem]:
    items = []
    for index in range(count):
        images = []
        if with_images:
            images = [
                ItemImage(
                    image_id=f"img-{index}",
                    storage_key=f"user-1/items/item-{index}.png",
                    type="original",
                    sort_order=0
                )
            ]
        items.append(
            WardrobeItem(
                id=f"item-{index}",
                title=f"Item {index}",
                category_id="cat-top" if index % 2 == 0 else "cat-bottom",
                images=images
            )
        )
    return items


# =============================================================================
# Images
# =============================================================================

def make_image(
    width: int,
    height: int,
    color=(255, 255, 255, 255),
    mode: str = "RGBA"
) -> Image.Image:
    return Image.new(mode, (width, height), color)


def image_bytes(image: Image.Image, format: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    image.save(buffer, format=format)
    return buffer.getvalue()
