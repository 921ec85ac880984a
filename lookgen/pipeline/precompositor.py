"""
Background Pre-Compositing

Speculatively builds the grid composite for the current selection
while the user is still choosing items, so the submit path can skip
the compositing wait.

State machine:
    Idle -> (selection change, flag on) -> Scheduled
    Scheduled -> (debounce elapses) -> Running
    Running -> (success) -> Cached(signature) | (failure) -> Idle

Every selection change bumps a generation id. Only the task of the
current generation commits to the cache; a superseded task keeps
running but its result is never cached.
"""

import asyncio
from enum import Enum
from typing import List, Optional, Sequence

from lookgen.core.config import settings
from lookgen.core.exceptions import LookgenBaseException
from lookgen.core.logging import get_logger
from lookgen.core.metrics import record_precomposite_lookup
from lookgen.core.scheduling import CancelToken, IScheduler, get_scheduler
from lookgen.engines.compositing.sources import OutfitCompositor
from lookgen.modules.jobs.models import CompositeResult
from lookgen.modules.outfits.models import WardrobeItem, selection_signature

logger = get_logger(__name__)


class PreCompositeState(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    CACHED = "cached"


class BackgroundPreCompositor:
    """Debounced, latest-wins speculative grid compositing for one user."""

    def __init__(
        self,
        owner_id: str,
        compositor: Optional[OutfitCompositor] = None,
        scheduler: Optional[IScheduler] = None,
        enabled: Optional[bool] = None,
        debounce_ms: Optional[int] = None,
        prefix: Optional[str] = None
    ):
        self.owner_id = owner_id
        self.compositor = compositor or OutfitCompositor()
        self.scheduler = scheduler or get_scheduler()
        self.enabled = settings.PREGEN_GRID_ENABLED if enabled is None else enabled
        self.debounce_ms = settings.PREGEN_DEBOUNCE_MS if debounce_ms is None else debounce_ms
        self.prefix = prefix or settings.PREGEN_STORAGE_PREFIX

        self._generation = 0
        self._signature = ""
        self._pending: Optional[CancelToken] = None
        self._running: Optional[asyncio.Task] = None
        self._cached: Optional[CompositeResult] = None

    @property
    def state(self) -> PreCompositeState:
        if self._pending is not None:
            return PreCompositeState.SCHEDULED
        if self._running is not None:
            return PreCompositeState.RUNNING
        if self._cached is not None:
            return PreCompositeState.CACHED
        return PreCompositeState.IDLE

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def cached(self) -> Optional[CompositeResult]:
        return self._cached

    def update_selection(self, items: Sequence[WardrobeItem]) -> None:
        """
        React to a selection change.

        Cancels the pending debounce, invalidates a cached composite for
        another selection, and schedules a new run. A running task is
        superseded, not cancelled.
        """
        if not self.enabled:
            return

        signature = selection_signature(items)
        if signature == self._signature:
            return

        self._generation += 1
        self._signature = signature
        self._cancel_pending()

        if self._cached is not None and not self._cached.matches(signature):
            logger.debug("precomposite_invalidated", signature=self._cached.selection_signature)
            self._cached = None

        if not items:
            return

        token = CancelToken()
        self._pending = token
        generation = self._generation
        selected: List[WardrobeItem] = list(items)

        self.scheduler.call_later(
            self.debounce_ms / 1000.0,
            lambda: self._launch(generation, selected, token),
            token
        )
        logger.debug(
            "precomposite_scheduled",
            generation=generation,
            items=len(selected),
            debounce_ms=self.debounce_ms
        )

    async def get_stored_or_await_pending(self, signature: str) -> Optional[CompositeResult]:
        """
        Composite for signature, if one exists or is being built.

        Returns the cached result when it matches. Otherwise joins the
        running task and returns its result only if it matches.
        Returns None when nothing matching is available.
        """
        if not self.enabled:
            return None

        if self._cached is not None and self._cached.matches(signature):
            record_precomposite_lookup("cached")
            return self._cached

        task = self._running
        if task is None:
            record_precomposite_lookup("miss")
            return None

        logger.debug("precomposite_awaiting", signature=signature)
        result = await asyncio.shield(task)

        if result is not None and result.matches(signature):
            record_precomposite_lookup("awaited")
            return result

        record_precomposite_lookup("stale")
        return None

    def reset(self) -> None:
        """Drop the selection, the pending run and the cached composite."""
        self._generation += 1
        self._signature = ""
        self._cancel_pending()
        self._cached = None

    def _cancel_pending(self):
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _launch(self, generation: int, items: List[WardrobeItem], token: CancelToken):
        if self._pending is token:
            self._pending = None

        task = asyncio.ensure_future(self._compose(generation, items))
        self._running = task
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        if self._running is task:
            self._running = None

    async def _compose(self, generation: int, items: List[WardrobeItem]) -> Optional[CompositeResult]:
        logger.info("precomposite_started", generation=generation, items=len(items))

        try:
            result = await self.compositor.build(
                self.owner_id,
                items,
                prefix=self.prefix,
                source="speculative"
            )
        except LookgenBaseException as e:
            logger.warning("precomposite_failed", generation=generation, error=e.message)
            return None
        except Exception as e:
            # Never surfaces to the submit path
            logger.warning(
                "precomposite_failed",
                generation=generation,
                error=str(e),
                error_type=type(e).__name__
            )
            return None

        if generation != self._generation:
            logger.debug(
                "precomposite_superseded",
                generation=generation,
                current_generation=self._generation
            )
            return result

        self._cached = result
        logger.info("precomposite_cached", generation=generation, storage_key=result.storage_key)
        return result
