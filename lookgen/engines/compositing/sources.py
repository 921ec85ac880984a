"""
Outfit Composite Builder

Picks one source image per selected item, fetches the bytes from
storage, composes the grid and uploads the JPEG so the remote worker
can reference it by storage key.
"""

import time
import uuid
from typing import List, Optional, Sequence

from lookgen.core.config import settings
from lookgen.core.exceptions import CompositingError, StorageError
from lookgen.core.logging import get_logger
from lookgen.core.metrics import record_composite
from lookgen.core.storage import IStorage, get_storage
from lookgen.engines.compositing.grid import GridComposer
from lookgen.modules.jobs.models import CompositeResult
from lookgen.modules.outfits.models import ItemImage, WardrobeItem, selection_signature

logger = get_logger(__name__)

MISSING_SORT_ORDER = 999


def pick_source_image(item: WardrobeItem) -> Optional[ItemImage]:
    """
    Image used to represent item in the grid.

    The product shot wins; otherwise the lowest sort_order.
    """
    if not item.images:
        return None

    for image in item.images:
        if image.type == "product_shot":
            return image

    return min(
        item.images,
        key=lambda image: MISSING_SORT_ORDER if image.sort_order is None else image.sort_order
    )


def pick_source_images(items: Sequence[WardrobeItem]) -> List[ItemImage]:
    """Source images in selection order. Items without images are skipped."""
    chosen = []
    for item in items:
        image = pick_source_image(item)
        if image is None:
            logger.debug("item_without_image_skipped", item_id=item.id)
            continue
        chosen.append(image)
    return chosen


def composite_path(owner_id: str, prefix: str = "grid") -> str:
    """Storage key for a new composite."""
    timestamp_ms = int(time.time() * 1000)
    return f"{owner_id}/ai/stacked/{prefix}-{timestamp_ms}-{uuid.uuid4().hex[:12]}.jpg"


class OutfitCompositor:
    """Builds and uploads the grid composite for a selection."""

    def __init__(
        self,
        storage: Optional[IStorage] = None,
        composer: Optional[GridComposer] = None,
        bucket: Optional[str] = None
    ):
        self.storage = storage or get_storage()
        self.composer = composer or GridComposer()
        self.bucket = bucket or settings.STORAGE_BUCKET

    async def fetch_sources(self, items: Sequence[WardrobeItem]) -> List[bytes]:
        """
        Download the chosen source image of every item.

        Raises:
            CompositingError: no item has an image, or a download failed
        """
        images = pick_source_images(items)
        if not images:
            raise CompositingError("No images available for the selected items")

        sources = []
        for image in images:
            try:
                sources.append(await self.storage.download(self.bucket, image.storage_key))
            except StorageError as e:
                raise CompositingError(
                    f"Failed to fetch source image {image.image_id}: {e.message}",
                    details={"storage_key": image.storage_key}
                ) from e
        return sources

    async def build(
        self,
        owner_id: str,
        items: Sequence[WardrobeItem],
        prefix: str = "grid",
        source: str = "on_demand"
    ) -> CompositeResult:
        """
        Compose the selection's grid and upload it.

        Raises:
            CompositingError: fetching, drawing or encoding failed
            StorageError: the upload failed
        """
        signature = selection_signature(items)

        try:
            sources = await self.fetch_sources(items)
            data = self.composer.compose(sources)
            storage_key = await self.storage.upload(
                self.bucket,
                composite_path(owner_id, prefix),
                data,
                content_type="image/jpeg"
            )
        except (CompositingError, StorageError):
            record_composite(source, "failure")
            raise

        record_composite(source, "success")
        logger.info(
            "composite_uploaded",
            source=source,
            items=len(sources),
            storage_key=storage_key
        )

        return CompositeResult(
            selection_signature=signature,
            storage_key=storage_key,
            public_url=self.storage.get_public_url(self.bucket, storage_key)
        )
