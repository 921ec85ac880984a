"""
Wardrobe Data Store

Record-level collaborators of the outfit pipeline: reference assets,
private working copies of outfits, category names, and soft deletes.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from lookgen.core.exceptions import TransportError
from lookgen.core.logging import get_logger
from lookgen.engines.generation.client import RestClient
from lookgen.modules.outfits.models import ReferenceAssets, WardrobeItem

logger = get_logger(__name__)


class IWardrobeRepository(ABC):
    """Interface for the wardrobe data store."""

    @abstractmethod
    async def get_reference_assets(self, owner_id: str) -> ReferenceAssets:
        """Load the user's reference images and model preferences."""
        pass

    @abstractmethod
    async def create_working_copy(
        self,
        owner_id: str,
        title: str,
        items: Sequence[WardrobeItem],
        notes: Optional[str] = None
    ) -> str:
        """Create a private outfit record to render against. Returns its id."""
        pass

    @abstractmethod
    async def get_category_names(self, category_ids: Sequence[str]) -> Dict[str, str]:
        """Resolve category ids to display names."""
        pass

    @abstractmethod
    async def archive(self, record_id: str) -> None:
        """Soft-delete a working-copy record."""
        pass


class RestWardrobeRepository(RestClient, IWardrobeRepository):
    """Wardrobe tables over PostgREST."""

    service = "wardrobe"

    async def get_reference_assets(self, owner_id: str) -> ReferenceAssets:
        rows = await self._request(
            "GET",
            "user_settings",
            params={
                "user_id": f"eq.{owner_id}",
                "select": "body_shot_image_id,headshot_image_id,ai_model_preference,ai_model_outfit_render",
            }
        )
        if not rows:
            return ReferenceAssets()
        return ReferenceAssets.model_validate(rows[0])

    async def create_working_copy(
        self,
        owner_id: str,
        title: str,
        items: Sequence[WardrobeItem],
        notes: Optional[str] = None
    ) -> str:
        rows = await self._request(
            "POST",
            "outfits",
            json={
                "owner_user_id": owner_id,
                "title": title,
                "notes": notes,
                "visibility": "private",
            },
            headers={"Prefer": "return=representation"}
        )
        if not rows:
            raise TransportError("Failed to save outfit", service=self.service)
        outfit_id = rows[0]["id"]

        outfit_items: List[Dict[str, Optional[str]]] = [
            {
                "outfit_id": outfit_id,
                "wardrobe_item_id": item.id,
                "category_id": item.category_id,
                "position": index,
            }
            for index, item in enumerate(items)
        ]
        if outfit_items:
            await self._request("POST", "outfit_items", json=outfit_items)

        logger.info("working_copy_created", outfit_id=outfit_id, items_count=len(outfit_items))
        return outfit_id

    async def get_category_names(self, category_ids: Sequence[str]) -> Dict[str, str]:
        ids = sorted({category_id for category_id in category_ids if category_id})
        if not ids:
            return {}

        rows = await self._request(
            "GET",
            "wardrobe_categories",
            params={"id": f"in.({','.join(ids)})", "select": "id,name"}
        )
        return {row["id"]: row["name"] for row in rows or []}

    async def archive(self, record_id: str) -> None:
        await self._request(
            "PATCH",
            "outfits",
            params={"id": f"eq.{record_id}"},
            json={"archived_at": datetime.now(timezone.utc).isoformat()}
        )
        logger.info("working_copy_archived", outfit_id=record_id)
