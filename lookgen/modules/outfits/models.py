"""
Outfit Selection Models

Wardrobe items selected for a render, the user's reference assets,
and the request/result shapes of the generation pipeline.
"""

from typing import Optional, List, Dict, Any, Sequence

from pydantic import BaseModel, Field

from lookgen.modules.jobs.models import Job


class ItemImage(BaseModel):
    """One stored image linked to a wardrobe item."""
    image_id: str
    storage_key: str
    type: Optional[str] = None  # product_shot, original, ...
    sort_order: Optional[int] = None


class WardrobeItem(BaseModel):
    """A selectable source garment."""
    id: str
    title: str = ""
    description: str = ""
    brand: str = ""
    color_primary: str = ""
    category_id: Optional[str] = None
    subcategory_id: Optional[str] = None
    images: List[ItemImage] = Field(default_factory=list)

    def text_snapshot(self, category_name: str = "") -> Dict[str, Any]:
        return {
            "title": self.title,
            "description": self.description,
            "brand": self.brand,
            "color_primary": self.color_primary,
            "category": category_name,
            "category_id": self.category_id,
            "subcategory_id": self.subcategory_id,
        }


def selection_signature(items: Sequence[WardrobeItem]) -> str:
    """Deterministic identity of an ordered selection."""
    return ",".join(item.id for item in items)


class ReferenceAssets(BaseModel):
    """The user's reference images and model preferences."""
    body_shot_image_id: Optional[str] = None
    headshot_image_id: Optional[str] = None
    ai_model_preference: Optional[str] = None
    ai_model_outfit_render: Optional[str] = None

    def missing(self) -> List[str]:
        missing = []
        if not self.body_shot_image_id:
            missing.append("body photo")
        if not self.headshot_image_id:
            missing.append("headshot")
        return missing

    def render_model(self, default: str) -> str:
        return self.ai_model_outfit_render or self.ai_model_preference or default


class GenerationRequest(BaseModel):
    """Input to one outfit generation pipeline."""
    owner_id: str
    items: List[WardrobeItem]
    title: str = "Generated Outfit"
    notes: Optional[str] = "AI-generated outfit"
    model_preference: Optional[str] = None

    @property
    def selection_signature(self) -> str:
        return selection_signature(self.items)


class RenderResult(BaseModel):
    """Reference to a finished render."""
    outfit_id: str
    job_id: str
    image_id: Optional[str] = None
    mannequin_image_id: Optional[str] = None
    stacked_image_id: Optional[str] = None
    job: Job
