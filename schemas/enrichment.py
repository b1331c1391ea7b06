"""
Pydantic schemas for per-aircraft enrichment results
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any

# Provider sub-resources fetched for every aircraft
ENRICHMENT_CATEGORIES = (
    "status",
    "airframe",
    "engines",
    "apu",
    "avionics",
    "features",
    "additional_equipment",
    "interior",
    "exterior",
    "maintenance",
    "relationships",
)
IMAGES_CATEGORY = "images"


class TechSummary(BaseModel):
    """Derived technical summary; missing categories yield null/zero"""
    engines: int = 0
    avionics_suite: Optional[str] = None
    maintenance_due_in_days: Optional[int] = None
    interior_year: Optional[int] = None
    exterior_year: Optional[int] = None
    features_count: int = 0


class ImageRecord(BaseModel):
    """One image entry as persisted in aircraft_images"""
    url: str
    thumbnail_url: Optional[str] = None
    image_type: str = "other"
    caption: Optional[str] = None
    is_hero: bool = False
    is_placeholder: bool = False
    sort_order: int = 0


class EnrichmentBundle(BaseModel):
    """
    Enrichment documents for one aircraft.

    A category missing from `categories` means the fetch failed or returned
    nothing; it says nothing about the aircraft itself. Failed fetches are
    also listed in `failed_categories`.
    """
    categories: Dict[str, Any] = Field(default_factory=dict)
    failed_categories: List[str] = Field(default_factory=list)
    images: List[ImageRecord] = Field(default_factory=list)
    image_source: str = "placeholder"  # provider | listing | placeholder
    tech_summary: TechSummary = Field(default_factory=TechSummary)
    attempted: bool = False

    def get(self, category: str) -> Any:
        return self.categories.get(category)

    @property
    def has_real_images(self) -> bool:
        return self.image_source != "placeholder"


class EnrichmentResult(BaseModel):
    """Bundles for a batch, in input order, plus error counters"""
    bundles: List[EnrichmentBundle] = Field(default_factory=list)
    category_errors: Dict[str, int] = Field(default_factory=dict)
    aircraft_errors: int = 0
    requests_made: int = 0

    def merge(self, other: "EnrichmentResult") -> None:
        """Append another batch's bundles and add up its counters"""
        self.bundles.extend(other.bundles)
        self.aircraft_errors += other.aircraft_errors
        self.requests_made += other.requests_made
        for name, count in other.category_errors.items():
            self.category_errors[name] = self.category_errors.get(name, 0) + count
