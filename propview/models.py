"""
Data models for the propview client pipeline.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


FEATURE_FLAGS = (
    "hasGarage",
    "hasPool",
    "hasBalcony",
    "hasGarden",
    "hasAirConditioning",
    "hasFireplace",
    "hasPetsAllowed",
)


class SortKey(str, Enum):
    """Ordering criteria understood by the listing endpoint."""

    NEWEST = "newest"
    OLDEST = "oldest"
    PRICE_LOW = "price-low"
    PRICE_HIGH = "price-high"
    SIZE_LOW = "size-low"
    SIZE_HIGH = "size-high"
    BEDROOMS_LOW = "bedrooms-low"
    BEDROOMS_HIGH = "bedrooms-high"

    @classmethod
    def parse(cls, value: Any) -> "SortKey":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            choices = ", ".join(k.value for k in cls)
            raise ValueError(f"Unknown sort key {value!r} (expected one of: {choices})") from None


@dataclass(frozen=True)
class GeoPoint:
    """Centre of a radius search."""

    latitude: float
    longitude: float
    radius_km: float = 50.0


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


@dataclass(frozen=True)
class Listing:
    """Read-only projection of a property record as served by /api/properties."""

    id: str
    title: str
    price: Optional[float]
    bedrooms: int = 0
    bathrooms: int = 0
    square_feet: int = 0
    property_type: str = ""
    status: str = ""
    city: str = ""
    images: Tuple[str, ...] = ()
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    features: FrozenSet[str] = field(default_factory=frozenset)
    created_at: Optional[str] = None

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "Listing":
        """Build a Listing from one element of the endpoint's JSON array."""
        images = data.get("images") or ()
        if isinstance(images, str):
            images = [u for u in images.split("|") if u]
        return cls(
            id=str(data["id"]),
            title=data.get("title") or "",
            price=_to_float(data.get("price")),
            bedrooms=_to_int(data.get("bedrooms")),
            bathrooms=_to_int(data.get("bathrooms")),
            square_feet=_to_int(data.get("squareFeet")),
            property_type=data.get("propertyType") or "",
            status=data.get("status") or "",
            city=data.get("city") or "",
            images=tuple(images),
            latitude=_to_float(data.get("latitude")),
            longitude=_to_float(data.get("longitude")),
            features=frozenset(name for name in FEATURE_FLAGS if data.get(name)),
            created_at=data.get("createdAt"),
        )

    def to_row(self) -> Dict[str, Any]:
        """Flat dict used for tabular export."""
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price,
            "bedrooms": self.bedrooms,
            "bathrooms": self.bathrooms,
            "square_feet": self.square_feet,
            "property_type": self.property_type,
            "status": self.status,
            "city": self.city,
            "images": "|".join(self.images),
            "latitude": self.latitude,
            "longitude": self.longitude,
            "features": ",".join(sorted(self.features)),
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class MapsConfig:
    """Maps settings served by /api/config/maps."""

    api_key: str = ""

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "MapsConfig":
        return cls(api_key=data.get("apiKey") or "")


@dataclass(frozen=True)
class Page:
    """One bounded batch of results from a single fetch."""

    index: int
    items: Tuple[Listing, ...]

    def __len__(self) -> int:
        return len(self.items)


@dataclass(frozen=True)
class AccumulatedResult:
    """All pages fetched so far for one filter/sort context, in arrival order."""

    pages: Tuple[Page, ...] = ()

    @property
    def items(self) -> List[Listing]:
        return [item for page in self.pages for item in page.items]

    def append(self, page: Page) -> "AccumulatedResult":
        return AccumulatedResult(self.pages + (page,))
