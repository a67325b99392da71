"""
Pydantic models for API request/response serialization.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model emitting camelCase keys, as the browser client expects."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PropertyOut(CamelModel):
    """Output model for property data."""
    id: str
    title: str
    description: Optional[str] = None
    price: float
    property_type: str
    status: str
    bedrooms: int = 0
    bathrooms: int = 0
    square_feet: int = 0
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    images: List[str] = []
    featured: bool = False
    has_garage: bool = False
    has_pool: bool = False
    has_balcony: bool = False
    has_garden: bool = False
    has_air_conditioning: bool = False
    has_fireplace: bool = False
    has_pets_allowed: bool = False
    agent_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class FavoriteStatus(CamelModel):
    is_favorited: bool


class FavoriteChange(CamelModel):
    """Result of adding or removing a favorite."""
    property_id: str
    is_favorited: bool
    changed: bool


class MapsConfigOut(CamelModel):
    api_key: str = ""
