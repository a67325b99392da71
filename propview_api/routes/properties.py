"""
API route handlers for property, favorites and export endpoints.
"""
import logging
from typing import List, Optional

import pandas as pd
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from fastapi.responses import StreamingResponse

from ..config import config
from ..database import (
    add_favorite, get_favorite_properties, get_properties, get_property_by_id,
    is_favorited, remove_favorite,
)
from ..models import FavoriteChange, FavoriteStatus, PropertyOut

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["properties"])

EXPORT_COLUMNS = [
    'id', 'title', 'price', 'property_type', 'status', 'bedrooms', 'bathrooms',
    'square_feet', 'address', 'city', 'state', 'zip_code', 'latitude', 'longitude',
    'images', 'created_at',
]


def get_property_filters(
    search: Optional[str] = None,
    keyword: Optional[str] = None,
    property_type: Optional[List[str]] = Query(None, alias="propertyType"),
    status: Optional[str] = None,
    city: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0),
    bedrooms: Optional[int] = Query(None, ge=0),
    bathrooms: Optional[int] = Query(None, ge=0),
    latitude: Optional[float] = Query(None, ge=-90, le=90),
    longitude: Optional[float] = Query(None, ge=-180, le=180),
    radius: Optional[float] = Query(None, gt=0),
    has_garage: Optional[bool] = Query(None, alias="hasGarage"),
    has_pool: Optional[bool] = Query(None, alias="hasPool"),
    has_balcony: Optional[bool] = Query(None, alias="hasBalcony"),
    has_garden: Optional[bool] = Query(None, alias="hasGarden"),
    has_air_conditioning: Optional[bool] = Query(None, alias="hasAirConditioning"),
    has_fireplace: Optional[bool] = Query(None, alias="hasFireplace"),
    has_pets_allowed: Optional[bool] = Query(None, alias="hasPetsAllowed"),
) -> dict:
    """Dependency to extract and validate property filters."""
    return {
        'search': search,
        'keyword': keyword,
        'propertyType': property_type,
        'status': status,
        'city': city,
        'minPrice': min_price,
        'maxPrice': max_price,
        'bedrooms': bedrooms,
        'bathrooms': bathrooms,
        'latitude': latitude,
        'longitude': longitude,
        'radius': radius,
        'hasGarage': has_garage,
        'hasPool': has_pool,
        'hasBalcony': has_balcony,
        'hasGarden': has_garden,
        'hasAirConditioning': has_air_conditioning,
        'hasFireplace': has_fireplace,
        'hasPetsAllowed': has_pets_allowed,
    }


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity from the X-User-Id header."""
    return (x_user_id or "").strip() or config.ANONYMOUS_USER


def _require_property(property_id: str) -> dict:
    data = get_property_by_id(property_id)
    if not data:
        raise HTTPException(status_code=404, detail="Property not found")
    return data


@router.get("/properties", response_model=List[PropertyOut])
async def list_properties(
    filters: dict = Depends(get_property_filters),
    sort_by: str = Query("newest", alias="sortBy"),
    limit: int = Query(config.DEFAULT_API_LIMIT, ge=1, le=config.MAX_API_LIMIT),
    offset: int = Query(0, ge=0)
):
    """Get properties with filtering, sorting and pagination."""
    try:
        rows = get_properties(filters, sort_by, limit, offset)
        return [PropertyOut(**row) for row in rows]

    except Exception as e:
        logger.error(f"Error fetching properties: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/properties/{property_id}", response_model=PropertyOut)
async def get_property(property_id: str):
    """Get a specific property by ID."""
    try:
        return PropertyOut(**_require_property(property_id))

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching property {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/properties/{property_id}/favorite", response_model=FavoriteChange)
async def favorite_property(property_id: str, user_id: str = Depends(get_user_id)):
    """Add a property to the caller's favorites."""
    try:
        _require_property(property_id)
        changed = add_favorite(user_id, property_id)
        logger.info(f"User {user_id} favorited {property_id} (changed={changed})")
        return FavoriteChange(property_id=property_id, is_favorited=True, changed=changed)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error adding favorite {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.delete("/properties/{property_id}/favorite", response_model=FavoriteChange)
async def unfavorite_property(property_id: str, user_id: str = Depends(get_user_id)):
    """Remove a property from the caller's favorites."""
    try:
        changed = remove_favorite(user_id, property_id)
        return FavoriteChange(property_id=property_id, is_favorited=False, changed=changed)

    except Exception as e:
        logger.error(f"Error removing favorite {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/properties/{property_id}/is-favorited", response_model=FavoriteStatus)
async def property_is_favorited(property_id: str, user_id: str = Depends(get_user_id)):
    try:
        return FavoriteStatus(is_favorited=is_favorited(user_id, property_id))

    except Exception as e:
        logger.error(f"Error checking favorite {property_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/user/favorites", response_model=List[PropertyOut])
async def user_favorites(user_id: str = Depends(get_user_id)):
    """Properties favorited by the caller."""
    try:
        return [PropertyOut(**row) for row in get_favorite_properties(user_id)]

    except Exception as e:
        logger.error(f"Error fetching favorites for {user_id}: {e}")
        raise HTTPException(status_code=500, detail="Internal server error")


@router.get("/export/csv")
async def export_properties_csv(
    filters: dict = Depends(get_property_filters),
    sort_by: str = Query("newest", alias="sortBy")
):
    """Export filtered properties as CSV."""
    try:
        # Get all matching properties (no pagination for export)
        rows = get_properties(filters, sort_by, limit=config.MAX_EXPORT_ROWS, offset=0)

        df = pd.DataFrame(rows, columns=EXPORT_COLUMNS)
        if not df.empty:
            df['images'] = df['images'].map(lambda urls: '|'.join(urls or []))

        csv_content = df.to_csv(index=False).encode('utf-8')

        return StreamingResponse(
            iter([csv_content]),
            media_type='text/csv',
            headers={'Content-Disposition': 'attachment; filename="propview_properties.csv"'}
        )

    except Exception as e:
        logger.error(f"Error exporting CSV: {e}")
        raise HTTPException(status_code=500, detail="Error generating CSV export")
