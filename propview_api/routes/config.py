"""
Client configuration endpoints.
"""
from fastapi import APIRouter

from ..config import config
from ..models import MapsConfigOut

router = APIRouter(prefix="/api/config", tags=["config"])


@router.get("/maps", response_model=MapsConfigOut)
async def maps_config():
    """Maps API key for the browser; empty when maps are disabled."""
    return MapsConfigOut(api_key=config.GOOGLE_MAPS_API_KEY)
