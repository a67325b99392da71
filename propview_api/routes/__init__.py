"""
Route package initialization.
"""
from .config import router as config_router
from .properties import router as properties_router
from .ui import router as ui_router

__all__ = ["config_router", "properties_router", "ui_router"]
