"""
Propview listing service: FastAPI application.
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import config
from .database import get_db_connection, init_db
from .routes import config_router, properties_router, ui_router

# Service log goes to stdout and LOG_FILE_PATH
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler(config.LOG_FILE)
    ]
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create the listings database before serving and log the maps setup."""
    logger.info("Starting Propview API...")
    try:
        config.validate()
        init_db()
        logger.info(f"Database path: {config.DB_PATH}")
        logger.info(f"Maps enabled: {bool(config.GOOGLE_MAPS_API_KEY)}")
        logger.info("API startup complete")
        yield
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise
    finally:
        logger.info("Shutting down Propview API...")


app = FastAPI(
    title=config.API_TITLE,
    version=config.API_VERSION,
    description=config.API_DESCRIPTION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# Browser clients served from other origins call /api directly
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=config.CORS_ALLOW_CREDENTIALS,
    allow_methods=config.CORS_ALLOW_METHODS,
    allow_headers=config.CORS_ALLOW_HEADERS,
)


@app.exception_handler(Exception)
async def global_exception_handler(request, exc: Exception):
    """Anything a route did not turn into an HTTPException becomes a bare 500."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.get("/health")
async def health_check():
    """Report database reachability and how many listings it holds."""
    try:
        with get_db_connection() as conn:
            listings = conn.execute("SELECT COUNT(*) FROM properties").fetchone()[0]

        return {
            "status": "healthy",
            "version": config.API_VERSION,
            "database": "connected",
            "properties": listings
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(status_code=503, detail="Service unavailable")


app.include_router(ui_router)
app.include_router(properties_router)
app.include_router(config_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "propview_api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=config.LOG_LEVEL.lower()
    )
