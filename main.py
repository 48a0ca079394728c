"""
FastAPI application entry point for the page layout and render service.
"""

# load .env first so settings see it
from dotenv import load_dotenv
load_dotenv()

import logging
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mangaflow.api.render import router as render_router
from mangaflow.config import get_settings
from mangaflow.logging_config import setup_logging


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""

    settings = get_settings()
    setup_logging(
        log_dir=settings.LOG_DIR,
        log_level=settings.LOG_LEVEL,
        max_bytes=settings.LOG_MAX_BYTES,
        backup_count=settings.LOG_BACKUP_COUNT,
        backup_days=settings.LOG_BACKUP_DAYS,
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description=(
            "Text-region layout and rendering for translated comic and manga pages: "
            "bubble clustering, font fitting and page compositing."
        ),
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # CORS middleware
    cors_origins = [o.strip() for o in settings.BACKEND_CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins if cors_origins else ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(render_router)

    @app.on_event("startup")
    async def startup_event():
        """Warm up fonts so the first request does not pay for discovery."""
        logger = logging.getLogger(__name__)
        try:
            from mangaflow.services.render_service import get_render_service
            get_render_service()
            logger.info("Render service ready.")
        except Exception as e:
            logger.warning(f"Pre-loading failed (will retry on first request): {e}")

    return app


# Application instance
app = create_app()


def run():
    """Run the application with uvicorn."""
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    run()
