"""FastAPI application entry point."""
from __future__ import annotations

from fastapi import FastAPI

from webscraper.core.config import get_settings
from webscraper.core.logging import configure_app_logging
from webscraper.db.init_db import init_db
from webscraper.routers import routines as routines_router
from webscraper.routers import scrapers as scrapers_router


settings = get_settings()
app = FastAPI(title=settings.app_name)
configure_app_logging(app)
init_db()

app.include_router(scrapers_router.router)
app.include_router(routines_router.router)


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, str]:
    """Simple health check endpoint."""

    return {"status": "ok"}
