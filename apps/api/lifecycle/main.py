"""FastAPI application entry point."""

from fastapi import Depends, FastAPI
from sqlalchemy import text
from sqlalchemy.orm import Session

from lifecycle.core.config import settings
from lifecycle.core.deps import get_db
from lifecycle.routers import internal_router


app = FastAPI(
    title="Lifecycle Automation API",
    description="Event-triggered email flows, send-time optimization and list hygiene",
    version=settings.VERSION,
    docs_url="/docs" if settings.is_dev else None,
    redoc_url="/redoc" if settings.is_dev else None,
)

# Job triggers and event ingestion (X-Internal-Secret)
app.include_router(internal_router)


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """
    Health check endpoint.

    Verifies database connectivity and returns environment info.
    """
    db.execute(text("SELECT 1"))
    return {"status": "ok", "env": settings.ENV, "version": settings.VERSION}
