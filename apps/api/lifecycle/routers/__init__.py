"""API routers."""

from lifecycle.routers.internal import router as internal_router

__all__ = ["internal_router"]
