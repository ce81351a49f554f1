"""
API Routers package.

Each module contains a FastAPI router for a specific domain.
"""

from .purchases import router as purchases_router

__all__ = [
    "purchases_router",
]
