"""
API v1 package.

Contains versioned REST routes and the review event stream.
"""

from fastapi import APIRouter

from verifygate.api.v1.review import router as review_router
from verifygate.api.v1.routes import router as routes_router

router = APIRouter()
router.include_router(routes_router)
router.include_router(review_router)

__all__ = ["router"]
