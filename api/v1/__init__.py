"""
API v1 module initialization
"""

from fastapi import APIRouter
from .accounts import router as accounts_router
from .posts import router as posts_router

# Create v1 API router
v1_router = APIRouter(prefix="/v1")

# Include all sub-routers
v1_router.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
v1_router.include_router(posts_router, tags=["Publishing"])
