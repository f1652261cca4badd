"""
API v1 routes.
"""

from fastapi import APIRouter

from mixwarz.api.v1 import competitions

router = APIRouter()

router.include_router(competitions.router, prefix="/competitions", tags=["Competitions"])
