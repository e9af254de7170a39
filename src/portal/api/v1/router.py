"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.portal.api.v1 import filemaker, health

router = APIRouter()

router.include_router(health.router)
router.include_router(filemaker.router, prefix="/api/v1")
