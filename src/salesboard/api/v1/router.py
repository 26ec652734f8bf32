"""V1 API router -- aggregates all endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.salesboard.api.v1 import auth, dashboard, deals, health, pages

router = APIRouter()

router.include_router(health.router)
router.include_router(auth.router)
router.include_router(deals.router)
router.include_router(dashboard.router)
router.include_router(pages.router)
