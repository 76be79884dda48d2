from __future__ import annotations

from fastapi import APIRouter

from siteguard.api import analysis, health, reports, sites, videos

router = APIRouter()
router.include_router(videos.router)
router.include_router(analysis.router)
router.include_router(reports.router)
router.include_router(sites.router)
router.include_router(health.router)
