from __future__ import annotations

from fastapi import APIRouter

from gemflush.api.routers import automation

router = APIRouter(prefix="/api/v1")
router.include_router(automation.router)
