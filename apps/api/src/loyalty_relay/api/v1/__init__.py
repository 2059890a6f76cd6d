from fastapi import APIRouter

from .endpoints import (
    admin,
    health,
    loyalty,
    webhooks,
)

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(webhooks.router)
router.include_router(admin.router)
router.include_router(loyalty.router)
