from fastapi import APIRouter

from .endpoints import (
    directory,
    health,
    loyalty_cards,
    loyalty_programs,
    observability,
)

router = APIRouter()
router.include_router(health.router, prefix="/health", tags=["Health"])
router.include_router(directory.router)
router.include_router(loyalty_programs.router)
router.include_router(loyalty_cards.router)
router.include_router(observability.router)
