from fastapi import APIRouter

from .endpoints import checkins, observability, rewards

router = APIRouter()
router.include_router(checkins.router)
router.include_router(rewards.router)
router.include_router(observability.router)
