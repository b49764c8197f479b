from fastapi import APIRouter

from . import consultant, essays, limits, payments, profiles, recommender

router = APIRouter(prefix="/v1")
router.include_router(limits.router)
router.include_router(essays.router)
router.include_router(consultant.router)
router.include_router(recommender.router)
router.include_router(profiles.router)
router.include_router(payments.router)
