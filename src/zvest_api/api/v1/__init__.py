from fastapi import APIRouter

from .endpoints import customer_app, health, observability, pos

router = APIRouter()
router.include_router(health.router, tags=["Health"])
router.include_router(customer_app.router)
router.include_router(pos.router)
router.include_router(observability.router)
