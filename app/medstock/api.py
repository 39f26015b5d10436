from fastapi import APIRouter

from app.medstock.core.config import settings
from app.medstock.routers.audit import router as audit_router
from app.medstock.routers.auth import router as auth_router
from app.medstock.routers.departments import router as departments_router
from app.medstock.routers.health import router as health_router
from app.medstock.routers.metrics import router as metrics_router
from app.medstock.routers.products import router as products_router
from app.medstock.routers.transfers import router as transfers_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(auth_router, prefix="/medstock/auth", tags=["auth"])
api_router.include_router(departments_router, tags=["departments"])
api_router.include_router(products_router, tags=["products"])
api_router.include_router(transfers_router, tags=["transfers"])
api_router.include_router(audit_router, tags=["audit"])
if settings.METRICS_ENABLED:
    api_router.include_router(metrics_router, tags=["ops"])
