from fastapi import APIRouter

from aegis.api.v1.admin import router as admin_router
from aegis.api.v1.escrows import router as escrows_router

v1_router = APIRouter()

v1_router.include_router(escrows_router)
v1_router.include_router(admin_router)
