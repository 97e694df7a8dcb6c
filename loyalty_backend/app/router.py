from fastapi import APIRouter

from loyalty_backend.src.billing.endpoints import billing_router
from loyalty_backend.core.conf import settings

router = APIRouter()

router.include_router(billing_router, prefix=f"{settings.FASTAPI_API_V1_PATH}/billing", tags=["Billing"])
