from fastapi import APIRouter, Depends

from ..core.call_service import CallService
from ..core.models import utcnow
from ..logging_config import SERVICE_NAME
from .deps import get_call_service

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(service: CallService = Depends(get_call_service)):
    return {
        "status": "ok",
        "service": SERVICE_NAME,
        "utc": utcnow().isoformat(),
        **service.describe(),
    }
