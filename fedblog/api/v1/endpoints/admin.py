"""
Federation debug endpoints
"""

from fastapi import APIRouter, Depends

from fedblog.api.deps import get_service
from fedblog.core.activitypub.service import FederationService

router = APIRouter()

@router.get("/activitypub")
async def activitypub_debug(service: FederationService = Depends(get_service)):
    """Server identity, key presence, counts and the last few activities"""
    return service.snapshot()
