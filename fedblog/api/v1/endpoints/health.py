from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse

from fedblog.api.deps import get_service
from fedblog.core.activitypub.service import FederationService

router = APIRouter()

@router.get("/")
async def health_check(service: FederationService = Depends(get_service)):
    """Health check endpoint"""
    keys_available = service.are_keys_available()
    return ORJSONResponse({
        "status": "ok" if keys_available else "degraded",
        "keys": "available" if keys_available else "unavailable",
        "followers": len(service.state.followers),
        "service": service.settings.PROJECT_NAME,
    }, headers={"Cache-Control": "public, max-age=5"})
