from typing import Optional

from fastapi import APIRouter, Depends

from fedblog.api.deps import get_service
from fedblog.core.activitypub.responses import JRDResponse
from fedblog.core.activitypub.service import FederationService

webfinger_router = APIRouter()


@webfinger_router.get("/webfinger", response_class=JRDResponse)
async def webfinger(
    resource: Optional[str] = None,
    service: FederationService = Depends(get_service),
):
    """WebFinger lookup for the site actor"""
    document = service.directory.webfinger(resource)
    if document is None:
        return JRDResponse({"error": "Account not found"}, status_code=404)
    return JRDResponse(document, headers={"Cache-Control": "public, max-age=300"})
