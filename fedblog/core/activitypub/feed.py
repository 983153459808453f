from fastapi import APIRouter, Depends
from fastapi.responses import ORJSONResponse

from fedblog.api.deps import get_service
from fedblog.core.activitypub.service import FederationService

feed_router = APIRouter()


@feed_router.get("/feed.json")
async def get_feed(service: FederationService = Depends(get_service)):
    """JSON Feed 1.1 of posts and wiki pages"""
    items = service.content_provider.list_content_items()
    return ORJSONResponse(service.directory.json_feed(items), headers={"Cache-Control": "public, max-age=300"})
