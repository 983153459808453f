from fastapi import APIRouter, Depends

from fedblog.api.deps import get_service
from fedblog.core.activitypub.responses import ActivityJSONResponse
from fedblog.core.activitypub.service import FederationService

outbox_router = APIRouter()


@outbox_router.get("/outbox", response_class=ActivityJSONResponse)
@outbox_router.get("/outbox.json", response_class=ActivityJSONResponse)
async def get_outbox(service: FederationService = Depends(get_service)):
    """Create(Article) activities for every federated post and wiki page"""
    items = service.content_provider.list_content_items()
    return ActivityJSONResponse(service.directory.outbox_document(items))
