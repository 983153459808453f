from fastapi import APIRouter, Depends, HTTPException

from fedblog.api.deps import get_service
from fedblog.core.activitypub.responses import ActivityJSONResponse
from fedblog.core.activitypub.service import FederationService

actor_router = APIRouter()


@actor_router.get("/actor", response_class=ActivityJSONResponse)
@actor_router.get("/actor.json", response_class=ActivityJSONResponse)
async def get_actor(service: FederationService = Depends(get_service)):
    """Person document for the site actor"""
    document = service.directory.actor_document()
    if document is None:
        raise HTTPException(status_code=503, detail="ActivityPub keys not available")
    return ActivityJSONResponse(document, headers={"Cache-Control": "public, max-age=300"})


@actor_router.get("/followers", response_class=ActivityJSONResponse)
@actor_router.get("/followers.json", response_class=ActivityJSONResponse)
async def get_followers(service: FederationService = Depends(get_service)):
    return ActivityJSONResponse(service.directory.collection_document("followers"))


@actor_router.get("/following", response_class=ActivityJSONResponse)
@actor_router.get("/following.json", response_class=ActivityJSONResponse)
async def get_following(service: FederationService = Depends(get_service)):
    return ActivityJSONResponse(service.directory.collection_document("following"))
