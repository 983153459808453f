import logging

import orjson
from fastapi import APIRouter, Depends, HTTPException, Request

from fedblog.api.deps import get_service
from fedblog.core.activitypub.responses import ActivityJSONResponse
from fedblog.core.activitypub.service import FederationService
from fedblog.core.activitypub.signature import compute_digest, parse_signature_header
from fedblog.core.errors import MalformedInboundActivity, PersistenceFailure

logger = logging.getLogger(__name__)

inbox_router = APIRouter()


@inbox_router.get("/inbox", response_class=ActivityJSONResponse)
@inbox_router.get("/inbox.json", response_class=ActivityJSONResponse)
async def get_inbox(service: FederationService = Depends(get_service)):
    return ActivityJSONResponse(service.directory.inbox_summary())


@inbox_router.post("/inbox", response_class=ActivityJSONResponse)
@inbox_router.post("/inbox.json", response_class=ActivityJSONResponse)
async def receive_activity(request: Request, service: FederationService = Depends(get_service)):
    """Receive an ActivityPub activity"""
    body = await request.body()

    # Incoming signatures are not verified; the key id is logged for auditing
    signature_header = request.headers.get("signature")
    if signature_header:
        key_id = parse_signature_header(signature_header).get("keyId")
        logger.info("Inbound activity signed with unverified keyId %s", key_id)

    digest = request.headers.get("digest")
    if digest and digest != compute_digest(body):
        logger.warning("Digest header does not match request body (%s)", digest)

    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON")

    try:
        result = await service.handle_inbound(payload)
    except MalformedInboundActivity as e:
        logger.warning("Rejected inbound activity: %s", e)
        raise HTTPException(status_code=400, detail=str(e))
    except PersistenceFailure as e:
        logger.error("Could not persist inbound activity: %s", e)
        raise HTTPException(status_code=500, detail="Failed to store activity")

    return ActivityJSONResponse(result.body, status_code=result.status_code)
