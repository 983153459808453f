from typing import Any, Dict

from fastapi import APIRouter, Depends

from fedblog.api.deps import get_service
from fedblog.core.activitypub.service import FederationService

NODEINFO_SCHEMA = "http://nodeinfo.diaspora.software/ns/schema/2.0"
SOFTWARE_VERSION = "1.0.0"

nodeinfo_router = APIRouter()


@nodeinfo_router.get("")
async def get_nodeinfo(service: FederationService = Depends(get_service)) -> Dict[str, Any]:
    """NodeInfo discovery document"""
    return {
        "links": [
            {
                "rel": NODEINFO_SCHEMA,
                "href": f"{service.settings.base_url}/.well-known/nodeinfo/2.0",
            }
        ]
    }


@nodeinfo_router.get("/2.0")
async def get_nodeinfo_2_0(service: FederationService = Depends(get_service)) -> Dict[str, Any]:
    settings = service.settings
    items = service.content_provider.list_content_items()
    return {
        "version": "2.0",
        "software": {
            "name": settings.PROJECT_NAME,
            "version": SOFTWARE_VERSION,
        },
        "protocols": [
            "activitypub"
        ],
        "services": {
            "inbound": [],
            "outbound": [
                "jsonfeed"
            ]
        },
        "openRegistrations": False,
        "usage": {
            "users": {
                "total": 1,
                "activeMonth": 1,
                "activeHalfyear": 1
            },
            "localPosts": len(items),
        },
        "metadata": {
            "nodeName": settings.FEDIVERSE_DISPLAY_NAME,
            "nodeDescription": settings.FEDIVERSE_DESCRIPTION,
            "followers": len(service.state.followers),
        }
    }
