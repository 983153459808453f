from fastapi import APIRouter
from fedblog.core.activitypub.actor import actor_router
from fedblog.core.activitypub.feed import feed_router
from fedblog.core.activitypub.inbox import inbox_router
from fedblog.core.activitypub.nodeinfo import nodeinfo_router
from fedblog.core.activitypub.outbox import outbox_router
from fedblog.core.activitypub.webfinger import webfinger_router

# routers
site_router = APIRouter()
well_known_router = APIRouter()

# actor, collections, inbox and feed live at the site root
site_router.include_router(actor_router)
site_router.include_router(outbox_router)
site_router.include_router(inbox_router)
site_router.include_router(feed_router)

# discovery endpoints under /.well-known
well_known_router.include_router(webfinger_router)
well_known_router.include_router(nodeinfo_router, prefix="/nodeinfo")
