from fastapi import Request

from fedblog.core.activitypub.service import FederationService


def get_service(request: Request) -> FederationService:
    """The FederationService built by the app lifespan"""
    return request.app.state.federation
