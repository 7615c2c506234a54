"""Shared request dependencies"""
from fastapi import HTTPException, Request

from tasklink.services.runtime import LinkServices


def get_services(request: Request) -> LinkServices:
    """External clients built once in the app lifespan"""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services
