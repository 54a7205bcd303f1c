"""
Shared FastAPI dependencies.
"""

from dataclasses import dataclass

from fastapi import Query, Request

from carpool.core.config import get_settings
from carpool.services.location_service import LocationService

settings = get_settings()


def get_location_service(request: Request) -> LocationService:
    """LocationService built in the application lifespan."""
    return request.app.state.location_service


@dataclass
class PageParams:
    page: int
    limit: int


def get_page_params(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
) -> PageParams:
    return PageParams(page=page, limit=limit)
