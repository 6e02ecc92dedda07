from fastapi import APIRouter

from concert_finder.api.routes import venues

api_router = APIRouter(prefix="/v1")

api_router.include_router(venues.router, prefix="/venues", tags=["venues"])
