"""
Travis API — Home Route
=========================

GET / answers {"hello": "world"}; clients use it as a cheap "is the API
reachable through my proxy/CORS setup" check.
"""

from fastapi import APIRouter

from travis_api.schemas.api import HomeResponse

router = APIRouter(tags=["Home"])


@router.get("/", response_model=HomeResponse, summary="API root")
async def home() -> HomeResponse:
    return HomeResponse()
