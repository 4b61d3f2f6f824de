from fastapi import APIRouter

from linkboard.api.routes import admin, health, links, scans

api_router = APIRouter()
api_router.include_router(health.router, tags=["health"])
api_router.include_router(links.router, prefix="/links", tags=["public"])
api_router.include_router(scans.router, prefix="/scans", tags=["scan-engine"])
api_router.include_router(admin.router, prefix="/admin", tags=["moderation"])
