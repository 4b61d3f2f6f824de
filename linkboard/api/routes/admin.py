import logging

from fastapi import APIRouter, Depends, Query

from linkboard.api.errors import repository_errors
from linkboard.core.security import require_admin_scope
from linkboard.schemas.admin import (
    AdminActionOut,
    AdminLinkFilter,
    AdminLinkStatsOut,
    LinkAdminOut,
    LinkAdminPatchRequest,
    LinkEventOut,
)
from linkboard.services.repository import get_repository

logger = logging.getLogger(__name__)

can_read = require_admin_scope("links:read")
can_moderate = require_admin_scope("links:moderate")

router = APIRouter()


@router.get("/links", response_model=list[LinkAdminOut], dependencies=[Depends(can_read)])
async def list_links(
    repository=Depends(get_repository),
    link_filter: AdminLinkFilter = Query(default="all", alias="filter"),
    q: str | None = Query(default=None, min_length=1),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
) -> list[LinkAdminOut]:
    with repository_errors():
        rows = await repository.list_admin_links(limit=limit, offset=offset, link_filter=link_filter, q=q)
    return [LinkAdminOut(**row) for row in rows]


@router.get("/links/stats", response_model=AdminLinkStatsOut, dependencies=[Depends(can_read)])
async def get_link_stats(repository=Depends(get_repository)) -> AdminLinkStatsOut:
    with repository_errors():
        stats = await repository.get_link_stats()
    return AdminLinkStatsOut(**stats)


@router.get("/links/{link_id}", response_model=LinkAdminOut, dependencies=[Depends(can_read)])
async def get_link(link_id: str, repository=Depends(get_repository)) -> LinkAdminOut:
    with repository_errors():
        row = await repository.get_link(link_id)
    return LinkAdminOut(**row)


@router.patch("/links/{link_id}", response_model=LinkAdminOut)
async def patch_link(
    link_id: str,
    payload: LinkAdminPatchRequest,
    principal=Depends(can_moderate),
    repository=Depends(get_repository),
) -> LinkAdminOut:
    changes = payload.model_dump(exclude_unset=True)
    with repository_errors():
        row = await repository.admin_update_link(link_id, changes)
    logger.info("link edited link_id=%s by=%s fields=%s", link_id, principal.subject, sorted(changes))
    return LinkAdminOut(**row)


@router.post("/links/{link_id}/toggle-flag", response_model=LinkAdminOut)
async def toggle_link_flag(
    link_id: str,
    principal=Depends(can_moderate),
    repository=Depends(get_repository),
) -> LinkAdminOut:
    with repository_errors():
        row = await repository.toggle_link_flag(link_id)
    logger.info("link flag toggled link_id=%s by=%s status=%s", link_id, principal.subject, row["status"])
    return LinkAdminOut(**row)


@router.post("/links/{link_id}/reports/clear", response_model=LinkAdminOut, dependencies=[Depends(can_moderate)])
async def clear_link_reports(link_id: str, repository=Depends(get_repository)) -> LinkAdminOut:
    with repository_errors():
        row = await repository.clear_link_reports(link_id)
    return LinkAdminOut(**row)


@router.get("/links/{link_id}/events", response_model=list[LinkEventOut], dependencies=[Depends(can_read)])
async def list_link_events(
    link_id: str,
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[LinkEventOut]:
    with repository_errors():
        rows = await repository.list_link_events(link_id, limit=limit, offset=offset)
    return [LinkEventOut(**row) for row in rows]


@router.delete("/links/{link_id}", response_model=AdminActionOut)
async def delete_link(
    link_id: str,
    principal=Depends(can_moderate),
    repository=Depends(get_repository),
) -> AdminActionOut:
    with repository_errors():
        await repository.delete_link(link_id)
    logger.info("link deleted link_id=%s by=%s", link_id, principal.subject)
    return AdminActionOut()
