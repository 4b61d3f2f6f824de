import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from linkboard.api.errors import repository_errors
from linkboard.core.config import Settings, get_settings
from linkboard.schemas.links import (
    LinkPublicOut,
    LinkSubmitAccepted,
    LinkSubmitRequest,
    ReportOut,
    ReportRequest,
)
from linkboard.services.links import (
    MAX_META_TITLE_LENGTH,
    MAX_URL_LENGTH,
    TAG_CATALOG,
    is_publicly_visible,
    prepare_report,
    prepare_submission,
)
from linkboard.services.metadata import fetch_link_preview_safely
from linkboard.services.repository import get_repository
from linkboard.services.scanning import get_scan_dispatcher

router = APIRouter()
logger = logging.getLogger(__name__)

UNAVAILABLE_DETAIL = "link is not available"


@router.post("", response_model=LinkSubmitAccepted, status_code=status.HTTP_201_CREATED)
async def submit_link(
    payload: LinkSubmitRequest,
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
    dispatcher=Depends(get_scan_dispatcher),
) -> LinkSubmitAccepted:
    with repository_errors():
        draft = prepare_submission(
            from_name=payload.from_name,
            message=payload.message,
            url=payload.url,
            is_anonymous=payload.is_anonymous,
            tags=payload.tags,
            meta_title=payload.meta_title,
            meta_image=payload.meta_image,
            verify_password=payload.verify_password,
            verified_user_password=settings.verified_user_password,
        )

    if settings.metadata_fetch_enabled and not (payload.meta_title or "").strip():
        preview = await fetch_link_preview_safely(
            draft["url"],
            timeout_seconds=settings.metadata_fetch_timeout_seconds,
        )
        if preview.title:
            draft["meta_title"] = preview.title[:MAX_META_TITLE_LENGTH]
        if preview.image and not draft["meta_image"]:
            draft["meta_image"] = preview.image[:MAX_URL_LENGTH]

    with repository_errors():
        link = await repository.create_link(draft)

    logger.info("link submitted link_id=%s verified=%s", link["id"], link["is_verified"])
    dispatcher.dispatch(link["id"], link["url"])

    return LinkSubmitAccepted(id=link["id"], security_status="pending")


@router.get("", response_model=list[LinkPublicOut])
async def list_links(
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    tag: str | None = Query(default=None, min_length=1),
    q: str | None = Query(default=None, min_length=1),
) -> list[LinkPublicOut]:
    if tag is not None and tag not in TAG_CATALOG:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, detail=f"unknown tag: {tag!r}")

    with repository_errors():
        rows = await repository.list_public_links(limit=limit, offset=offset, tag=tag, q=q)

    return [LinkPublicOut(**row) for row in rows]


@router.get("/{link_id}", response_model=LinkPublicOut)
async def get_link(link_id: str, repository=Depends(get_repository)) -> LinkPublicOut:
    with repository_errors(not_found_detail=UNAVAILABLE_DETAIL):
        row = await repository.get_link(link_id)

    # Hidden links answer exactly like missing ones.
    if not is_publicly_visible(row):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=UNAVAILABLE_DETAIL)

    return LinkPublicOut(**row)


@router.post("/{link_id}/reports", response_model=ReportOut, response_model_exclude_none=True)
async def report_link(
    link_id: str,
    payload: ReportRequest,
    repository=Depends(get_repository),
) -> ReportOut:
    with repository_errors():
        reporter_id, reason = prepare_report(payload.reporter_id, payload.reason)
        outcome = await repository.report_link(link_id, reporter_id, reason)

    if outcome.already_reported:
        return ReportOut(already_reported=True, report_count=outcome.report_count)

    logger.info("link reported link_id=%s report_count=%s", link_id, outcome.report_count)
    return ReportOut(success=True, report_count=outcome.report_count)
