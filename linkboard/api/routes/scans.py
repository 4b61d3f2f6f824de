import logging

from fastapi import APIRouter, Depends, HTTPException, status

from linkboard.api.errors import repository_errors
from linkboard.core.security import require_scan_engine_scope
from linkboard.schemas.links import ScanResultOut, ScanResultRequest
from linkboard.services.repository import get_repository
from linkboard.services.scanning import apply_scan_verdict

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post(
    "/{link_id}/result",
    response_model=ScanResultOut,
    dependencies=[Depends(require_scan_engine_scope("scans:write"))],
)
async def submit_scan_result(
    link_id: str,
    payload: ScanResultRequest,
    repository=Depends(get_repository),
) -> ScanResultOut:
    with repository_errors():
        outcome = await apply_scan_verdict(
            repository,
            link_id=link_id,
            verdict=payload.verdict,
            detail=payload.detail,
        )

    # The link was deleted while the scan was running.
    if outcome is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="link not found")

    return ScanResultOut(applied=outcome.changed, security_status=outcome.link["security_status"])
