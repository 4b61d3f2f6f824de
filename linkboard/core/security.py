import hmac

from fastapi import Depends, Header, HTTPException, status

from linkboard.core.auth import ADMIN_READER_SCOPES, ADMIN_SCOPES, SCAN_ENGINE_SCOPES, Principal, PrincipalType
from linkboard.core.config import Settings, get_settings


def credential_matches(candidate: str | None, secret: str | None) -> bool:
    """Exact comparison against a server-held secret without short-circuiting on prefixes."""
    if not candidate or not secret:
        return False
    return hmac.compare_digest(candidate.encode("utf-8"), secret.encode("utf-8"))


async def get_admin_principal(
    settings: Settings = Depends(get_settings),
    authorization: str | None = Header(default=None, alias="Authorization"),
) -> Principal:
    if not settings.admin_password and not settings.admin_reader_password:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="admin credential is not configured",
        )

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="admin auth requires bearer token",
        )

    token = authorization.split(" ", maxsplit=1)[1].strip()
    if credential_matches(token, settings.admin_password):
        return Principal(principal_type=PrincipalType.ADMIN, subject="admin", scopes=set(ADMIN_SCOPES))
    # Read-only moderator key: list, stats and audit trail, no edits.
    if credential_matches(token, settings.admin_reader_password):
        return Principal(principal_type=PrincipalType.ADMIN, subject="admin-reader", scopes=set(ADMIN_READER_SCOPES))

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


async def get_scan_engine_principal(
    settings: Settings = Depends(get_settings),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
) -> Principal:
    if not settings.scan_callback_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="scan callback is not configured",
        )

    if not x_api_key:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="scan callback requires X-API-Key")

    if not credential_matches(x_api_key, settings.scan_callback_key):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid scan engine credentials")

    return Principal(
        principal_type=PrincipalType.SCAN_ENGINE,
        subject="scan-engine",
        scopes=set(SCAN_ENGINE_SCOPES),
    )


def require_admin_scope(scope: str):
    """Dependency factory: an authenticated admin principal holding ``scope``."""

    async def dependency(principal: Principal = Depends(get_admin_principal)) -> Principal:
        _check_scope(principal, scope)
        return principal

    return dependency


def require_scan_engine_scope(scope: str):
    async def dependency(principal: Principal = Depends(get_scan_engine_principal)) -> Principal:
        _check_scope(principal, scope)
        return principal

    return dependency


def _check_scope(principal: Principal, scope: str) -> None:
    try:
        principal.require_scopes({scope})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc
