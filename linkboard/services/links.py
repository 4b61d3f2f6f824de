"""Link lifecycle rules shared by every repository backend.

Intake normalisation, the administrator edit allow-list, field-group allow-lists for
store updates, and the visibility/triage projections all live here so the Postgres
and in-memory backends cannot drift apart.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from linkboard.core.security import credential_matches
from linkboard.core.urls import has_accepted_scheme
from linkboard.services.errors import RepositoryValidationError

TAG_CATALOG = (
    "3d",
    "design",
    "code",
    "tutorial",
    "tools",
    "ai",
    "music",
    "video",
    "fonts",
    "game",
    "android",
    "windows",
    "other",
)
LINK_STATUSES = ("approved", "pending_review", "flagged", "rejected")
DEFAULT_LINK_STATUS = "approved"
SECURITY_STATUSES = ("pending", "safe", "suspicious", "malicious")
SCAN_VERDICTS = ("safe", "suspicious", "malicious")
UNKNOWN_SECURITY_STATUS = "unknown"
ADMIN_LINK_FILTERS = ("all", "reported", "flagged", "security", "verified", "notverified")
SECURITY_REVIEW_VERDICTS = ("suspicious", "malicious")
ANONYMOUS_NAME = "Anonymous"

MAX_FROM_LENGTH = 100
MAX_MESSAGE_LENGTH = 500
MAX_URL_LENGTH = 2000
MAX_META_TITLE_LENGTH = 300
MAX_REASON_LENGTH = 500
MAX_REPORTER_ID_LENGTH = 200

FIELD_GROUPS: dict[str, frozenset[str]] = {
    "admin": frozenset({"message", "status", "from_name", "url", "tags", "is_verified"}),
    "scan": frozenset({"security_status", "security_scan"}),
    "report": frozenset({"report_count", "reported_by"}),
}


def prepare_submission(
    *,
    from_name: str | None,
    message: str | None,
    url: str | None,
    is_anonymous: bool,
    tags: Any,
    meta_title: str | None = None,
    meta_image: str | None = None,
    verify_password: str | None = None,
    verified_user_password: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Validate a raw submission and build the initial record (without id)."""
    clean_message = _coerce_text(message)
    raw_url = _coerce_text(url)
    if not clean_message or not raw_url:
        raise RepositoryValidationError("message and url are required")

    clean_tags = normalize_tags(tags)

    if not has_accepted_scheme(raw_url):
        raise RepositoryValidationError("invalid url: must start with http:// or https://")

    anonymous = bool(is_anonymous)
    if anonymous:
        clean_from = ANONYMOUS_NAME
    else:
        clean_from = _clamp(_coerce_text(from_name), MAX_FROM_LENGTH) or ANONYMOUS_NAME

    clean_url = raw_url[:MAX_URL_LENGTH]
    return {
        "from_name": clean_from,
        "message": clean_message[:MAX_MESSAGE_LENGTH],
        "url": clean_url,
        "tags": clean_tags,
        "is_anonymous": anonymous,
        "is_verified": credential_matches(verify_password, verified_user_password) and not anonymous,
        "status": DEFAULT_LINK_STATUS,
        "security_status": "pending",
        "security_scan": None,
        "report_count": 0,
        "reported_by": [],
        "meta_title": _clamp(_coerce_text(meta_title), MAX_META_TITLE_LENGTH) or clean_url,
        "meta_image": _clamp(_coerce_text(meta_image), MAX_URL_LENGTH),
        "created_at": now or datetime.now(timezone.utc),
    }


def normalize_tags(value: Any) -> list[str]:
    if not isinstance(value, (list, tuple)) or not value:
        raise RepositoryValidationError("at least one tag is required")

    tags: list[str] = []
    for item in value:
        tag = item.strip() if isinstance(item, str) else None
        if tag not in TAG_CATALOG:
            raise RepositoryValidationError(f"unknown tag: {item!r}")
        if tag not in tags:
            tags.append(tag)
    return tags


def clean_admin_updates(updates: Mapping[str, Any]) -> dict[str, Any]:
    """Reduce an administrator edit to allow-listed, normalised fields.

    Unknown keys and ``None`` values are dropped silently. Values that are present
    but invalid raise ``RepositoryValidationError``.
    """
    cleaned: dict[str, Any] = {}
    for field in sorted(FIELD_GROUPS["admin"]):
        value = updates.get(field)
        if value is None:
            continue

        if field == "tags":
            cleaned["tags"] = normalize_tags(value)
        elif field == "is_verified":
            cleaned["is_verified"] = bool(value)
        elif field == "status":
            if value not in LINK_STATUSES:
                raise RepositoryValidationError(f"invalid status: {value!r}")
            cleaned["status"] = value
        elif field == "message":
            text = _coerce_text(value)
            if not text:
                raise RepositoryValidationError("message must not be empty")
            cleaned["message"] = text[:MAX_MESSAGE_LENGTH]
        elif field == "url":
            text = _coerce_text(value)
            if not text or not has_accepted_scheme(text):
                raise RepositoryValidationError("invalid url: must start with http:// or https://")
            cleaned["url"] = text[:MAX_URL_LENGTH]
        elif field == "from_name":
            cleaned["from_name"] = _clamp(_coerce_text(value), MAX_FROM_LENGTH) or ANONYMOUS_NAME
    return cleaned


def filter_allowed_fields(fields: Mapping[str, Any], field_group: str) -> dict[str, Any]:
    allowed = FIELD_GROUPS.get(field_group)
    if allowed is None:
        raise ValueError(f"unknown field group: {field_group}")
    return {key: value for key, value in fields.items() if key in allowed}


def prepare_report(reporter_id: str | None, reason: str | None) -> tuple[str, str]:
    clean_reporter_id = _coerce_text(reporter_id)
    if not clean_reporter_id:
        raise RepositoryValidationError("reporterId is required")
    clean_reason = _coerce_text(reason)
    if not clean_reason:
        raise RepositoryValidationError("reason must not be empty")
    return clean_reporter_id[:MAX_REPORTER_ID_LENGTH], clean_reason[:MAX_REASON_LENGTH]


def validate_scan_verdict(verdict: str) -> str:
    if verdict not in SCAN_VERDICTS:
        raise RepositoryValidationError(f"invalid verdict: {verdict!r}")
    return verdict


def coerce_link_status(value: Any) -> str:
    # Legacy rows without a status were always shown publicly.
    if value is None or value == "":
        return DEFAULT_LINK_STATUS
    return str(value)


def coerce_security_status(value: Any) -> str:
    if isinstance(value, str) and value in SECURITY_STATUSES:
        return value
    return UNKNOWN_SECURITY_STATUS


def is_publicly_visible(link: Mapping[str, Any]) -> bool:
    return coerce_link_status(link.get("status")) == "approved"


def toggled_flag_status(status: Any) -> str:
    return "approved" if coerce_link_status(status) == "flagged" else "flagged"


def matches_admin_filter(link: Mapping[str, Any], link_filter: str) -> bool:
    if link_filter == "all":
        return True
    if link_filter == "reported":
        return int(link.get("report_count") or 0) > 0
    if link_filter == "flagged":
        return coerce_link_status(link.get("status")) == "flagged"
    if link_filter == "security":
        return (
            link.get("security_status") in SECURITY_REVIEW_VERDICTS
            or coerce_link_status(link.get("status")) == "pending_review"
        )
    if link_filter == "verified":
        return link.get("is_verified") is True
    if link_filter == "notverified":
        return not link.get("is_verified")
    raise RepositoryValidationError(f"invalid link filter: {link_filter!r}")


def matches_tag(link: Mapping[str, Any], tag: str | None) -> bool:
    if not tag:
        return True
    return tag in (link.get("tags") or [])


def matches_search(link: Mapping[str, Any], q: str | None) -> bool:
    needle = _coerce_text(q)
    if not needle:
        return True
    needle = needle.lower()
    for field in ("from_name", "message", "url", "meta_title"):
        value = link.get(field)
        if isinstance(value, str) and needle in value.lower():
            return True
    return False


def summarize_links(links: Iterable[Mapping[str, Any]]) -> dict[str, int]:
    stats = {"total": 0, "reported": 0, "flagged": 0, "security_review": 0, "verified": 0}
    for link in links:
        stats["total"] += 1
        if int(link.get("report_count") or 0) > 0:
            stats["reported"] += 1
        if coerce_link_status(link.get("status")) == "flagged":
            stats["flagged"] += 1
        if link.get("security_status") in SECURITY_REVIEW_VERDICTS:
            stats["security_review"] += 1
        if link.get("is_verified") is True:
            stats["verified"] += 1
    return stats


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return str(value).strip() or None


def _clamp(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit].strip() or None
