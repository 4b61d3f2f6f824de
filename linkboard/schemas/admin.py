from datetime import datetime
from typing import Any, Literal

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from linkboard.schemas.links import CamelModel, LinkPublicOut, LinkStatus, SecurityStatus

AdminLinkFilter = Literal["all", "reported", "flagged", "security", "verified", "notverified"]


class LinkAdminOut(LinkPublicOut):
    status: LinkStatus = "approved"
    security_status: SecurityStatus = "unknown"
    security_scan: dict[str, Any] | None = None
    report_count: int = 0
    reported_by: list[str] = Field(default_factory=list)


class LinkAdminPatchRequest(CamelModel):
    # Fields outside the edit allow-list are dropped, not rejected.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    message: str | None = None
    status: LinkStatus | None = None
    from_name: str | None = Field(default=None, alias="from")
    url: str | None = None
    tags: list[str] | None = None
    is_verified: bool | None = None


class AdminLinkStatsOut(CamelModel):
    total: int
    reported: int
    flagged: int
    security_review: int
    verified: int


class LinkEventOut(CamelModel):
    id: int
    link_id: str
    event_type: str
    actor_type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


class AdminActionOut(CamelModel):
    success: bool = True
