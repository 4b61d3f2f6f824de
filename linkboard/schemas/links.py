from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

LinkStatus = Literal["approved", "pending_review", "flagged", "rejected"]
SecurityStatus = Literal["pending", "safe", "suspicious", "malicious", "unknown"]
ScanVerdict = Literal["safe", "suspicious", "malicious"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LinkSubmitRequest(CamelModel):
    from_name: str | None = Field(default=None, alias="from")
    message: str | None = None
    url: str | None = None
    is_anonymous: bool = False
    tags: list[str] | None = None
    meta_title: str | None = None
    meta_image: str | None = None
    verify_password: str | None = None


class LinkSubmitAccepted(CamelModel):
    success: bool = True
    id: str
    security_status: Literal["pending"] = "pending"


class LinkPublicOut(CamelModel):
    id: str
    from_name: str = Field(alias="from")
    message: str
    url: str
    tags: list[str] = Field(default_factory=list)
    is_anonymous: bool = False
    is_verified: bool = False
    meta_title: str | None = None
    meta_image: str | None = None
    created_at: datetime


class ReportRequest(CamelModel):
    reporter_id: str | None = None
    reason: str | None = None


class ReportOut(CamelModel):
    success: bool | None = None
    already_reported: bool | None = None
    report_count: int


class ScanResultRequest(CamelModel):
    verdict: ScanVerdict
    detail: dict[str, Any] | None = None


class ScanResultOut(CamelModel):
    applied: bool
    security_status: SecurityStatus
