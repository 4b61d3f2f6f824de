from __future__ import annotations

import copy
import itertools
import threading
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from linkboard.services.errors import RepositoryNotFoundError, RepositoryValidationError
from linkboard.services.links import (
    ADMIN_LINK_FILTERS,
    clean_admin_updates,
    filter_allowed_fields,
    is_publicly_visible,
    matches_admin_filter,
    matches_search,
    matches_tag,
    summarize_links,
    toggled_flag_status,
)
from linkboard.services.repository import ReportOutcome, ScanOutcome


class InMemoryLinkRepository:
    """Process-local link store for local runs and tests.

    Each public method is one critical section under a lock, which gives the same
    per-record atomicity the Postgres backend gets from row locks.
    """

    def __init__(self) -> None:
        self.links: dict[str, dict[str, Any]] = {}
        self.events: list[dict[str, Any]] = []
        self._event_ids = itertools.count(1)
        self._lock = threading.Lock()

    async def close(self) -> None:
        return None

    async def create_link(self, draft: dict[str, Any]) -> dict[str, Any]:
        with self._lock:
            link_id = str(uuid4())
            link = copy.deepcopy(draft)
            link["id"] = link_id
            self.links[link_id] = link
            self._record_event(
                link_id=link_id,
                event_type="created",
                actor_type="submitter",
                payload={"is_anonymous": link["is_anonymous"], "is_verified": link["is_verified"]},
            )
            return copy.deepcopy(link)

    async def get_link(self, link_id: str) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._require(link_id))

    async def list_public_links(
        self,
        *,
        limit: int,
        offset: int,
        tag: str | None = None,
        q: str | None = None,
    ) -> list[dict[str, Any]]:
        with self._lock:
            rows = [
                link
                for link in self._ordered()
                if is_publicly_visible(link) and matches_tag(link, tag) and matches_search(link, q)
            ]
            return copy.deepcopy(rows[offset : offset + limit])

    async def list_admin_links(
        self,
        *,
        limit: int,
        offset: int,
        link_filter: str = "all",
        q: str | None = None,
    ) -> list[dict[str, Any]]:
        if link_filter not in ADMIN_LINK_FILTERS:
            raise RepositoryValidationError(f"invalid link filter: {link_filter!r}")
        with self._lock:
            rows = [
                link
                for link in self._ordered()
                if matches_admin_filter(link, link_filter) and matches_search(link, q)
            ]
            return copy.deepcopy(rows[offset : offset + limit])

    async def get_link_stats(self) -> dict[str, int]:
        with self._lock:
            return summarize_links(self.links.values())

    async def update_link(
        self,
        link_id: str,
        fields: dict[str, Any],
        *,
        field_group: str,
        actor_type: str = "admin",
        event_type: str = "updated",
    ) -> dict[str, Any]:
        allowed = filter_allowed_fields(fields, field_group)
        with self._lock:
            link = self._require(link_id)
            if allowed:
                link.update(copy.deepcopy(allowed))
                self._record_event(
                    link_id=link_id,
                    event_type=event_type,
                    actor_type=actor_type,
                    payload={"fields": sorted(allowed)},
                )
            return copy.deepcopy(link)

    async def admin_update_link(self, link_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return await self.update_link(link_id, clean_admin_updates(updates), field_group="admin")

    async def toggle_link_flag(self, link_id: str) -> dict[str, Any]:
        with self._lock:
            link = self._require(link_id)
            link["status"] = toggled_flag_status(link.get("status"))
            self._record_event(
                link_id=link_id,
                event_type="flag_toggled",
                actor_type="admin",
                payload={"to_status": link["status"]},
            )
            return copy.deepcopy(link)

    async def apply_scan_result(self, link_id: str, verdict: str, detail: dict[str, Any] | None) -> ScanOutcome:
        with self._lock:
            link = self._require(link_id)
            if link.get("security_status") == verdict and link.get("security_scan") == detail:
                return ScanOutcome(link=copy.deepcopy(link), changed=False)

            previous = link.get("security_status")
            link.update(
                filter_allowed_fields(
                    {"security_status": verdict, "security_scan": copy.deepcopy(detail)},
                    "scan",
                )
            )
            self._record_event(
                link_id=link_id,
                event_type="scan_applied",
                actor_type="scan_engine",
                payload={"from_status": previous, "to_status": verdict},
            )
            return ScanOutcome(link=copy.deepcopy(link), changed=True)

    async def report_link(self, link_id: str, reporter_id: str, reason: str) -> ReportOutcome:
        with self._lock:
            link = self._require(link_id)
            reported_by = list(link.get("reported_by") or [])
            if reporter_id in reported_by:
                return ReportOutcome(already_reported=True, report_count=int(link.get("report_count") or 0))

            reported_by.append(reporter_id)
            link.update(
                filter_allowed_fields(
                    {"reported_by": reported_by, "report_count": len(reported_by)},
                    "report",
                )
            )
            self._record_event(
                link_id=link_id,
                event_type="reported",
                actor_type="reporter",
                payload={"reporter_id": reporter_id, "reason": reason},
            )
            return ReportOutcome(already_reported=False, report_count=link["report_count"])

    async def clear_link_reports(self, link_id: str) -> dict[str, Any]:
        return await self.update_link(
            link_id,
            {"report_count": 0, "reported_by": []},
            field_group="report",
            event_type="reports_cleared",
        )

    async def delete_link(self, link_id: str) -> None:
        with self._lock:
            self._require(link_id)
            del self.links[link_id]
            self.events = [event for event in self.events if event["link_id"] != link_id]

    async def list_link_events(self, link_id: str, *, limit: int, offset: int) -> list[dict[str, Any]]:
        with self._lock:
            self._require(link_id)
            rows = [event for event in self.events if event["link_id"] == link_id]
            return copy.deepcopy(rows[offset : offset + limit])

    def _require(self, link_id: str) -> dict[str, Any]:
        link = self.links.get(link_id)
        if link is None:
            raise RepositoryNotFoundError("link not found")
        return link

    def _ordered(self) -> list[dict[str, Any]]:
        by_id = sorted(self.links.values(), key=lambda link: link["id"])
        return sorted(by_id, key=lambda link: link["created_at"], reverse=True)

    def _record_event(self, *, link_id: str, event_type: str, actor_type: str, payload: dict[str, Any]) -> None:
        self.events.append(
            {
                "id": next(self._event_ids),
                "link_id": link_id,
                "event_type": event_type,
                "actor_type": actor_type,
                "payload": payload,
                "created_at": datetime.now(timezone.utc),
            }
        )
