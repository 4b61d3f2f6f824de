from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any
from uuid import UUID

import asyncpg  # type: ignore[import-untyped]

from linkboard.core.config import get_settings
from linkboard.services.errors import (
    RepositoryError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)
from linkboard.services.links import (
    ADMIN_LINK_FILTERS,
    clean_admin_updates,
    coerce_link_status,
    coerce_security_status,
    filter_allowed_fields,
)

__all__ = [
    "PostgresLinkRepository",
    "ReportOutcome",
    "RepositoryError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "ScanOutcome",
    "get_repository",
]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReportOutcome:
    already_reported: bool
    report_count: int


@dataclass(slots=True)
class ScanOutcome:
    link: dict[str, Any]
    changed: bool


LINK_COLUMNS = """
  id::text as id,
  from_name,
  message,
  url,
  tags,
  is_anonymous,
  is_verified,
  status::text as status,
  security_status,
  security_scan,
  report_count,
  reported_by,
  meta_title,
  meta_image,
  created_at
"""

# column name and bind cast per updatable field
UPDATABLE_COLUMNS: dict[str, tuple[str, str]] = {
    "message": ("message", "text"),
    "status": ("status", "link_status"),
    "from_name": ("from_name", "text"),
    "url": ("url", "text"),
    "tags": ("tags", "text[]"),
    "is_verified": ("is_verified", "boolean"),
    "security_status": ("security_status", "text"),
    "security_scan": ("security_scan", "jsonb"),
    "report_count": ("report_count", "integer"),
    "reported_by": ("reported_by", "text[]"),
}

ADMIN_FILTER_SQL = {
    "all": "true",
    "reported": "report_count > 0",
    "flagged": "status = 'flagged'",
    "security": "(security_status in ('suspicious', 'malicious') or status = 'pending_review')",
    "verified": "is_verified = true",
    "notverified": "is_verified = false",
}


class PostgresLinkRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create_link(self, draft: dict[str, Any]) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    insert into shared_links (
                      from_name,
                      message,
                      url,
                      tags,
                      is_anonymous,
                      is_verified,
                      status,
                      security_status,
                      security_scan,
                      report_count,
                      reported_by,
                      meta_title,
                      meta_image,
                      created_at
                    )
                    values (
                      $1, $2, $3, $4::text[], $5, $6, $7::link_status, $8, $9::jsonb,
                      $10, $11::text[], $12, $13, $14
                    )
                    returning {LINK_COLUMNS}
                    """,
                    draft["from_name"],
                    draft["message"],
                    draft["url"],
                    draft["tags"],
                    draft["is_anonymous"],
                    draft["is_verified"],
                    draft["status"],
                    draft["security_status"],
                    _dump_json(draft["security_scan"]),
                    draft["report_count"],
                    draft["reported_by"],
                    draft["meta_title"],
                    draft["meta_image"],
                    draft["created_at"],
                )
                link = self._link_row_to_dict(row)
                await self._record_event(
                    conn,
                    link_id=link["id"],
                    event_type="created",
                    actor_type="submitter",
                    payload={"is_anonymous": link["is_anonymous"], "is_verified": link["is_verified"]},
                )
        return link

    async def get_link(self, link_id: str) -> dict[str, Any]:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"select {LINK_COLUMNS} from shared_links where id = $1::uuid",
            parsed_id,
        )
        if not row:
            raise RepositoryNotFoundError("link not found")
        return self._link_row_to_dict(row)

    async def list_public_links(
        self,
        *,
        limit: int,
        offset: int,
        tag: str | None = None,
        q: str | None = None,
    ) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {LINK_COLUMNS}
            from shared_links
            where status = 'approved'
              and ($3::text is null or $3::text = any(tags))
              and (
                $4::text is null
                or from_name ilike $4::text
                or message ilike $4::text
                or url ilike $4::text
                or meta_title ilike $4::text
              )
            order by created_at desc, id asc
            limit $1
            offset $2
            """,
            limit,
            offset,
            tag,
            _like_pattern(q),
        )
        return [self._link_row_to_dict(row) for row in rows]

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
        filter_sql = ADMIN_FILTER_SQL[link_filter]
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {LINK_COLUMNS}
            from shared_links
            where {filter_sql}
              and (
                $3::text is null
                or from_name ilike $3::text
                or message ilike $3::text
                or url ilike $3::text
                or meta_title ilike $3::text
              )
            order by created_at desc, id asc
            limit $1
            offset $2
            """,
            limit,
            offset,
            _like_pattern(q),
        )
        return [self._link_row_to_dict(row) for row in rows]

    async def get_link_stats(self) -> dict[str, int]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            """
            select
              count(*) as total,
              count(*) filter (where report_count > 0) as reported,
              count(*) filter (where status = 'flagged') as flagged,
              count(*) filter (where security_status in ('suspicious', 'malicious')) as security_review,
              count(*) filter (where is_verified = true) as verified
            from shared_links
            """
        )
        return {
            "total": int(row["total"]),
            "reported": int(row["reported"]),
            "flagged": int(row["flagged"]),
            "security_review": int(row["security_review"]),
            "verified": int(row["verified"]),
        }

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
        if not allowed:
            return await self.get_link(link_id)

        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await self._update_fields(conn, link_id=parsed_id, fields=allowed)
                if not row:
                    raise RepositoryNotFoundError("link not found")
                await self._record_event(
                    conn,
                    link_id=parsed_id,
                    event_type=event_type,
                    actor_type=actor_type,
                    payload={"fields": sorted(allowed)},
                )
        return self._link_row_to_dict(row)

    async def admin_update_link(self, link_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return await self.update_link(link_id, clean_admin_updates(updates), field_group="admin")

    async def toggle_link_flag(self, link_id: str) -> dict[str, Any]:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    update shared_links
                    set status = case
                      when status = 'flagged' then 'approved'::link_status
                      else 'flagged'::link_status
                    end
                    where id = $1::uuid
                    returning {LINK_COLUMNS}
                    """,
                    parsed_id,
                )
                if not row:
                    raise RepositoryNotFoundError("link not found")
                await self._record_event(
                    conn,
                    link_id=parsed_id,
                    event_type="flag_toggled",
                    actor_type="admin",
                    payload={"to_status": row["status"]},
                )
        return self._link_row_to_dict(row)

    async def apply_scan_result(self, link_id: str, verdict: str, detail: dict[str, Any] | None) -> ScanOutcome:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                existing = await conn.fetchrow(
                    f"select {LINK_COLUMNS} from shared_links where id = $1::uuid for update",
                    parsed_id,
                )
                if not existing:
                    raise RepositoryNotFoundError("link not found")

                current = self._link_row_to_dict(existing)
                if current["security_status"] == verdict and current["security_scan"] == detail:
                    return ScanOutcome(link=current, changed=False)

                allowed = filter_allowed_fields({"security_status": verdict, "security_scan": detail}, "scan")
                row = await self._update_fields(conn, link_id=parsed_id, fields=allowed)
                await self._record_event(
                    conn,
                    link_id=parsed_id,
                    event_type="scan_applied",
                    actor_type="scan_engine",
                    payload={"from_status": current["security_status"], "to_status": verdict},
                )
        return ScanOutcome(link=self._link_row_to_dict(row), changed=True)

    async def report_link(self, link_id: str, reporter_id: str, reason: str) -> ReportOutcome:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                # A concurrent duplicate blocks on the row lock, then fails the re-checked predicate.
                report_count = await conn.fetchval(
                    """
                    update shared_links
                    set
                      reported_by = array_append(reported_by, $2::text),
                      report_count = cardinality(reported_by) + 1
                    where id = $1::uuid
                      and not ($2::text = any(reported_by))
                    returning report_count
                    """,
                    parsed_id,
                    reporter_id,
                )
                if report_count is None:
                    existing_count = await conn.fetchval(
                        "select report_count from shared_links where id = $1::uuid",
                        parsed_id,
                    )
                    if existing_count is None:
                        raise RepositoryNotFoundError("link not found")
                    return ReportOutcome(already_reported=True, report_count=int(existing_count))

                await self._record_event(
                    conn,
                    link_id=parsed_id,
                    event_type="reported",
                    actor_type="reporter",
                    payload={"reporter_id": reporter_id, "reason": reason},
                )
        return ReportOutcome(already_reported=False, report_count=int(report_count))

    async def clear_link_reports(self, link_id: str) -> dict[str, Any]:
        return await self.update_link(
            link_id,
            {"report_count": 0, "reported_by": []},
            field_group="report",
            event_type="reports_cleared",
        )

    async def delete_link(self, link_id: str) -> None:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        deleted = await pool.fetchval(
            "delete from shared_links where id = $1::uuid returning id::text",
            parsed_id,
        )
        if deleted is None:
            raise RepositoryNotFoundError("link not found")

    async def list_link_events(self, link_id: str, *, limit: int, offset: int) -> list[dict[str, Any]]:
        parsed_id = _parse_link_id(link_id)
        pool = await self._get_pool()
        exists = await pool.fetchval("select 1 from shared_links where id = $1::uuid", parsed_id)
        if exists is None:
            raise RepositoryNotFoundError("link not found")
        rows = await pool.fetch(
            """
            select
              id,
              link_id::text as link_id,
              event_type,
              actor_type,
              payload,
              created_at
            from link_events
            where link_id = $1::uuid
            order by created_at asc, id asc
            limit $2
            offset $3
            """,
            parsed_id,
            limit,
            offset,
        )
        return [self._event_row_to_dict(row) for row in rows]

    async def _update_fields(
        self,
        conn: asyncpg.Connection,
        *,
        link_id: str,
        fields: dict[str, Any],
    ) -> asyncpg.Record | None:
        assignments: list[str] = []
        values: list[Any] = [link_id]
        for field, value in fields.items():
            column, cast = UPDATABLE_COLUMNS[field]
            values.append(_dump_json(value) if cast == "jsonb" else value)
            assignments.append(f"{column} = ${len(values)}::{cast}")

        return await conn.fetchrow(
            f"""
            update shared_links
            set {", ".join(assignments)}
            where id = $1::uuid
            returning {LINK_COLUMNS}
            """,
            *values,
        )

    @staticmethod
    async def _record_event(
        conn: asyncpg.Connection,
        *,
        link_id: str,
        event_type: str,
        actor_type: str,
        payload: dict[str, Any],
    ) -> None:
        await conn.execute(
            """
            insert into link_events (link_id, event_type, actor_type, payload)
            values ($1::uuid, $2, $3, $4::jsonb)
            """,
            link_id,
            event_type,
            actor_type,
            json.dumps(payload),
        )

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("LB_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _link_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "from_name": row["from_name"],
            "message": row["message"],
            "url": row["url"],
            "tags": list(row["tags"] or []),
            "is_anonymous": bool(row["is_anonymous"]),
            "is_verified": bool(row["is_verified"]),
            "status": coerce_link_status(row["status"]),
            "security_status": coerce_security_status(row["security_status"]),
            "security_scan": _load_json(row["security_scan"]),
            "report_count": int(row["report_count"] or 0),
            "reported_by": list(row["reported_by"] or []),
            "meta_title": row["meta_title"],
            "meta_image": row["meta_image"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _event_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        payload = _load_json(row["payload"])
        return {
            "id": row["id"],
            "link_id": row["link_id"],
            "event_type": row["event_type"],
            "actor_type": row["actor_type"],
            "payload": payload if isinstance(payload, dict) else {},
            "created_at": row["created_at"],
        }


def _parse_link_id(link_id: str) -> str:
    try:
        return str(UUID(str(link_id)))
    except ValueError as exc:
        raise RepositoryNotFoundError("link not found") from exc


def _like_pattern(q: str | None) -> str | None:
    if q is None or not q.strip():
        return None
    escaped = q.strip().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _dump_json(value: Any) -> str | None:
    if value is None:
        return None
    return json.dumps(value)


def _load_json(value: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return None
    return value


@lru_cache
def get_repository():
    settings = get_settings()
    if settings.storage_backend == "memory":
        from linkboard.services.store import InMemoryLinkRepository

        logger.warning("using in-memory link store; records are lost on restart")
        return InMemoryLinkRepository()

    return PostgresLinkRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
