"""Out-of-band security scanning.

``ScanDispatcher`` hands a new link to the external scan engine without making the
submitter wait. The engine reports back later through the scan callback route, which
uses ``apply_scan_verdict``. A dispatch that never lands leaves the link ``pending``.
"""

from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Any

import httpx
from opentelemetry import trace

from linkboard.core.config import get_settings
from linkboard.core.urls import build_scan_callback_url, url_host
from linkboard.services.errors import RepositoryNotFoundError, ScanDispatchError
from linkboard.services.links import validate_scan_verdict
from linkboard.services.repository import ScanOutcome

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ScanDispatcher:
    def __init__(
        self,
        *,
        engine_url: str | None,
        callback_base_url: str | None = None,
        timeout_seconds: float = 10.0,
        max_attempts: int = 1,
        retry_base_seconds: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.engine_url = engine_url
        self.callback_base_url = callback_base_url
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max(1, max_attempts)
        self.retry_base_seconds = max(0.0, retry_base_seconds)
        self._client = client
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def dispatch(self, link_id: str, url: str) -> None:
        """Schedule a scan and return immediately; never raises."""
        if not self.engine_url:
            logger.info("scan engine not configured; link stays pending link_id=%s", link_id)
            return

        try:
            task = asyncio.get_running_loop().create_task(self._run_detached(link_id, url))
        except RuntimeError:
            logger.exception("scan dispatch could not be scheduled link_id=%s", link_id)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self, timeout_seconds: float | None = None) -> None:
        if not self._pending:
            return
        await asyncio.wait(set(self._pending), timeout=timeout_seconds)

    async def aclose(self) -> None:
        for task in list(self._pending):
            task.cancel()
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def _run_detached(self, link_id: str, url: str) -> None:
        try:
            await self._dispatch_with_retry(link_id, url)
        except Exception:  # pragma: no cover - detached task robustness
            logger.exception("scan dispatch crashed; link stays pending link_id=%s", link_id)

    async def _dispatch_with_retry(self, link_id: str, url: str) -> None:
        with tracer.start_as_current_span("scan.dispatch") as span:
            span.set_attribute("link.id", link_id)
            for attempt in range(1, self.max_attempts + 1):
                try:
                    await self._post_scan_job(link_id, url)
                except ScanDispatchError as exc:
                    logger.warning(
                        "scan dispatch failed link_id=%s host=%s attempt=%s/%s: %s",
                        link_id,
                        url_host(url),
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    if attempt < self.max_attempts:
                        await asyncio.sleep(self._compute_retry_delay_seconds(attempt=attempt))
                    continue

                logger.info("scan dispatched link_id=%s attempt=%s", link_id, attempt)
                return

            span.set_attribute("scan.dispatch_failed", True)
            logger.error("scan dispatch gave up; link stays pending link_id=%s", link_id)

    async def _post_scan_job(self, link_id: str, url: str) -> None:
        payload: dict[str, Any] = {"linkId": link_id, "url": url}
        callback_url = build_scan_callback_url(self.callback_base_url, link_id)
        if callback_url:
            payload["callbackUrl"] = callback_url

        try:
            if self._client is not None:
                response = await self._client.post(self.engine_url, json=payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.engine_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise ScanDispatchError(str(exc) or exc.__class__.__name__) from exc

    def _compute_retry_delay_seconds(self, *, attempt: int) -> float:
        if self.retry_base_seconds <= 0:
            return 0.0
        return self.retry_base_seconds * (2 ** max(0, attempt - 1))


async def apply_scan_verdict(
    repository: Any,
    *,
    link_id: str,
    verdict: str,
    detail: dict[str, Any] | None,
) -> ScanOutcome | None:
    """Apply a verdict; a link deleted in the meantime is logged and yields ``None``."""
    validate_scan_verdict(verdict)
    try:
        outcome = await repository.apply_scan_result(link_id, verdict, detail)
    except RepositoryNotFoundError:
        logger.info("scan result for missing link ignored link_id=%s verdict=%s", link_id, verdict)
        return None

    if outcome.changed:
        logger.info("scan result applied link_id=%s verdict=%s", link_id, verdict)
    else:
        logger.info("scan result already applied link_id=%s verdict=%s", link_id, verdict)
    return outcome


@lru_cache
def get_scan_dispatcher() -> ScanDispatcher:
    settings = get_settings()
    return ScanDispatcher(
        engine_url=settings.scan_engine_url,
        callback_base_url=settings.scan_callback_base_url,
        timeout_seconds=settings.scan_dispatch_timeout_seconds,
        max_attempts=settings.scan_dispatch_max_attempts,
        retry_base_seconds=settings.scan_dispatch_retry_base_seconds,
    )
