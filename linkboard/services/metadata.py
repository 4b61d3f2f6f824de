from __future__ import annotations

import html
import logging
import re
from dataclasses import dataclass
from urllib.parse import urljoin

import httpx

from linkboard.core.urls import is_public_http_target
from linkboard.services.errors import MetadataFetchError

logger = logging.getLogger(__name__)

MAX_PREVIEW_BYTES = 512 * 1024
MAX_PREVIEW_REDIRECTS = 3
_META_TAG_RE = re.compile(r"<meta\s+[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(r"""([a-zA-Z:_-]+)\s*=\s*(?:"([^"]*)"|'([^']*)')""")
_TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)


@dataclass(slots=True)
class LinkPreview:
    title: str | None = None
    image: str | None = None


async def fetch_link_preview(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = 5.0,
) -> LinkPreview:
    """Fetch ``url`` and parse its preview tags.

    Redirects are followed by hand so every hop goes through the public-host
    check, and at most ``MAX_PREVIEW_BYTES`` of the body are read.
    """
    try:
        if client is not None:
            return await _fetch_with_client(client, url)
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=False) as temp_client:
            return await _fetch_with_client(temp_client, url)
    except (httpx.HTTPError, httpx.InvalidURL) as exc:
        raise MetadataFetchError(str(exc) or exc.__class__.__name__) from exc


async def _fetch_with_client(client: httpx.AsyncClient, url: str) -> LinkPreview:
    target = url
    for _ in range(MAX_PREVIEW_REDIRECTS + 1):
        if not is_public_http_target(target):
            raise MetadataFetchError(f"refusing non-public preview target {target!r}")

        async with client.stream("GET", target, follow_redirects=False) as response:
            if response.is_redirect:
                target = urljoin(str(response.url), response.headers["location"])
                continue

            response.raise_for_status()
            content_type = response.headers.get("content-type", "")
            if "html" not in content_type.lower():
                return LinkPreview()

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) >= MAX_PREVIEW_BYTES:
                    break
            document = _decode(bytes(body[:MAX_PREVIEW_BYTES]), response.charset_encoding)
            return parse_link_preview(document, base_url=str(response.url))

    raise MetadataFetchError("too many redirects")


def _decode(body: bytes, encoding: str | None) -> str:
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        return body.decode("utf-8", errors="replace")


async def fetch_link_preview_safely(url: str, *, timeout_seconds: float = 5.0) -> LinkPreview:
    """Best-effort variant for the submit path: failures yield an empty preview."""
    try:
        return await fetch_link_preview(url, timeout_seconds=timeout_seconds)
    except MetadataFetchError as exc:
        logger.warning("link preview unavailable url=%s: %s", url, exc)
        return LinkPreview()


def parse_link_preview(document: str, *, base_url: str | None = None) -> LinkPreview:
    properties: dict[str, str] = {}
    for tag in _META_TAG_RE.findall(document):
        attrs = {name.lower(): first or second for name, first, second in _ATTR_RE.findall(tag)}
        key = (attrs.get("property") or attrs.get("name") or "").lower()
        content = attrs.get("content")
        if key and content and key not in properties:
            properties[key] = html.unescape(content).strip()

    title = properties.get("og:title") or properties.get("twitter:title")
    if not title:
        match = _TITLE_RE.search(document)
        if match:
            title = " ".join(html.unescape(match.group(1)).split())

    image = properties.get("og:image") or properties.get("twitter:image")
    if image and base_url:
        image = urljoin(base_url, image)

    return LinkPreview(title=title or None, image=image or None)
