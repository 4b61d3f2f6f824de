import ipaddress
from urllib.parse import quote, urlparse

ACCEPTED_URL_PREFIXES = ("http://", "https://")


def has_accepted_scheme(raw_url: str) -> bool:
    # Prefix match is case-sensitive, same as the submit form.
    return raw_url.startswith(ACCEPTED_URL_PREFIXES)


def url_host(raw_url: str) -> str | None:
    """Host part for log lines; never raises on junk input."""
    try:
        host = urlparse(raw_url).hostname
    except ValueError:
        return None
    return host or None


def is_public_http_target(raw_url: str) -> bool:
    """True for http(s) URLs whose host is a name or a globally routable IP literal.

    Names are not resolved here, so a public name pointing at a private
    address still passes.
    """
    host = url_host(raw_url)
    if not host or not has_accepted_scheme(raw_url):
        return False
    if host == "localhost" or host.endswith(".localhost"):
        return False
    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return True
    return address.is_global


def build_scan_callback_url(base_url: str | None, link_id: str) -> str | None:
    if not base_url:
        return None
    return f"{base_url.rstrip('/')}/scans/{quote(link_id, safe='')}/result"
