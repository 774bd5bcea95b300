"""URL helpers: cache-key normalization, rate-limit domains and SSRF checks."""

import ipaddress
import re
from urllib.parse import urlparse

_BLOCKED_HOSTNAMES = {
    "localhost",
    "0.0.0.0",
    "metadata.google.internal",
    "metadata.goog",
}
_BLOCKED_SUFFIXES = (".localhost", ".internal", ".local")


def normalize_url(url: str) -> str:
    """
    Normalize a forum base URL for use as a cache key.

    Lower-cases and strips trailing slashes so ``https://Forum.example.org/``
    and ``https://forum.example.org`` share one cache entry.
    """
    return re.sub(r"/+$", "", url.strip()).lower()


def domain_of(url: str) -> str:
    """Return the hostname used to key per-domain outbound rate limits."""
    return (urlparse(url).hostname or url).lower()


def is_allowed_url(url: str) -> bool:
    """
    Check that a URL is safe to fetch server-side.

    Only http(s) is allowed; loopback, private, link-local and cloud
    metadata hosts are rejected.
    """
    try:
        parsed = urlparse(url)
    except ValueError:
        return False

    if parsed.scheme not in ("http", "https"):
        return False

    hostname = (parsed.hostname or "").lower()
    if not hostname:
        return False
    if hostname in _BLOCKED_HOSTNAMES or hostname.endswith(_BLOCKED_SUFFIXES):
        return False

    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return True

    return not (
        address.is_loopback
        or address.is_private
        or address.is_link_local
        or address.is_unspecified
        or address.is_reserved
    )
