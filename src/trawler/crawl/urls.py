"""URL normalization and the SSRF guard applied before every fetch.

Security requirements:
- Allowed URL schemes: https:// and http:// only.
- The hostname is resolved and every resulting address is checked against
  private/loopback/link-local/reserved/multicast/unspecified ranges via the
  stdlib ``ipaddress`` module, before any connection is made.
"""

from __future__ import annotations

import fnmatch
import ipaddress
import socket
import urllib.parse

from trawler.errors import SsrfError, UrlValidationError

_ALLOWED_SCHEMES = {"https", "http"}

# Never queued as subpages: binary or office documents, media.
_SKIPPED_EXTENSIONS = (
    ".pdf", ".jpg", ".jpeg", ".png", ".gif", ".svg", ".webp", ".zip",
    ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".mp4", ".mp3",
)


def normalize_url(raw: str) -> str:
    """Return the canonical form of *raw* used for frontier and cache keys.

    Adds ``https://`` when no scheme is given, lowercases scheme and host,
    drops the fragment and strips a trailing slash.

    Raises:
        UrlValidationError: Unsupported scheme or no hostname.
    """
    text = (raw or "").strip()
    if not text:
        raise UrlValidationError("URL is empty.")
    if "://" not in text:
        text = f"https://{text}"

    try:
        parsed = urllib.parse.urlsplit(text)
        port = parsed.port
    except ValueError as exc:
        raise UrlValidationError(f"Malformed URL '{raw}': {exc}") from exc

    scheme = parsed.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES:
        raise UrlValidationError(
            f"Unsupported URL scheme '{scheme}'. Only https:// and http:// are allowed."
        )
    host = (parsed.hostname or "").lower()
    if not host:
        raise UrlValidationError(f"URL has no hostname: {raw}")

    netloc = host if port is None else f"{host}:{port}"
    if ":" in host and not host.startswith("["):
        netloc = f"[{host}]" if port is None else f"[{host}]:{port}"
    url = urllib.parse.urlunsplit((scheme, netloc, parsed.path, parsed.query, ""))
    return url.rstrip("/")


def base_domain(url: str) -> str:
    """Hostname of *url* without a leading ``www.``."""
    host = (urllib.parse.urlsplit(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def is_same_domain(url: str, domain: str) -> bool:
    return base_domain(url) == domain


def is_crawlable_link(url: str, domain: str) -> bool:
    """True if *url* is a same-domain page worth fetching as a subpage."""
    if not is_same_domain(url, domain):
        return False
    path = urllib.parse.urlsplit(url).path.lower()
    return not path.endswith(_SKIPPED_EXTENSIONS)


def path_allowed(url: str, include: list[str], exclude: list[str]) -> bool:
    """Apply include/exclude fnmatch globs to the path of *url*."""
    path = urllib.parse.urlsplit(url).path or "/"
    if any(fnmatch.fnmatch(path, pattern) for pattern in exclude):
        return False
    if include:
        return any(fnmatch.fnmatch(path, pattern) for pattern in include)
    return True


def check_public_host(url: str) -> None:
    """Resolve the hostname of *url* and block private/reserved IP ranges.

    Blocking (DNS); call through ``asyncio.to_thread`` from async code.

    Raises:
        SsrfError: Any resolved address is private, loopback, link-local,
            reserved, multicast, or unspecified.
        UrlValidationError: The hostname is missing or does not resolve.
    """
    hostname = urllib.parse.urlsplit(url).hostname
    if not hostname:
        raise UrlValidationError(f"URL has no hostname: {url}")

    try:
        addrinfos = socket.getaddrinfo(hostname, None)
    except socket.gaierror as exc:
        raise UrlValidationError(f"DNS resolution failed for '{hostname}': {exc}") from exc

    for addrinfo in addrinfos:
        addr_str = addrinfo[4][0]
        try:
            ip = ipaddress.ip_address(addr_str)
        except ValueError:
            continue
        if (
            ip.is_private
            or ip.is_loopback
            or ip.is_link_local
            or ip.is_reserved
            or ip.is_multicast
            or ip.is_unspecified
        ):
            raise SsrfError(
                f"URL resolves to private address ({ip}). "
                "Access to internal network addresses is not allowed."
            )


def validate_crawl_url(raw: str) -> str:
    """Normalize *raw* and run the SSRF guard. Returns the normalized URL."""
    url = normalize_url(raw)
    check_public_host(url)
    return url
