"""Page fetching (plain HTTP or a leased browser render) and HTML extraction.

HTTP fetch limits:
- Content-Type whitelist: text/html and text/plain only.
- Max response body: 5 MB.
- Timeout: 30 seconds (connect + read), configurable.
- Max redirects: 3.
"""

from __future__ import annotations

import re
import urllib.error
import urllib.parse
import urllib.request
import warnings
from collections.abc import Callable
from dataclasses import dataclass, field
from http.client import HTTPResponse
from typing import Any

import html2text
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from playwright.async_api import Error as PlaywrightError

from trawler.crawl.urls import normalize_url
from trawler.errors import FetchError, UrlValidationError

_USER_AGENT = "trawler/0.1 (+knowledge-base crawler)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_MAX_REDIRECTS = 3
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}

_STRIP_TAGS = ["script", "style", "noscript", "iframe", "nav", "header", "footer", "aside"]
_MAIN_SELECTORS = (
    "main",
    "article",
    "[role=main]",
    ".content",
    "#content",
    ".main-content",
    "#main-content",
)
_MIN_MAIN_CHARS = 100
_SKIPPED_LINK_PREFIXES = ("mailto:", "tel:", "javascript:", "#")

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.body_width = 0

_SPACES_RE = re.compile(r"[ \t\u00a0]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


@dataclass
class CrawlPage:
    """One fetched page, as stored in the crawl cache and returned by a crawl."""

    url: str
    title: str
    content: str
    links: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)


# ------------------------------------------------------------------
# HTTP
# ------------------------------------------------------------------


def fetch_http(
    url: str,
    timeout: float = 30.0,
    host_check: Callable[[str], None] | None = None,
) -> str:
    """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

    Blocking; call through ``asyncio.to_thread`` from async code. When
    *host_check* is given, every redirect target is passed to it before
    it is followed.

    Returns:
        The decoded body. Plain-text bodies are wrapped in ``<pre>`` so the
        caller can always run the HTML extractor.

    Raises:
        FetchError: Network failure, HTTP error, disallowed Content-Type,
            oversized body, or too many redirects.
        UrlValidationError: *host_check* rejected a redirect target.
    """
    request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
    opener = urllib.request.build_opener(_LimitedRedirectHandler(_MAX_REDIRECTS, host_check))

    try:
        response: HTTPResponse = opener.open(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        raise FetchError(f"HTTP {exc.code} for '{url}'") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise FetchError(f"Failed to fetch URL '{url}': {exc}") from exc

    with response:
        raw_ct = response.headers.get("Content-Type", "text/html")
        ct = raw_ct.split(";")[0].strip().lower()
        if ct not in _ALLOWED_CONTENT_TYPES:
            raise FetchError(
                f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
            )
        charset = response.headers.get_content_charset() or "utf-8"
        try:
            body = response.read(_MAX_BYTES + 1)
        except OSError as exc:
            raise FetchError(f"Failed to read body of '{url}': {exc}") from exc

    if len(body) > _MAX_BYTES:
        raise FetchError(
            f"Response body exceeds {_MAX_BYTES // (1024 * 1024)} MB limit for URL '{url}'."
        )
    try:
        text = body.decode(charset, errors="replace")
    except LookupError:
        text = body.decode("utf-8", errors="replace")
    if ct == "text/plain":
        return f"<html><body><pre>{_escape(text)}</pre></body></html>"
    return text


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Fail after more than *max_redirects* redirects; vet each target host."""

    def __init__(
        self, max_redirects: int, host_check: Callable[[str], None] | None = None
    ) -> None:
        self._max_redirects = max_redirects
        self._host_check = host_check
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise FetchError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        if self._host_check is not None:
            self._host_check(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)


# ------------------------------------------------------------------
# Browser render
# ------------------------------------------------------------------


async def render_page(context: Any, url: str, timeout: float = 30.0) -> str:
    """Render *url* in a leased browser *context* and return the final HTML.

    Raises:
        FetchError: Navigation failed, timed out, or returned HTTP >= 400.
    """
    try:
        page = await context.new_page()
    except PlaywrightError as exc:
        raise FetchError(f"Could not open a page for '{url}': {exc}") from exc
    try:
        response = await page.goto(url, wait_until="networkidle", timeout=timeout * 1000)
        if response is None:
            raise FetchError(f"No response for '{url}'")
        if response.status >= 400:
            raise FetchError(f"HTTP {response.status} for '{url}'")
        return await page.content()
    except PlaywrightError as exc:
        raise FetchError(f"Browser render failed for '{url}': {exc}") from exc
    finally:
        try:
            await page.close()
        except PlaywrightError:
            pass  # context close reclaims the page


# ------------------------------------------------------------------
# Extraction
# ------------------------------------------------------------------


def extract_page(
    url: str,
    html: str,
    *,
    full_page_content: bool = False,
    max_chars: int = 50_000,
) -> CrawlPage:
    """Parse *html* fetched from *url* into title, text, links and images.

    The text comes from the first main-content region with at least 100
    characters, else from ``<body>``; ``full_page_content`` always uses the
    body. Whitespace is normalized and the text is capped at *max_chars*.
    """
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", XMLParsedAsHTMLWarning)
        soup = BeautifulSoup(html, "html.parser")

    title = ""
    if soup.title and soup.title.string:
        title = soup.title.string.strip()
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else ""

    links = _extract_links(soup, url)
    images = _extract_images(soup, url)

    for tag in soup.find_all(_STRIP_TAGS):
        tag.decompose()

    region = None
    if not full_page_content:
        for selector in _MAIN_SELECTORS:
            candidate = soup.select_one(selector)
            if candidate is not None and len(candidate.get_text(strip=True)) >= _MIN_MAIN_CHARS:
                region = candidate
                break
    if region is None:
        region = soup.body or soup

    content = _normalize_whitespace(_h2t.handle(str(region)))
    return CrawlPage(
        url=url,
        title=title,
        content=content[:max_chars],
        links=links,
        images=images,
    )


def _extract_links(soup: BeautifulSoup, base_url: str) -> list[str]:
    seen: dict[str, None] = {}
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.lower().startswith(_SKIPPED_LINK_PREFIXES):
            continue
        absolute = urllib.parse.urljoin(base_url, href)
        if urllib.parse.urlsplit(absolute).scheme not in ("http", "https"):
            continue
        try:
            seen.setdefault(normalize_url(absolute), None)
        except UrlValidationError:
            continue
    return list(seen)


def _extract_images(soup: BeautifulSoup, base_url: str) -> list[str]:
    seen: dict[str, None] = {}
    for img in soup.find_all("img", src=True):
        absolute = urllib.parse.urljoin(base_url, img["src"].strip())
        if urllib.parse.urlsplit(absolute).scheme in ("http", "https"):
            seen.setdefault(absolute, None)
    return list(seen)


def _normalize_whitespace(text: str) -> str:
    lines = [_SPACES_RE.sub(" ", line).strip() for line in text.splitlines()]
    return _BLANK_LINES_RE.sub("\n\n", "\n".join(lines)).strip()


def _escape(text: str) -> str:
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
