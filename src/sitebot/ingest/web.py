"""Website crawler with SSRF protection.

Security requirements:
- SSRF guard: ipaddress module blocks private/loopback/link-local ranges before
  any connection is established.
- Allowed URL schemes: https:// and http:// only.
- Content-Type whitelist: text/html and text/plain only.
- Max response body, timeout and redirect limit come from ``crawler:`` config
  (defaults 5 MB, 30 seconds, 3 redirects).

Not a production crawler: a single page is fetched, robots.txt is not read and
no JavaScript is rendered.
"""

from __future__ import annotations

import ipaddress
import logging
import re
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from http.client import HTTPResponse

import html2text
from bs4 import BeautifulSoup

from sitebot.errors import SourceInputError

logger = logging.getLogger(__name__)

_USER_AGENT = "sitebot/0.1 (+https://github.com/sitebot/sitebot)"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_TIMEOUT = 30  # seconds
_MAX_REDIRECTS = 3
_ALLOWED_SCHEMES = {"https", "http"}
_ALLOWED_CONTENT_TYPES = {"text/html", "text/plain"}
_NOISE_TAGS = ["script", "style", "nav", "footer", "iframe", "head"]
_WHITESPACE_RE = re.compile(r"\s+")

# html2text converter
_h2t = html2text.HTML2Text()
_h2t.ignore_links = True
_h2t.ignore_images = True
_h2t.ignore_emphasis = True
_h2t.body_width = 0


class SsrfError(SourceInputError):
    """Raised when a URL resolves to a private or reserved address."""


class CrawlError(RuntimeError):
    """Raised when a page cannot be fetched or its body is unusable."""


@dataclass
class CrawledPage:
    url: str
    title: str
    content: str


class WebCrawler:
    """Fetch a single URL and reduce it to a title plus whitespace-collapsed text.

    SSRF protection is applied *before* any connection is made:
    the hostname is resolved and all resulting IP addresses are checked
    against private/loopback/link-local/reserved ranges via the stdlib
    ``ipaddress`` module.
    """

    def __init__(
        self,
        timeout: int = _TIMEOUT,
        max_bytes: int = _MAX_BYTES,
        max_redirects: int = _MAX_REDIRECTS,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.max_redirects = max_redirects

    def crawl(self, url: str) -> CrawledPage:
        """Validate, fetch, and convert *url*.

        Raises:
            SourceInputError: Bad scheme, no hostname or unresolvable host.
            SsrfError: The host resolves to a private/reserved address.
            CrawlError: Network failure, disallowed Content-Type, oversize body.
        """
        self.validate_url(url)
        raw, content_type = self._fetch(url)
        title, content = self._to_plain_text(raw, content_type)
        logger.debug("Crawled %s: %d characters", url, len(content))
        return CrawledPage(url=url, title=title, content=content)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @classmethod
    def validate_url(cls, url: str) -> None:
        """Reject *url* unless it is http(s) and resolves to public addresses only."""
        cls._validate_scheme(url)
        cls._check_ssrf(url)

    @staticmethod
    def _validate_scheme(url: str) -> None:
        parsed = urllib.parse.urlparse(url)
        if parsed.scheme not in _ALLOWED_SCHEMES:
            raise SourceInputError(
                f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
            )

    @staticmethod
    def _check_ssrf(url: str) -> None:
        """Resolve the hostname and block private/reserved IP ranges.

        Raises SsrfError if any resolved address is private, loopback,
        link-local, or otherwise reserved.
        """
        parsed = urllib.parse.urlparse(url)
        hostname = parsed.hostname
        if not hostname:
            raise SourceInputError(f"URL has no hostname: {url}")

        try:
            addrinfos = socket.getaddrinfo(hostname, None)
        except socket.gaierror as exc:
            raise SourceInputError(f"DNS resolution failed for '{hostname}': {exc}") from exc

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

    # ------------------------------------------------------------------
    # Fetch pipeline
    # ------------------------------------------------------------------

    def _fetch(self, url: str) -> tuple[bytes, str]:
        """Fetch *url* with timeout, redirect limit, size cap, and Content-Type check.

        Returns (body_bytes, content_type_without_params).
        """
        request = urllib.request.Request(url, headers={"User-Agent": _USER_AGENT})
        opener = urllib.request.build_opener(_LimitedRedirectHandler(self.max_redirects))

        try:
            response: HTTPResponse = opener.open(request, timeout=self.timeout)
        except (urllib.error.URLError, TimeoutError) as exc:
            raise CrawlError(f"Failed to fetch URL '{url}': {exc}") from exc

        with response:
            raw_ct = response.headers.get("Content-Type", "text/html")
            ct = raw_ct.split(";")[0].strip().lower()
            if ct not in _ALLOWED_CONTENT_TYPES:
                raise CrawlError(
                    f"Unsupported Content-Type '{ct}' for URL '{url}'. "
                    f"Accepted: {', '.join(sorted(_ALLOWED_CONTENT_TYPES))}"
                )

            body = response.read(self.max_bytes + 1)

        if len(body) > self.max_bytes:
            raise CrawlError(
                f"Response body exceeds {self.max_bytes // (1024 * 1024)} MB limit for URL '{url}'."
            )
        return body, ct

    @staticmethod
    def _to_plain_text(body: bytes, content_type: str) -> tuple[str, str]:
        """Return ``(title, text)`` for *body*; text has whitespace collapsed."""
        text = body.decode("utf-8", errors="replace")
        if content_type == "text/plain":
            return "", _WHITESPACE_RE.sub(" ", text).strip()

        soup = BeautifulSoup(text, "html.parser")
        title = soup.title.get_text().strip() if soup.title else ""
        for tag in soup.find_all(_NOISE_TAGS):
            tag.decompose()
        root = soup.body or soup
        content = _h2t.handle(str(root))
        return title, _WHITESPACE_RE.sub(" ", content).strip()


class _LimitedRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Follow at most *max_redirects* redirects, each to a public http(s) URL."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._count = 0

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        self._count += 1
        if self._count > self._max_redirects:
            raise CrawlError(
                f"Too many redirects (>{self._max_redirects}) for URL '{req.full_url}'."
            )
        WebCrawler.validate_url(newurl)
        return super().redirect_request(req, fp, code, msg, headers, newurl)
