"""HTTP transport shared by the availability probe and the link crawler."""

import logging
import re
import time
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from email.message import Message
from urllib.parse import urljoin

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10

_CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)


class _RedirectHandler(urllib.request.HTTPRedirectHandler):
    """Custom redirect handler that follows 307 and 308 redirects."""

    def http_error_307(self, req, fp, code, msg, headers):
        """Handle 307 Temporary Redirect."""
        return self._do_redirect(req, fp, code, msg, headers)

    def http_error_308(self, req, fp, code, msg, headers):
        """Handle 308 Permanent Redirect."""
        return self._do_redirect(req, fp, code, msg, headers)

    def _do_redirect(self, req, fp, code, msg, headers):
        """Follow redirect preserving the original method."""
        new_url = headers.get("Location")
        if new_url:
            new_req = urllib.request.Request(
                urljoin(req.full_url, new_url),
                method=req.get_method(),
                headers=dict(req.header_items()),
            )
            return self.parent.open(new_req, timeout=req.timeout)
        return None


class _NoRedirectHandler(urllib.request.HTTPRedirectHandler):
    """Surface 3xx responses as HTTPError instead of following them."""

    def redirect_request(self, req, fp, code, msg, headers, newurl):
        return None


# Page fetches follow redirects; existence probes report them.
_opener = urllib.request.build_opener(_RedirectHandler())
_probe_opener = urllib.request.build_opener(_NoRedirectHandler())


@dataclass(frozen=True)
class HttpResult:
    """Outcome of one HTTP request.

    Exactly one of ``status_code`` and ``error`` is set. ``elapsed_ms`` is
    None when no response was received. ``invalid_request`` marks failures
    that happened while building the request, before any network traffic.
    """

    url: str
    status_code: int | None = None
    reason: str | None = None
    elapsed_ms: int | None = None
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)
    error: str | None = None
    invalid_request: bool = False

    @property
    def ok(self) -> bool:
        return self.status_code is not None and 200 <= self.status_code < 400

    @property
    def is_redirect(self) -> bool:
        return self.status_code is not None and 300 <= self.status_code < 400

    @property
    def location(self) -> str | None:
        return self.headers.get("location")

    @property
    def content_type(self) -> str | None:
        return self.headers.get("content-type")

    @property
    def charset(self) -> str | None:
        match = _CHARSET_RE.search(self.content_type or "")
        return match.group(1) if match else None

    def text(self) -> str:
        """Decode the body using the declared charset, falling back to UTF-8."""
        try:
            return self.body.decode(self.charset or "utf-8", errors="replace")
        except LookupError:
            return self.body.decode("utf-8", errors="replace")

    def describe_failure(self) -> str:
        """Short failure text for reports: the error, or ``HTTP <code>``."""
        if self.error:
            return self.error
        if self.reason:
            return f"HTTP {self.status_code}: {self.reason}"
        return f"HTTP {self.status_code}"


def describe_error(exc: BaseException) -> str:
    """Turn a network exception into the message stored on a result.

    ``URLError`` wrappers are unwrapped and timeouts read "Connection
    timeout"; everything else keeps the underlying message verbatim.

    Args:
        exc: Exception raised while connecting, handshaking or reading.

    Returns:
        The underlying error message.
    """
    if isinstance(exc, urllib.error.URLError) and not isinstance(exc, urllib.error.HTTPError):
        reason = exc.reason
        if isinstance(reason, BaseException):
            return describe_error(reason)
        return str(reason) if reason else "Connection failed"
    if isinstance(exc, TimeoutError):
        return "Connection timeout"
    return str(exc) or type(exc).__name__


def _header_map(headers: Message | dict | None) -> dict[str, str]:
    if not headers:
        return {}
    return {str(key).lower(): str(value) for key, value in headers.items()}


def _read_error_body(error: urllib.error.HTTPError) -> bytes:
    try:
        return error.read() or b""
    except (OSError, ValueError):
        return b""


def request(
    url: str,
    method: str = "GET",
    timeout: float = DEFAULT_TIMEOUT,
    user_agent: str = "SiteSentry/0.1",
    follow_redirects: bool = True,
    read_body: bool = True,
    accept: str | None = None,
) -> HttpResult:
    """Issue one HTTP request and never raise.

    Args:
        url: Absolute http(s) URL.
        method: HTTP method, GET or HEAD.
        timeout: Socket timeout in seconds for this call only.
        user_agent: User-Agent header value.
        follow_redirects: Follow 3xx responses. When False a 3xx is returned
            as-is with its Location header.
        read_body: Drain the full response body so the elapsed time covers
            the complete transfer.
        accept: Optional Accept header value.

    Returns:
        HttpResult with either a status code or an error message.
    """
    headers = {"User-Agent": user_agent}
    if accept:
        headers["Accept"] = accept

    try:
        req = urllib.request.Request(url, method=method, headers=headers)
    except ValueError as e:
        return HttpResult(url=url, error=f"Invalid URL: {e}", invalid_request=True)

    opener = _opener if follow_redirects else _probe_opener
    start = time.monotonic()

    try:
        with opener.open(req, timeout=timeout) as response:
            body = response.read() if read_body else b""
            elapsed_ms = int((time.monotonic() - start) * 1000)
            return HttpResult(
                url=url,
                status_code=response.status,
                reason=getattr(response, "reason", None),
                elapsed_ms=elapsed_ms,
                body=body,
                headers=_header_map(response.headers),
            )

    except urllib.error.HTTPError as e:
        body = _read_error_body(e) if read_body else b""
        elapsed_ms = int((time.monotonic() - start) * 1000)
        return HttpResult(
            url=url,
            status_code=e.code,
            reason=str(e.reason) if e.reason else None,
            elapsed_ms=elapsed_ms,
            body=body,
            headers=_header_map(e.headers),
        )

    except Exception as e:
        logger.debug("%s %s failed (%s): %s", method, url, type(e).__name__, e)
        return HttpResult(url=url, error=describe_error(e))
