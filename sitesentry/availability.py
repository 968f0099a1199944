"""HTTP availability and latency probing."""

import logging
from collections.abc import Callable, Sequence
from datetime import UTC, datetime

from . import transport
from .config import DEFAULT_USER_AGENT, PageConfig, SiteConfig
from .models import PageProbeResult, SiteProbeResult, Status, worst_status
from .scheduling import DEADLINE_EXCEEDED, Deadline, deadline_expired, run_ordered

logger = logging.getLogger(__name__)

DEFAULT_WARNING_MS = 2000
DEFAULT_CRITICAL_MS = 5000

MAIN_PAGE_NAME = "Main"


def classify_latency(
    status_code: int | None,
    response_time_ms: int | None,
    warning_ms: int = DEFAULT_WARNING_MS,
    critical_ms: int = DEFAULT_CRITICAL_MS,
) -> Status:
    """Classify one page by status code, then latency.

    Args:
        status_code: HTTP status, or None if the request failed.
        response_time_ms: Time for the full transfer.
        warning_ms: Latency at or above which the page is a warning.
        critical_ms: Latency at or above which the page is critical.

    Returns:
        DOWN outside ``[200, 400)``, else CRITICAL, WARNING or OK by latency.
    """
    if status_code is None or not (200 <= status_code < 400):
        return Status.DOWN
    if response_time_ms is None:
        return Status.OK
    if response_time_ms >= critical_ms:
        return Status.CRITICAL
    if response_time_ms >= warning_ms:
        return Status.WARNING
    return Status.OK


def average_latency(pages: Sequence[PageProbeResult]) -> int | None:
    """Mean latency over pages that got a response, rounded to whole ms."""
    times = [page.response_time_ms for page in pages if page.response_time_ms is not None]
    if not times:
        return None
    return round(sum(times) / len(times))


class AvailabilityProbe:
    """Probes a site's base URL and configured pages with GET requests.

    Each page is probed independently; a failing page never stops its
    siblings from being probed.

    Example:
        probe = AvailabilityProbe(warning_ms=2000, critical_ms=5000)
        results = probe.check_sites(sites)
    """

    def __init__(
        self,
        warning_ms: int = DEFAULT_WARNING_MS,
        critical_ms: int = DEFAULT_CRITICAL_MS,
        timeout: float = transport.DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        max_workers: int = 1,
        deadline: Deadline | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.warning_ms = warning_ms
        self.critical_ms = critical_ms
        self.timeout = timeout
        self.user_agent = user_agent
        self.max_workers = max_workers
        self._deadline = deadline
        self._clock = clock or (lambda: datetime.now(UTC))

    def probe(self, url: str, page_name: str = MAIN_PAGE_NAME, page_path: str | None = None) -> PageProbeResult:
        """Probe a single URL, draining the body so latency covers the whole transfer."""
        checked_at = self._clock()

        if deadline_expired(self._deadline):
            return PageProbeResult(
                url=url,
                page_name=page_name,
                page_path=page_path,
                status=Status.DOWN,
                is_up=False,
                checked_at=checked_at,
                error=DEADLINE_EXCEEDED,
            )

        result = transport.request(
            url,
            method="GET",
            timeout=self.timeout,
            user_agent=self.user_agent,
            follow_redirects=True,
            read_body=True,
        )

        if result.invalid_request:
            return PageProbeResult(
                url=url,
                page_name=page_name,
                page_path=page_path,
                status=Status.ERROR,
                is_up=False,
                checked_at=checked_at,
                error=result.error,
            )

        status = classify_latency(result.status_code, result.elapsed_ms, self.warning_ms, self.critical_ms)
        is_up = status is not Status.DOWN

        if result.status_code is None:
            # No response, so no latency.
            response_time_ms = None
            error = result.error
        else:
            response_time_ms = result.elapsed_ms
            error = None if is_up else result.describe_failure()

        logger.debug(
            "%s: %s (%s, %sms)",
            url,
            status.value,
            result.status_code if result.status_code is not None else result.error,
            response_time_ms,
        )

        return PageProbeResult(
            url=url,
            page_name=page_name,
            page_path=page_path,
            status=status,
            is_up=is_up,
            checked_at=checked_at,
            status_code=result.status_code,
            status_text=result.reason,
            response_time_ms=response_time_ms,
            content_length=len(result.body) if result.status_code is not None else None,
            server_header=result.headers.get("server"),
            content_type=result.content_type,
            error=error,
        )

    def _probe_guarded(self, url: str, page_name: str, page_path: str | None) -> PageProbeResult:
        try:
            return self.probe(url, page_name, page_path)
        except Exception as e:
            logger.error("Probe of %s failed unexpectedly: %s", url, e)
            return PageProbeResult(
                url=url,
                page_name=page_name,
                page_path=page_path,
                status=Status.ERROR,
                is_up=False,
                checked_at=self._clock(),
                error=str(e) or type(e).__name__,
            )

    def _probe_page(self, site: SiteConfig, page: PageConfig) -> PageProbeResult:
        """Resolve a configured page against the site and probe it."""
        try:
            url = site.page_url(page)
        except ValueError as e:
            logger.warning("%s: cannot resolve page %s: %s", site.name, page.path, e)
            return PageProbeResult(
                url=page.path,
                page_name=page.name,
                page_path=page.path,
                status=Status.ERROR,
                is_up=False,
                checked_at=self._clock(),
                error=f"Invalid URL: {e}",
            )
        return self._probe_guarded(url, page.name, page.path)

    def check_site(self, site: SiteConfig) -> SiteProbeResult:
        """Probe the base URL and every configured page of a site, in order."""
        logger.info("Checking uptime: %s", site.name)
        checked_at = self._clock()

        pages = [self._probe_guarded(site.url, MAIN_PAGE_NAME, None)]
        for page in site.pages:
            logger.debug("Checking page: %s (%s)", page.name, page.path)
            pages.append(self._probe_page(site, page))

        overall = worst_status(page.status for page in pages)
        if overall is not Status.OK:
            logger.warning("%s: %s", site.name, overall.value.upper())

        return SiteProbeResult(
            site_id=site.id,
            site_name=site.name,
            url=site.url,
            pages=tuple(pages),
            overall_status=overall,
            avg_response_time_ms=average_latency(pages),
            checked_at=checked_at,
        )

    def check_sites(self, sites: Sequence[SiteConfig]) -> list[SiteProbeResult]:
        """Probe every site; results follow input order."""
        return run_ordered(self.check_site, sites, self.max_workers)
