"""Link extraction and broken-link crawling."""

import logging
import threading
from collections import deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urldefrag, urljoin, urlparse

from bs4 import BeautifulSoup

from . import transport
from .config import DEFAULT_USER_AGENT, SiteConfig
from .models import BrokenLink, CrawlResult, PageLinkReport, Redirect
from .scheduling import DEADLINE_EXCEEDED, Deadline, deadline_expired, run_ordered

logger = logging.getLogger(__name__)

# References that never point at a fetchable resource.
EXCLUDED_PREFIXES = ("#", "javascript:", "mailto:", "tel:", "data:", "blob:")

PROBEABLE_SCHEMES = ("http", "https")

MAIN_PAGE_NAME = "Main"

HTML_ACCEPT = "text/html,application/xhtml+xml"


@dataclass(frozen=True)
class ExtractedLink:
    """A reference found in a page's markup.

    Attributes:
        href: Attribute value as written (stripped of surrounding whitespace).
        absolute_url: Reference resolved against the page URL, fragment removed.
        is_external: True if the host differs from the site's host.
        is_resource: True for ``src`` references (images, scripts, frames).
        is_anchor: True for ``<a href>`` references, the only ones followed
            when crawling deeper than the configured pages.
    """

    href: str
    absolute_url: str
    is_external: bool
    is_resource: bool = False
    is_anchor: bool = False


def extract_links(html: str, page_url: str, site_host: str | None = None) -> list[ExtractedLink]:
    """Extract every ``href`` and ``src`` reference from literal markup.

    Anchors (``#...``) and ``javascript:``, ``mailto:``, ``tel:``, ``data:``
    and ``blob:`` references are dropped, as is anything that does not
    resolve to an http(s) URL. ``href`` references come first, then ``src``,
    each in document order. Duplicates are kept; see :func:`unique_links`.

    Args:
        html: Page markup.
        page_url: URL the markup was fetched from, used to resolve relative references.
        site_host: Host considered in scope. Defaults to the page's host.

    Returns:
        List of ExtractedLink objects.
    """
    if not html:
        return []

    soup = BeautifulSoup(html, "html.parser")
    if site_host is None:
        site_host = urlparse(page_url).hostname

    links: list[ExtractedLink] = []
    for attribute, is_resource in (("href", False), ("src", True)):
        for tag in soup.find_all(attrs={attribute: True}):
            value = tag.get(attribute)
            if not isinstance(value, str):
                continue
            value = value.strip()
            if not value or value.lower().startswith(EXCLUDED_PREFIXES):
                continue

            try:
                absolute_url, _ = urldefrag(urljoin(page_url, value))
                parsed = urlparse(absolute_url)
                host = parsed.hostname
            except ValueError:
                logger.debug("Skipping unparseable reference %r on %s", value, page_url)
                continue

            if parsed.scheme not in PROBEABLE_SCHEMES or not host:
                continue

            links.append(
                ExtractedLink(
                    href=value,
                    absolute_url=absolute_url,
                    is_external=host != site_host,
                    is_resource=is_resource,
                    is_anchor=tag.name == "a" and not is_resource,
                )
            )

    return links


def unique_links(links: Sequence[ExtractedLink]) -> list[ExtractedLink]:
    """Drop repeated absolute URLs, keeping the first occurrence."""
    seen: set[str] = set()
    unique: list[ExtractedLink] = []
    for link in links:
        if link.absolute_url in seen:
            continue
        seen.add(link.absolute_url)
        unique.append(link)
    return unique


def _page_key(url: str) -> str:
    """Normalize a page URL so ``https://host`` and ``https://host/#top`` match."""
    url, _ = urldefrag(url)
    parsed = urlparse(url)
    if not parsed.path:
        url = parsed._replace(path="/").geturl()
    return url


class CrawlScope:
    """State of a single site crawl.

    Holds the URLs already probed, the external URLs already counted as
    skipped, and the pages already scanned. A scope belongs to exactly one
    site crawl; a fresh one is created for every site, so a URL probed on
    one site is probed again when it shows up on another.

    ``claim_*`` methods are atomic check-and-insert operations.
    """

    def __init__(self, site_url: str, check_external: bool = False) -> None:
        self.site_url = site_url
        self.host = urlparse(site_url).hostname
        self.check_external = check_external
        self._checked: set[str] = set()
        self._skipped_external: set[str] = set()
        self._pages: set[str] = set()
        self._lock = threading.Lock()

    @staticmethod
    def _claim(bucket: set[str], key: str, lock: threading.Lock) -> bool:
        with lock:
            if key in bucket:
                return False
            bucket.add(key)
            return True

    def claim_link(self, url: str) -> bool:
        """Return True if ``url`` has not been probed yet in this crawl."""
        return self._claim(self._checked, url, self._lock)

    def claim_external(self, url: str) -> bool:
        """Return True the first time an external ``url`` is skipped."""
        return self._claim(self._skipped_external, url, self._lock)

    def claim_page(self, url: str) -> bool:
        """Return True if page ``url`` has not been scheduled for scanning yet."""
        return self._claim(self._pages, _page_key(url), self._lock)

    @property
    def checked_urls(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._checked)

    @property
    def skipped_external_urls(self) -> frozenset[str]:
        with self._lock:
            return frozenset(self._skipped_external)


class LinkCrawler:
    """Finds broken references on a site's pages.

    Each page is fetched with GET and its markup scanned; every in-scope
    reference is probed once per site with HEAD. External references are
    only counted unless ``check_external`` is set.

    Example:
        crawler = LinkCrawler(timeout=10)
        results = crawler.check_sites(sites)
    """

    def __init__(
        self,
        timeout: float = transport.DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        check_external: bool = False,
        max_depth: int = 1,
        max_pages: int = 50,
        max_workers: int = 1,
        deadline: Deadline | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the crawler.

        Args:
            timeout: Seconds allowed per page fetch or link probe.
            user_agent: User-Agent header value.
            check_external: Probe references to other hosts too.
            max_depth: 1 scans the main page and configured pages only; each
                extra level also scans in-scope anchor targets found one level up.
            max_pages: Upper bound on pages scanned per site.
            max_workers: Sites crawled concurrently; 1 is sequential.
            deadline: Optional run deadline.
            clock: Returns the current UTC time; injectable for tests.
        """
        self.timeout = timeout
        self.user_agent = user_agent
        self.check_external = check_external
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.max_workers = max_workers
        self._deadline = deadline
        self._clock = clock or (lambda: datetime.now(UTC))

    def fetch_page(self, url: str) -> transport.HttpResult:
        if deadline_expired(self._deadline):
            return transport.HttpResult(url=url, error=DEADLINE_EXCEEDED)
        return transport.request(
            url,
            method="GET",
            timeout=self.timeout,
            user_agent=self.user_agent,
            follow_redirects=True,
            read_body=True,
            accept=HTML_ACCEPT,
        )

    def check_link(self, url: str) -> transport.HttpResult:
        """Existence probe: HEAD without following redirects."""
        if deadline_expired(self._deadline):
            return transport.HttpResult(url=url, error=DEADLINE_EXCEEDED)
        return transport.request(
            url,
            method="HEAD",
            timeout=self.timeout,
            user_agent=self.user_agent,
            follow_redirects=False,
            read_body=False,
        )

    def _scan_page(
        self, page_url: str, page_name: str, scope: CrawlScope, depth: int
    ) -> tuple[PageLinkReport, list[str]]:
        """Scan one page. Returns its report and in-scope anchor targets that probed OK."""
        logger.debug("Scanning links on: %s", page_url)

        page = self.fetch_page(page_url)
        if not page.ok:
            logger.warning("Could not load %s: %s", page_url, page.describe_failure())
            return PageLinkReport(page_url=page_url, page_name=page_name, depth=depth, error=page.describe_failure()), []

        content_type = page.content_type
        if content_type and "html" not in content_type.lower():
            logger.debug("Not scanning %s (%s)", page_url, content_type)
            return PageLinkReport(page_url=page_url, page_name=page_name, depth=depth), []

        links = unique_links(extract_links(page.text(), page_url, scope.host))
        logger.debug("Found %d unique links on %s", len(links), page_url)

        checked = 0
        valid = 0
        skipped_external = 0
        broken: list[BrokenLink] = []
        redirects: list[Redirect] = []
        discovered: list[str] = []

        for link in links:
            if link.is_external and not scope.check_external:
                if scope.claim_external(link.absolute_url):
                    skipped_external += 1
                continue

            if not scope.claim_link(link.absolute_url):
                continue

            checked += 1
            result = self.check_link(link.absolute_url)
            location = urljoin(link.absolute_url, result.location) if result.location else None

            if result.ok:
                valid += 1
                if result.is_redirect:
                    redirects.append(Redirect(from_url=link.absolute_url, to_url=location, status_code=result.status_code))
                elif link.is_anchor and not link.is_external:
                    discovered.append(link.absolute_url)
            else:
                logger.debug("Broken link on %s: %s (%s)", page_url, link.absolute_url, result.describe_failure())
                broken.append(
                    BrokenLink(
                        url=link.absolute_url,
                        found_on=page_url,
                        href=link.href,
                        status_code=result.status_code,
                        error=result.error,
                        redirect_to=location,
                    )
                )

        report = PageLinkReport(
            page_url=page_url,
            page_name=page_name,
            depth=depth,
            total_links=len(links),
            checked_links=checked,
            valid_links=valid,
            skipped_external=skipped_external,
            broken_links=tuple(broken),
            redirects=tuple(redirects),
        )
        return report, discovered

    def _scan_guarded(
        self, page_url: str, page_name: str, scope: CrawlScope, depth: int
    ) -> tuple[PageLinkReport, list[str]]:
        try:
            return self._scan_page(page_url, page_name, scope, depth)
        except Exception as e:
            logger.error("Link scan of %s failed unexpectedly: %s", page_url, e)
            return PageLinkReport(page_url=page_url, page_name=page_name, depth=depth, error=str(e) or type(e).__name__), []

    def check_page(self, page_url: str, scope: CrawlScope, page_name: str = MAIN_PAGE_NAME) -> PageLinkReport:
        """Scan a single page within an existing crawl scope."""
        report, _ = self._scan_guarded(page_url, page_name, scope, 1)
        return report

    def crawl_site(self, site: SiteConfig, scope: CrawlScope | None = None) -> CrawlResult:
        """Crawl a site's main page and configured pages, breadth-first.

        Args:
            site: Site to crawl.
            scope: Crawl state to use. A new scope is created when omitted;
                pass one only to inspect it afterwards.

        Returns:
            CrawlResult with per-page reports and the flattened broken links.
        """
        logger.info("Validating links: %s", site.name)
        checked_at = self._clock()
        if scope is None:
            scope = CrawlScope(site.url, check_external=self.check_external)

        # (url, name, depth, error); an error entry is reported without a fetch.
        queue: deque[tuple[str, str, int, str | None]] = deque()
        if scope.claim_page(site.url):
            queue.append((site.url, MAIN_PAGE_NAME, 1, None))
        for page in site.pages:
            try:
                url = site.page_url(page)
                claimed = scope.claim_page(url)
            except ValueError as e:
                logger.warning("%s: cannot resolve page %s: %s", site.name, page.path, e)
                queue.append((page.path, page.name, 1, f"Invalid URL: {e}"))
                continue
            if claimed:
                queue.append((url, page.name, 1, None))

        reports: list[PageLinkReport] = []
        while queue and len(reports) < self.max_pages:
            page_url, page_name, depth, error = queue.popleft()
            if error is not None:
                reports.append(PageLinkReport(page_url=page_url, page_name=page_name, depth=depth, error=error))
                continue
            report, discovered = self._scan_guarded(page_url, page_name, scope, depth)
            reports.append(report)

            if depth < self.max_depth:
                for found in discovered:
                    if scope.claim_page(found):
                        queue.append((found, urlparse(found).path or "/", depth + 1, None))

        if queue:
            logger.info("%s: page limit of %d reached, %d page(s) not scanned", site.name, self.max_pages, len(queue))

        broken = tuple(link for report in reports for link in report.broken_links)
        if broken:
            logger.warning("%s: %d broken link(s)", site.name, len(broken))

        return CrawlResult(
            site_id=site.id,
            site_name=site.name,
            url=site.url,
            pages=tuple(reports),
            all_broken_links=broken,
            checked_at=checked_at,
        )

    def _crawl_guarded(self, site: SiteConfig) -> CrawlResult:
        try:
            return self.crawl_site(site)
        except Exception as e:
            logger.error("Link crawl of %s failed unexpectedly: %s", site.name, e)
            page = PageLinkReport(page_url=site.url, page_name=MAIN_PAGE_NAME, error=str(e) or type(e).__name__)
            return CrawlResult(
                site_id=site.id,
                site_name=site.name,
                url=site.url,
                pages=(page,),
                all_broken_links=(),
                checked_at=self._clock(),
            )

    def check_sites(self, sites: Sequence[SiteConfig]) -> list[CrawlResult]:
        """Crawl every site with its own scope; results follow input order."""
        return run_ordered(self._crawl_guarded, sites, self.max_workers)
