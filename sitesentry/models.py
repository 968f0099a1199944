"""Data models for health check results and their summaries."""

from collections.abc import Iterable
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar


class Status(str, Enum):
    """Classification attached to every checked item."""

    OK = "ok"
    WARNING = "warning"
    CRITICAL = "critical"
    DOWN = "down"
    ERROR = "error"

    @property
    def severity(self) -> int:
        """Rank for worst-of comparisons. ERROR ranks with DOWN."""
        return _SEVERITY[self]

    @property
    def is_failure(self) -> bool:
        """True for connection-level failures."""
        return self in (Status.DOWN, Status.ERROR)


_SEVERITY = {
    Status.OK: 0,
    Status.WARNING: 1,
    Status.CRITICAL: 2,
    Status.DOWN: 3,
    Status.ERROR: 3,
}


def worst_status(statuses: Iterable[Status]) -> Status:
    """Return the worst status, ordering ``down > critical > warning > ok``.

    ERROR is reported as DOWN. An empty iterable is OK.
    """
    worst = Status.OK
    for status in statuses:
        if status.severity > worst.severity:
            worst = status
    return Status.DOWN if worst is Status.ERROR else worst


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [_to_jsonable(item) for item in value]
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return value


class _Serializable:
    """Mixin giving frozen dataclasses a JSON-ready ``to_dict``."""

    def to_dict(self) -> dict[str, Any]:
        return {f.name: _to_jsonable(getattr(self, f.name)) for f in fields(self)}  # type: ignore[arg-type]


# --------------------------------------------------------------------------
# Certificate checker
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateResult(_Serializable):
    """Result of inspecting the TLS certificate of one site.

    Attributes:
        site_id: Identifier of the checked site.
        site_name: Display name of the checked site.
        url: URL that was inspected.
        status: Classification of the certificate.
        checked_at: When the inspection started.
        hostname: Host the TLS handshake was made with, or None if the URL had none.
        valid: True if the certificate is inside its validity window.
        not_before: Start of the validity window (UTC).
        not_after: End of the validity window (UTC).
        days_remaining: Whole days until ``not_after`` (floored, negative once expired).
        is_expired: True if now is past ``not_after``.
        not_yet_valid: True if now is before ``not_before``.
        issuer: Issuer organization (or common name).
        subject: Subject common name.
        fingerprint: SHA-256 fingerprint, colon separated hex.
        error: Error description if inspection failed, None otherwise.
    """

    kind: ClassVar[str] = "ssl"

    site_id: str
    site_name: str
    url: str
    status: Status
    checked_at: datetime
    hostname: str | None = None
    valid: bool = False
    not_before: datetime | None = None
    not_after: datetime | None = None
    days_remaining: int | None = None
    is_expired: bool = False
    not_yet_valid: bool = False
    issuer: str | None = None
    subject: str | None = None
    fingerprint: str | None = None
    error: str | None = None


# --------------------------------------------------------------------------
# Availability probe
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class PageProbeResult(_Serializable):
    """Result of probing a single page.

    ``response_time_ms`` is None when no HTTP response was received
    (DNS failure, refused connection, timeout).
    """

    url: str
    page_name: str
    status: Status
    is_up: bool
    checked_at: datetime
    page_path: str | None = None
    status_code: int | None = None
    status_text: str | None = None
    response_time_ms: int | None = None
    content_length: int | None = None
    server_header: str | None = None
    content_type: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class SiteProbeResult(_Serializable):
    """Availability of a site across its main page and configured pages."""

    kind: ClassVar[str] = "uptime"

    site_id: str
    site_name: str
    url: str
    pages: tuple[PageProbeResult, ...]
    overall_status: Status
    avg_response_time_ms: int | None
    checked_at: datetime

    @property
    def status(self) -> Status:
        return self.overall_status

    @property
    def failed_pages(self) -> list[PageProbeResult]:
        return [page for page in self.pages if not page.is_up]


# --------------------------------------------------------------------------
# Link crawler
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class BrokenLink(_Serializable):
    """A reference that failed its existence probe.

    Attributes:
        url: Absolute URL that was probed.
        found_on: URL of the page the reference was found on.
        href: Reference text as written in the markup.
        status_code: HTTP status observed, or None on network failure.
        error: Failure description.
        redirect_to: Location header of the failing response, if any.
    """

    url: str
    found_on: str
    href: str
    status_code: int | None = None
    error: str | None = None
    redirect_to: str | None = None


@dataclass(frozen=True)
class Redirect(_Serializable):
    """An in-scope reference answering with a 3xx."""

    from_url: str
    to_url: str | None
    status_code: int


@dataclass(frozen=True)
class PageLinkReport(_Serializable):
    """Link check results for one scanned page.

    ``error`` is set when the page itself could not be fetched; no links
    are extracted from such a page.
    """

    page_url: str
    page_name: str
    depth: int = 1
    total_links: int = 0
    checked_links: int = 0
    valid_links: int = 0
    skipped_external: int = 0
    broken_links: tuple[BrokenLink, ...] = ()
    redirects: tuple[Redirect, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class CrawlResult(_Serializable):
    """Link integrity of one site.

    Status is OK when no broken link was found and WARNING otherwise; link
    rot never escalates further.
    """

    kind: ClassVar[str] = "links"

    site_id: str
    site_name: str
    url: str
    pages: tuple[PageLinkReport, ...]
    all_broken_links: tuple[BrokenLink, ...]
    checked_at: datetime

    @property
    def status(self) -> Status:
        return Status.OK if not self.all_broken_links else Status.WARNING

    @property
    def total_broken_links(self) -> int:
        return len(self.all_broken_links)

    @property
    def skipped_external(self) -> int:
        return sum(page.skipped_external for page in self.pages)

    @property
    def failed_pages(self) -> list[PageLinkReport]:
        return [page for page in self.pages if page.error is not None]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status"] = self.status.value
        data["total_broken_links"] = self.total_broken_links
        data["skipped_external"] = self.skipped_external
        return data


CheckResult = CertificateResult | SiteProbeResult | CrawlResult


# --------------------------------------------------------------------------
# Summaries
#
# Every count and the ``all_healthy`` flag are derived from ``details`` so
# they can never disagree with it.
# --------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSummary:
    kind: ClassVar[str] = "ssl"

    details: tuple[CertificateResult, ...] = ()

    @property
    def total(self) -> int:
        return len(self.details)

    @property
    def valid(self) -> int:
        return sum(1 for r in self.details if r.valid)

    @property
    def invalid(self) -> int:
        return sum(1 for r in self.details if not r.valid)

    @property
    def expiring_soon(self) -> int:
        return sum(1 for r in self.details if r.status is Status.WARNING)

    @property
    def critical(self) -> int:
        return sum(1 for r in self.details if r.status is Status.CRITICAL)

    @property
    def errors(self) -> int:
        return sum(1 for r in self.details if r.status is Status.ERROR)

    @property
    def unhealthy(self) -> int:
        return sum(1 for r in self.details if not r.valid or r.status in (Status.CRITICAL, Status.ERROR))

    @property
    def all_healthy(self) -> bool:
        return self.unhealthy == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "total": self.total,
            "valid": self.valid,
            "invalid": self.invalid,
            "expiring_soon": self.expiring_soon,
            "critical": self.critical,
            "errors": self.errors,
            "unhealthy": self.unhealthy,
            "all_healthy": self.all_healthy,
            "details": [r.to_dict() for r in self.details],
        }


@dataclass(frozen=True)
class AvailabilitySummary:
    kind: ClassVar[str] = "uptime"

    details: tuple[SiteProbeResult, ...] = ()

    @property
    def total(self) -> int:
        return len(self.details)

    @property
    def up(self) -> int:
        return sum(1 for r in self.details if r.overall_status in (Status.OK, Status.WARNING))

    @property
    def down(self) -> int:
        return sum(1 for r in self.details if r.overall_status.is_failure)

    @property
    def slow(self) -> int:
        return sum(1 for r in self.details if r.overall_status in (Status.WARNING, Status.CRITICAL))

    @property
    def unhealthy(self) -> int:
        return self.down

    @property
    def uptime_percentage(self) -> int | None:
        if not self.details:
            return None
        return round(self.up / self.total * 100)

    @property
    def all_healthy(self) -> bool:
        return self.down == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "total": self.total,
            "up": self.up,
            "down": self.down,
            "slow": self.slow,
            "unhealthy": self.unhealthy,
            "uptime_percentage": self.uptime_percentage,
            "all_healthy": self.all_healthy,
            "details": [r.to_dict() for r in self.details],
        }


@dataclass(frozen=True)
class LinkSummary:
    kind: ClassVar[str] = "links"

    details: tuple[CrawlResult, ...] = ()

    @property
    def total(self) -> int:
        return len(self.details)

    @property
    def broken_links(self) -> list[BrokenLink]:
        return [link for result in self.details for link in result.all_broken_links]

    @property
    def total_broken_links(self) -> int:
        return sum(result.total_broken_links for result in self.details)

    @property
    def sites_with_broken_links(self) -> int:
        return sum(1 for result in self.details if result.total_broken_links > 0)

    @property
    def unhealthy(self) -> int:
        return self.sites_with_broken_links

    @property
    def all_healthy(self) -> bool:
        return self.total_broken_links == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "total": self.total,
            "sites_with_broken_links": self.sites_with_broken_links,
            "total_broken_links": self.total_broken_links,
            "unhealthy": self.unhealthy,
            "all_healthy": self.all_healthy,
            "broken_links": [link.to_dict() for link in self.broken_links],
            "details": [r.to_dict() for r in self.details],
        }


Summary = CertificateSummary | AvailabilitySummary | LinkSummary


@dataclass(frozen=True)
class HealthReport:
    """The three checker summaries handed to the report formatter.

    A checker that was not run is None and does not affect overall health.
    """

    ssl: CertificateSummary | None = None
    uptime: AvailabilitySummary | None = None
    links: LinkSummary | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def summaries(self) -> dict[str, Summary]:
        """Summaries that were produced, keyed by check kind."""
        present = {"ssl": self.ssl, "uptime": self.uptime, "links": self.links}
        return {kind: summary for kind, summary in present.items() if summary is not None}

    @property
    def all_healthy(self) -> bool:
        return all(summary.all_healthy for summary in self.summaries.values())

    def to_dict(self) -> dict[str, Any]:
        return {
            "all_healthy": self.all_healthy,
            "started_at": _to_jsonable(self.started_at),
            "finished_at": _to_jsonable(self.finished_at),
            **{kind: summary.to_dict() for kind, summary in self.summaries.items()},
        }
