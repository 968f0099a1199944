"""Tests for the aggregator module and the summary models."""

from datetime import UTC, datetime

import pytest

from sitesentry.aggregator import (
    overall_health,
    summarize,
    summarize_availability,
    summarize_certificates,
    summarize_links,
)
from sitesentry.models import (
    AvailabilitySummary,
    BrokenLink,
    CertificateResult,
    CertificateSummary,
    CrawlResult,
    HealthReport,
    LinkSummary,
    PageLinkReport,
    SiteProbeResult,
    Status,
    worst_status,
)

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


def _cert(site_id: str, status: Status, valid: bool = True, days: int | None = 60) -> CertificateResult:
    return CertificateResult(
        site_id=site_id,
        site_name=site_id.upper(),
        url=f"https://{site_id}.example.com",
        status=status,
        checked_at=NOW,
        valid=valid,
        days_remaining=days,
        is_expired=not valid,
    )


def _uptime(site_id: str, status: Status, avg: int | None = 200) -> SiteProbeResult:
    return SiteProbeResult(
        site_id=site_id,
        site_name=site_id.upper(),
        url=f"https://{site_id}.example.com",
        pages=(),
        overall_status=status,
        avg_response_time_ms=avg,
        checked_at=NOW,
    )


def _crawl(site_id: str, broken: int) -> CrawlResult:
    links = tuple(
        BrokenLink(url=f"https://{site_id}.example.com/{i}", found_on=f"https://{site_id}.example.com", href=f"/{i}")
        for i in range(broken)
    )
    page = PageLinkReport(page_url=f"https://{site_id}.example.com", page_name="Main", broken_links=links)
    return CrawlResult(
        site_id=site_id,
        site_name=site_id.upper(),
        url=f"https://{site_id}.example.com",
        pages=(page,),
        all_broken_links=links,
        checked_at=NOW,
    )


class TestWorstStatus:
    """Tests for worst_status function and Status ordering."""

    def test_empty_is_ok(self) -> None:
        """No statuses at all is ok."""
        assert worst_status([]) is Status.OK

    @pytest.mark.parametrize(
        "statuses,expected",
        [
            ([Status.OK, Status.WARNING], Status.WARNING),
            ([Status.WARNING, Status.CRITICAL, Status.OK], Status.CRITICAL),
            ([Status.CRITICAL, Status.DOWN], Status.DOWN),
            ([Status.OK, Status.ERROR], Status.DOWN),
            ([Status.ERROR, Status.DOWN], Status.DOWN),
        ],
    )
    def test_ordering(self, statuses: list[Status], expected: Status) -> None:
        """down > critical > warning > ok, with error reported as down."""
        assert worst_status(statuses) is expected

    def test_status_serializes_as_string(self) -> None:
        """Status values are plain strings."""
        assert Status.CRITICAL == "critical"
        assert Status("down") is Status.DOWN


class TestCertificateSummary:
    """Tests for certificate summaries."""

    def test_counts(self) -> None:
        """Counts are derived from the detail list."""
        summary = summarize_certificates(
            [
                _cert("a", Status.OK),
                _cert("b", Status.WARNING, days=20),
                _cert("c", Status.CRITICAL, days=3),
                _cert("d", Status.CRITICAL, valid=False, days=-5),
                _cert("e", Status.ERROR, valid=False, days=None),
            ]
        )

        assert summary.total == 5
        assert summary.valid == 3
        assert summary.invalid == 2
        assert summary.expiring_soon == 1
        assert summary.critical == 2
        assert summary.errors == 1
        assert summary.all_healthy is False

    def test_warning_only_is_healthy(self) -> None:
        """Certificates nearing expiry do not flip health."""
        summary = summarize_certificates([_cert("a", Status.OK), _cert("b", Status.WARNING, days=20)])
        assert summary.all_healthy is True

    @pytest.mark.parametrize(
        "result",
        [
            _cert("x", Status.CRITICAL, days=2),
            _cert("x", Status.ERROR, valid=False, days=None),
            _cert("x", Status.CRITICAL, valid=False, days=-1),
        ],
    )
    def test_single_failure_is_unhealthy(self, result: CertificateResult) -> None:
        """Any critical, error or invalid certificate makes the summary unhealthy."""
        assert summarize_certificates([_cert("a", Status.OK), result]).all_healthy is False

    def test_details_keep_input_order(self) -> None:
        """Details are passed through in order."""
        results = [_cert("b", Status.OK), _cert("a", Status.OK), _cert("c", Status.OK)]
        summary = summarize_certificates(results)
        assert [r.site_id for r in summary.details] == ["b", "a", "c"]


class TestAvailabilitySummary:
    """Tests for availability summaries."""

    def test_counts(self) -> None:
        """up, down, slow and uptime percentage are derived from the details."""
        summary = summarize_availability(
            [
                _uptime("a", Status.OK),
                _uptime("b", Status.WARNING),
                _uptime("c", Status.CRITICAL),
                _uptime("d", Status.DOWN, avg=None),
            ]
        )

        assert summary.up == 2
        assert summary.down == 1
        assert summary.slow == 2
        assert summary.uptime_percentage == 50
        assert summary.all_healthy is False

    def test_slow_sites_are_healthy(self) -> None:
        """Latency degradation alone does not flip health."""
        summary = summarize_availability([_uptime("a", Status.WARNING), _uptime("b", Status.CRITICAL)])
        assert summary.all_healthy is True

    def test_error_counts_as_down(self) -> None:
        """An error overall status counts as down."""
        summary = summarize_availability([_uptime("a", Status.ERROR, avg=None)])
        assert summary.down == 1
        assert summary.all_healthy is False

    def test_empty_summary(self) -> None:
        """No sites is healthy with no percentage."""
        summary = summarize_availability([])
        assert summary.all_healthy is True
        assert summary.uptime_percentage is None


class TestLinkSummary:
    """Tests for link summaries."""

    def test_counts_and_flattening(self) -> None:
        """Broken links are flattened across sites in order."""
        summary = summarize_links([_crawl("a", 2), _crawl("b", 0), _crawl("c", 1)])

        assert summary.total_broken_links == 3
        assert summary.sites_with_broken_links == 2
        assert [link.url for link in summary.broken_links] == [
            "https://a.example.com/0",
            "https://a.example.com/1",
            "https://c.example.com/0",
        ]
        assert summary.all_healthy is False

    def test_no_broken_links_is_healthy(self) -> None:
        """Zero broken links across all sites is healthy."""
        assert summarize_links([_crawl("a", 0), _crawl("b", 0)]).all_healthy is True

    def test_crawl_status_never_exceeds_warning(self) -> None:
        """Hundreds of broken links still cap at warning."""
        assert _crawl("a", 300).status is Status.WARNING
        assert _crawl("a", 0).status is Status.OK


class TestSummarize:
    """Tests for the summarize dispatcher."""

    def test_dispatches_by_kind(self) -> None:
        """Each kind yields its own summary type."""
        assert isinstance(summarize("ssl", [_cert("a", Status.OK)]), CertificateSummary)
        assert isinstance(summarize("uptime", [_uptime("a", Status.OK)]), AvailabilitySummary)
        assert isinstance(summarize("links", [_crawl("a", 0)]), LinkSummary)

    def test_rejects_unknown_kind(self) -> None:
        """Unknown kind raises ValueError."""
        with pytest.raises(ValueError, match="Unknown check kind"):
            summarize("dns", [])

    def test_rejects_mismatched_results(self) -> None:
        """Results from another checker raise ValueError."""
        with pytest.raises(ValueError, match="CrawlResult"):
            summarize("ssl", [_crawl("a", 0)])


class TestOverallHealth:
    """Tests for HealthReport and overall_health."""

    def test_all_healthy(self) -> None:
        """AND of all summaries."""
        report = HealthReport(
            ssl=summarize_certificates([_cert("a", Status.WARNING, days=20)]),
            uptime=summarize_availability([_uptime("a", Status.CRITICAL)]),
            links=summarize_links([_crawl("a", 0)]),
        )
        assert overall_health(report) is True

    @pytest.mark.parametrize("failing", ["ssl", "uptime", "links"])
    def test_any_failing_summary_fails(self, failing: str) -> None:
        """One unhealthy summary makes the run unhealthy."""
        summaries = {
            "ssl": summarize_certificates([_cert("a", Status.OK)]),
            "uptime": summarize_availability([_uptime("a", Status.OK)]),
            "links": summarize_links([_crawl("a", 0)]),
        }
        summaries[failing] = {
            "ssl": summarize_certificates([_cert("a", Status.ERROR, valid=False)]),
            "uptime": summarize_availability([_uptime("a", Status.DOWN)]),
            "links": summarize_links([_crawl("a", 1)]),
        }[failing]

        assert overall_health(HealthReport(**summaries)) is False

    def test_missing_summaries_are_ignored(self) -> None:
        """Checks that were not run do not affect health."""
        report = HealthReport(uptime=summarize_availability([_uptime("a", Status.OK)]))
        assert list(report.summaries) == ["uptime"]
        assert overall_health(report) is True

    def test_to_dict_is_json_ready(self) -> None:
        """Serialized report uses plain values only."""
        report = HealthReport(
            ssl=summarize_certificates([_cert("a", Status.OK)]),
            links=summarize_links([_crawl("a", 1)]),
            started_at=NOW,
        )
        data = report.to_dict()

        assert data["all_healthy"] is False
        assert data["started_at"] == NOW.isoformat()
        assert data["ssl"]["details"][0]["status"] == "ok"
        assert data["ssl"]["details"][0]["checked_at"] == NOW.isoformat()
        assert data["links"]["total_broken_links"] == 1
        assert data["links"]["details"][0]["status"] == "warning"
        assert "uptime" not in data
