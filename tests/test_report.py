"""Tests for the report module."""

import json
from datetime import UTC, datetime
from pathlib import Path

import pytest

from sitesentry.aggregator import summarize_availability, summarize_certificates, summarize_links
from sitesentry.models import (
    BrokenLink,
    CertificateResult,
    CrawlResult,
    HealthReport,
    PageLinkReport,
    PageProbeResult,
    SiteProbeResult,
    Status,
)
from sitesentry.report import build_report, format_html, format_json, format_text, render, write_report

NOW = datetime(2025, 6, 1, 9, 30, 0, tzinfo=UTC)


def _cert(name: str, status: Status, days: int | None = 60, expired: bool = False, error: str | None = None):
    return CertificateResult(
        site_id=name.lower(),
        site_name=name,
        url=f"https://{name.lower()}.example.com",
        status=status,
        checked_at=NOW,
        valid=not expired and error is None,
        days_remaining=days,
        is_expired=expired,
        error=error,
    )


def _uptime(name: str, status: Status, avg: int | None = 200, page_error: str | None = None):
    pages = ()
    if page_error:
        pages = (
            PageProbeResult(
                url=f"https://{name.lower()}.example.com",
                page_name="Main",
                status=Status.DOWN,
                is_up=False,
                checked_at=NOW,
                error=page_error,
            ),
        )
    return SiteProbeResult(
        site_id=name.lower(),
        site_name=name,
        url=f"https://{name.lower()}.example.com",
        pages=pages,
        overall_status=status,
        avg_response_time_ms=avg,
        checked_at=NOW,
    )


def _crawl(name: str, broken: int):
    base = f"https://{name.lower()}.example.com"
    links = tuple(
        BrokenLink(url=f"{base}/{i}", found_on=base, href=f"/{i}", status_code=404) for i in range(broken)
    )
    return CrawlResult(
        site_id=name.lower(),
        site_name=name,
        url=base,
        pages=(PageLinkReport(page_url=base, page_name="Main", broken_links=links),),
        all_broken_links=links,
        checked_at=NOW,
    )


@pytest.fixture
def healthy() -> HealthReport:
    """All checks healthy, no warnings."""
    return HealthReport(
        ssl=summarize_certificates([_cert("Main", Status.OK)]),
        uptime=summarize_availability([_uptime("Main", Status.OK)]),
        links=summarize_links([_crawl("Main", 0)]),
    )


@pytest.fixture
def troubled() -> HealthReport:
    """A mix of failures and degradations."""
    return HealthReport(
        ssl=summarize_certificates(
            [
                _cert("Expired", Status.CRITICAL, days=-3, expired=True),
                _cert("Soon", Status.CRITICAL, days=4),
                _cert("Later", Status.WARNING, days=20),
                _cert("Broken", Status.ERROR, days=None, error="Connection timeout"),
            ]
        ),
        uptime=summarize_availability(
            [
                _uptime("Down", Status.DOWN, avg=None, page_error="DNS resolution failed: nope"),
                _uptime("Slow", Status.WARNING, avg=2500),
                _uptime("Crawl", Status.CRITICAL, avg=7000),
            ]
        ),
        links=summarize_links([_crawl("Few", 2), _crawl("Many", 6)]),
    )


class TestBuildReport:
    """Tests for build_report function."""

    def test_healthy_report_has_no_issues(self, healthy: HealthReport) -> None:
        """A healthy run has no issues and an OK headline."""
        report = build_report(healthy, now=NOW, run_id="", run_number="")

        assert report.all_healthy is True
        assert report.critical_issues == ()
        assert report.warnings == ()
        assert report.actions == ()
        assert report.headline == "✅ All Systems OK"

    def test_derives_issues_warnings_and_actions(self, troubled: HealthReport) -> None:
        """Issues are derived per checker in a fixed order."""
        report = build_report(troubled, now=NOW)

        assert report.critical_issues == (
            "🔐 Expired: SSL EXPIRED!",
            "🔐 Soon: SSL expires in 4 days",
            "🔐 Broken: SSL Error - Connection timeout",
            "⬇️ Down: SITE DOWN!",
        )
        assert report.warnings == (
            "🔐 Later: SSL expires in 20 days",
            "🐢 Slow: Slow response (2500ms)",
            "🐢 Crawl: Very slow response (7000ms)",
            "🔗 Few: 2 broken link(s)",
            "🔗 Many: 6 broken link(s)",
        )
        assert report.actions == (
            "Renew SSL certificate for Expired",
            "Renew SSL certificate for Soon",
            "Fix SSL configuration for Broken",
            "Investigate downtime for Down",
            "Fix broken links on Many",
        )
        assert report.headline == "🚨 4 Critical Issue(s)!"

    def test_warnings_only_headline(self) -> None:
        """Only warnings yields a warning headline while staying healthy."""
        health = HealthReport(uptime=summarize_availability([_uptime("Slow", Status.WARNING, avg=2500)]))
        report = build_report(health, now=NOW)

        assert report.all_healthy is True
        assert report.headline == "⚠️ 1 Warning(s)"

    def test_timestamp_uses_timezone(self, healthy: HealthReport) -> None:
        """Displayed timestamp is converted to the report timezone."""
        report = build_report(healthy, timezone="Asia/Jerusalem", now=NOW)
        assert report.timestamp.startswith("2025-06-01 12:30")

    def test_run_metadata_from_environment(self, healthy: HealthReport, monkeypatch) -> None:
        """Run id and number default to the GitHub Actions variables."""
        monkeypatch.setenv("GITHUB_RUN_ID", "1234")
        monkeypatch.setenv("GITHUB_RUN_NUMBER", "56")
        report = build_report(healthy, now=NOW)

        assert report.run_id == "1234"
        assert report.run_number == "56"


class TestFormatters:
    """Tests for the text, HTML and JSON renderers."""

    def test_text_lists_every_section(self, troubled: HealthReport) -> None:
        """Text report includes per-site lines and numbered issues."""
        text = format_text(build_report(troubled, now=NOW, actions_url="https://ci.example.com/run/1"))

        assert "🔐 SSL Certificates:" in text
        assert "🔴 Broken: Connection timeout" in text
        assert "⚠️ Later: 20 days remaining" in text
        assert "🔴 Down: DOWN" in text
        assert "    - Main (https://down.example.com): DNS resolution failed: nope" in text
        assert "⚠️ Slow: 2500ms" in text
        assert "⚠️ Many: 6 broken" in text
        assert "    - https://many.example.com/0 (404) on https://many.example.com" in text
        assert "1. 🔐 Expired: SSL EXPIRED!" in text
        assert "5. Fix broken links on Many" in text
        assert "Run logs: https://ci.example.com/run/1" in text

    def test_text_healthy_summary(self, healthy: HealthReport) -> None:
        """Healthy text report says so and has no issue sections."""
        text = format_text(build_report(healthy, now=NOW))

        assert "✅ All systems healthy!" in text
        assert "Critical Issues" not in text

    def test_text_skips_checks_not_run(self) -> None:
        """Sections for checks that did not run are omitted."""
        health = HealthReport(links=summarize_links([_crawl("Main", 0)]))
        text = format_text(build_report(health, now=NOW))

        assert "SSL Certificates" not in text
        assert "Broken Links" in text

    def test_html_escapes_values(self) -> None:
        """Interpolated values are HTML-escaped."""
        health = HealthReport(
            ssl=summarize_certificates([_cert("<script>alert(1)</script>", Status.ERROR, days=None, error="a & b")])
        )
        page = format_html(build_report(health, now=NOW, actions_url='https://ci.example.com/?a=1&b="2"'))

        assert "<script>alert(1)</script>" not in page
        assert "&lt;script&gt;alert(1)&lt;/script&gt;" in page
        assert "a &amp; b" in page
        assert 'href="https://ci.example.com/?a=1&amp;b=&quot;2&quot;"' in page
        assert page.startswith("<!DOCTYPE html>")

    def test_json_round_trips_summary(self, troubled: HealthReport) -> None:
        """JSON output carries the issues and the raw summaries."""
        data = json.loads(format_json(build_report(troubled, now=NOW)))

        assert data["all_healthy"] is False
        assert len(data["critical_issues"]) == 4
        assert data["summary"]["ssl"]["critical"] == 2
        assert data["summary"]["uptime"]["down"] == 1
        assert data["summary"]["links"]["total_broken_links"] == 8

    def test_run_number_expiry_and_check_times(self) -> None:
        """Run number, certificate expiry date and check times appear in text and HTML."""
        cert = CertificateResult(
            site_id="main",
            site_name="Main",
            url="https://main.example.com",
            status=Status.OK,
            checked_at=datetime(2025, 6, 1, 9, 15, 0, tzinfo=UTC),
            valid=True,
            not_after=datetime(2025, 8, 31, 23, 0, 0, tzinfo=UTC),
            days_remaining=91,
        )
        health = HealthReport(
            ssl=summarize_certificates([cert]),
            uptime=summarize_availability([_uptime("Main", Status.OK)]),
            links=summarize_links([_crawl("Main", 0)]),
        )
        report = build_report(health, timezone="Asia/Jerusalem", run_number="42", now=NOW)

        text = format_text(report)
        assert "🔢 Run #42" in text
        assert "    Expires: 2025-09-01" in text
        assert "    Checked: 12:15" in text
        assert text.count("    Checked: 12:30") == 2

        page = format_html(report)
        assert "Run #42" in page
        assert "91 days remaining (expires 2025-09-01)" in page
        assert "checked 12:15" in page
        assert page.count("checked 12:30") == 2

    def test_run_number_omitted_when_unknown(self, healthy: HealthReport) -> None:
        """Without a run number no run line is rendered."""
        report = build_report(healthy, now=NOW, run_number="")

        assert "Run #" not in format_text(report)
        assert "Run #" not in format_html(report)

    def test_render_rejects_unknown_format(self, healthy: HealthReport) -> None:
        """Unknown format raises ValueError."""
        with pytest.raises(ValueError, match="Unknown report format"):
            render(build_report(healthy, now=NOW), "pdf")


class TestWriteReport:
    """Tests for write_report function."""

    def test_writes_one_file_per_format(self, healthy: HealthReport, tmp_path: Path) -> None:
        """Files are named after the report date."""
        report = build_report(healthy, now=NOW)
        paths = write_report(report, tmp_path / "reports")

        assert [path.name for path in paths] == ["report-2025-06-01.txt", "report-2025-06-01.html", "report-2025-06-01.json"]
        assert paths[0].read_text(encoding="utf-8") == format_text(report)
        assert json.loads(paths[2].read_text(encoding="utf-8"))["all_healthy"] is True

    def test_writes_selected_formats_only(self, healthy: HealthReport, tmp_path: Path) -> None:
        """Only requested formats are written."""
        paths = write_report(build_report(healthy, now=NOW), tmp_path, formats=("json",))

        assert [path.name for path in paths] == ["report-2025-06-01.json"]
        assert sorted(p.name for p in tmp_path.iterdir()) == ["report-2025-06-01.json"]
