"""Text, HTML and JSON rendering of a health report."""

import html
import json
import logging
import os
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from .config import REPORT_FORMATS
from .models import CertificateResult, HealthReport, Status

logger = logging.getLogger(__name__)

# Broken-link count above which fixing them becomes a required action.
BROKEN_LINKS_ACTION_THRESHOLD = 5

FILE_EXTENSIONS = {"text": "txt", "html": "html", "json": "json"}

_RULE = "=" * 51

_STATUS_ICONS = {
    Status.OK: "✅",
    Status.WARNING: "⚠️",
    Status.CRITICAL: "🔴",
    Status.DOWN: "🔴",
    Status.ERROR: "🔴",
}

_STATUS_COLORS = {
    Status.OK: "#28a745",
    Status.WARNING: "#f59e0b",
    Status.CRITICAL: "#dc3545",
    Status.DOWN: "#dc3545",
    Status.ERROR: "#dc3545",
}


@dataclass(frozen=True)
class Report:
    """A health report with its derived issues, ready for rendering.

    Attributes:
        health: Summaries produced by the run.
        generated_at: When the report was built (UTC).
        timestamp: ``generated_at`` formatted in the report timezone.
        critical_issues: Failures that make the run unhealthy.
        warnings: Degradations that do not.
        actions: Follow-ups for the site owners.
        actions_url: Link to the CI run that produced the report, if any.
        run_id: CI run identifier, if any.
        run_number: CI run number, if any.
        timezone: IANA timezone used for displayed dates and times.
    """

    health: HealthReport
    generated_at: datetime
    timestamp: str
    critical_issues: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()
    actions_url: str | None = None
    run_id: str | None = None
    run_number: str | None = None
    timezone: str = "UTC"

    @property
    def all_healthy(self) -> bool:
        return self.health.all_healthy

    @property
    def status_parts(self) -> tuple[str, str]:
        """Icon and status text, used in email subjects and webhook payloads."""
        if self.critical_issues:
            return "🚨", f"{len(self.critical_issues)} Critical Issue(s)!"
        if self.warnings:
            return "⚠️", f"{len(self.warnings)} Warning(s)"
        if not self.all_healthy:
            return "⚠️", "Issues Detected"
        return "✅", "All Systems OK"

    @property
    def headline(self) -> str:
        return " ".join(self.status_parts)

    def local(self, moment: datetime, fmt: str = "%H:%M") -> str:
        """Format ``moment`` in the report timezone."""
        return moment.astimezone(ZoneInfo(self.timezone)).strftime(fmt)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "generated_at": self.generated_at.isoformat(),
            "all_healthy": self.all_healthy,
            "critical_issues": list(self.critical_issues),
            "warnings": list(self.warnings),
            "actions": list(self.actions),
            "actions_url": self.actions_url,
            "run_id": self.run_id,
            "run_number": self.run_number,
            "summary": self.health.to_dict(),
        }


def _collect_issues(health: HealthReport) -> tuple[list[str], list[str], list[str]]:
    critical_issues: list[str] = []
    warnings: list[str] = []
    actions: list[str] = []

    if health.ssl is not None:
        for cert in health.ssl.details:
            if cert.status is Status.CRITICAL:
                if cert.is_expired:
                    detail = "EXPIRED!"
                elif cert.not_yet_valid:
                    detail = "not yet valid"
                else:
                    detail = f"expires in {cert.days_remaining} days"
                critical_issues.append(f"🔐 {cert.site_name}: SSL {detail}")
                actions.append(f"Renew SSL certificate for {cert.site_name}")
            elif cert.status is Status.WARNING:
                warnings.append(f"🔐 {cert.site_name}: SSL expires in {cert.days_remaining} days")
            elif cert.status is Status.ERROR:
                critical_issues.append(f"🔐 {cert.site_name}: SSL Error - {cert.error}")
                actions.append(f"Fix SSL configuration for {cert.site_name}")

    if health.uptime is not None:
        for site in health.uptime.details:
            if site.overall_status.is_failure:
                critical_issues.append(f"⬇️ {site.site_name}: SITE DOWN!")
                actions.append(f"Investigate downtime for {site.site_name}")
            elif site.overall_status is Status.CRITICAL:
                warnings.append(f"🐢 {site.site_name}: Very slow response ({site.avg_response_time_ms}ms)")
            elif site.overall_status is Status.WARNING:
                warnings.append(f"🐢 {site.site_name}: Slow response ({site.avg_response_time_ms}ms)")

    if health.links is not None:
        for crawl in health.links.details:
            if crawl.total_broken_links > 0:
                warnings.append(f"🔗 {crawl.site_name}: {crawl.total_broken_links} broken link(s)")
                if crawl.total_broken_links > BROKEN_LINKS_ACTION_THRESHOLD:
                    actions.append(f"Fix broken links on {crawl.site_name}")

    return critical_issues, warnings, actions


def build_report(
    health: HealthReport,
    timezone: str = "UTC",
    actions_url: str | None = None,
    run_id: str | None = None,
    run_number: str | None = None,
    now: datetime | None = None,
) -> Report:
    """Derive critical issues, warnings and actions from the summaries.

    Args:
        health: Summaries produced by the run.
        timezone: IANA timezone used for the displayed timestamp.
        actions_url: Link to the CI run, if any.
        run_id: CI run identifier. Defaults to ``GITHUB_RUN_ID``.
        run_number: CI run number. Defaults to ``GITHUB_RUN_NUMBER``.
        now: Report time (UTC). Defaults to the current time.

    Returns:
        Report ready for rendering.
    """
    generated_at = now or datetime.now(UTC)
    local = generated_at.astimezone(ZoneInfo(timezone))
    critical_issues, warnings, actions = _collect_issues(health)

    return Report(
        health=health,
        generated_at=generated_at,
        timestamp=local.strftime("%Y-%m-%d %H:%M %Z"),
        critical_issues=tuple(critical_issues),
        warnings=tuple(warnings),
        actions=tuple(actions),
        actions_url=actions_url,
        run_id=run_id if run_id is not None else os.environ.get("GITHUB_RUN_ID"),
        run_number=run_number if run_number is not None else os.environ.get("GITHUB_RUN_NUMBER"),
        timezone=timezone,
    )


def _section(lines: list[str], title: str) -> None:
    lines.extend([_RULE, title, _RULE])


def format_text(report: Report) -> str:
    """Render the report as plain text."""
    health = report.health
    lines = [_RULE, "SiteSentry Health Report", f"📅 {report.timestamp}"]
    if report.run_number:
        lines.append(f"🔢 Run #{report.run_number}")
    lines.extend([_RULE, ""])

    lines.append("📊 Summary:")
    if report.all_healthy and not report.warnings:
        lines.append("✅ All systems healthy!")
    else:
        if report.critical_issues:
            lines.append(f"🔴 {len(report.critical_issues)} critical issue(s)")
        if report.warnings:
            lines.append(f"⚠️ {len(report.warnings)} warning(s)")
    lines.append("")

    if health.ssl is not None:
        _section(lines, "🔐 SSL Certificates:")
        for cert in health.ssl.details:
            icon = _STATUS_ICONS[cert.status]
            if cert.error:
                lines.append(f"{icon} {cert.site_name}: {cert.error}")
            else:
                lines.append(f"{icon} {cert.site_name}: {cert.days_remaining} days remaining")
            if cert.not_after is not None:
                lines.append(f"    Expires: {report.local(cert.not_after, '%Y-%m-%d')}")
            lines.append(f"    Checked: {report.local(cert.checked_at)}")
        lines.append("")

    if health.uptime is not None:
        _section(lines, "⬆️ Uptime & Performance:")
        for site in health.uptime.details:
            icon = _STATUS_ICONS[site.overall_status]
            if site.overall_status.is_failure or site.avg_response_time_ms is None:
                lines.append(f"{icon} {site.site_name}: DOWN")
            else:
                lines.append(f"{icon} {site.site_name}: {site.avg_response_time_ms}ms")
            lines.append(f"    Checked: {report.local(site.checked_at)}")
            for page in site.failed_pages:
                lines.append(f"    - {page.page_name} ({page.url}): {page.error}")
        if health.uptime.uptime_percentage is not None:
            lines.append(f"Uptime: {health.uptime.uptime_percentage}%")
        lines.append("")

    if health.links is not None:
        _section(lines, "🔗 Broken Links:")
        for crawl in health.links.details:
            icon = _STATUS_ICONS[crawl.status]
            lines.append(f"{icon} {crawl.site_name}: {crawl.total_broken_links} broken")
            lines.append(f"    Checked: {report.local(crawl.checked_at)}")
            for link in crawl.all_broken_links:
                reason = link.status_code if link.status_code is not None else link.error
                lines.append(f"    - {link.url} ({reason}) on {link.found_on}")
        lines.append("")

    for title, items in (
        ("🚨 Critical Issues:", report.critical_issues),
        ("⚠️ Warnings:", report.warnings),
        ("📋 Required Actions:", report.actions),
    ):
        if items:
            _section(lines, title)
            lines.extend(f"{i}. {item}" for i, item in enumerate(items, start=1))
            lines.append("")

    if report.actions_url:
        lines.append(f"Run logs: {report.actions_url}")
    lines.append(_RULE)

    return "\n".join(lines)


def _html_row(label: str, value: str, status: Status, checked: str) -> str:
    return (
        '<tr><td style="padding: 8px 0; border-bottom: 1px solid #ddd;">'
        f"{_STATUS_ICONS[status]} {html.escape(label)}</td>"
        f'<td style="padding: 8px 0; border-bottom: 1px solid #ddd; color: {_STATUS_COLORS[status]};">'
        f"{html.escape(value)}</td>"
        '<td style="padding: 8px 0; border-bottom: 1px solid #ddd; color: #666; text-align: right;">'
        f"checked {html.escape(checked)}</td></tr>"
    )


def _html_section(title: str, rows: list[str]) -> str:
    return (
        '<div style="padding: 20px; background-color: #f8f9fa; border-radius: 8px; margin-top: 20px;">'
        f'<h2 style="margin-top: 0; color: #333;">{html.escape(title)}</h2>'
        f'<table style="width: 100%; border-collapse: collapse;">{"".join(rows)}</table></div>'
    )


def _html_list(title: str, items: tuple[str, ...]) -> str:
    entries = "".join(f"<li>{html.escape(item)}</li>" for item in items)
    return f'<div style="margin-top: 20px;"><h2 style="color: #333;">{html.escape(title)}</h2><ol>{entries}</ol></div>'


def _certificate_value(report: Report, cert: CertificateResult) -> str:
    if cert.error:
        return cert.error
    if cert.not_after is None:
        return f"{cert.days_remaining} days remaining"
    return f"{cert.days_remaining} days remaining (expires {report.local(cert.not_after, '%Y-%m-%d')})"


def format_html(report: Report) -> str:
    """Render the report as a standalone HTML page. Every value is escaped."""
    health = report.health
    banner_color = "#28a745" if report.all_healthy else "#dc3545"
    subtitle = report.timestamp
    if report.run_number:
        subtitle = f"{subtitle} · Run #{report.run_number}"
    parts = [
        f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>SiteSentry Health Report</title>
</head>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px;">
    <div style="background-color: {banner_color}; color: white; padding: 20px; border-radius: 8px; text-align: center;">
        <h1 style="margin: 0; font-size: 24px;">{html.escape(report.headline)}</h1>
        <p style="margin: 8px 0 0 0;">{html.escape(subtitle)}</p>
    </div>"""
    ]

    if health.ssl is not None:
        rows = [
            _html_row(cert.site_name, _certificate_value(report, cert), cert.status, report.local(cert.checked_at))
            for cert in health.ssl.details
        ]
        parts.append(_html_section("SSL Certificates", rows))

    if health.uptime is not None:
        rows = [
            _html_row(
                site.site_name,
                "DOWN" if site.overall_status.is_failure else f"{site.avg_response_time_ms}ms",
                site.overall_status,
                report.local(site.checked_at),
            )
            for site in health.uptime.details
        ]
        parts.append(_html_section("Uptime & Performance", rows))

    if health.links is not None:
        rows = [
            _html_row(
                crawl.site_name,
                f"{crawl.total_broken_links} broken",
                crawl.status,
                report.local(crawl.checked_at),
            )
            for crawl in health.links.details
        ]
        parts.append(_html_section("Broken Links", rows))

    for title, items in (
        ("Critical Issues", report.critical_issues),
        ("Warnings", report.warnings),
        ("Required Actions", report.actions),
    ):
        if items:
            parts.append(_html_list(title, items))

    if report.actions_url:
        url = html.escape(report.actions_url, quote=True)
        parts.append(f'<p style="margin-top: 20px;"><a href="{url}">View run logs</a></p>')

    parts.append(
        """    <p style="color: #666; font-size: 12px; text-align: center; margin-top: 20px;">
        Sent by SiteSentry
    </p>
</body>
</html>"""
    )
    return "\n".join(parts)


def format_json(report: Report) -> str:
    return json.dumps(report.to_dict(), indent=2, ensure_ascii=False)


_FORMATTERS = {
    "text": format_text,
    "html": format_html,
    "json": format_json,
}


def render(report: Report, fmt: str) -> str:
    """Render ``report`` in one of ``text``, ``html`` or ``json``."""
    formatter = _FORMATTERS.get(fmt)
    if formatter is None:
        raise ValueError(f"Unknown report format '{fmt}'. Must be one of: {REPORT_FORMATS}")
    return formatter(report)


def write_report(report: Report, output_dir: str | Path, formats: tuple[str, ...] = REPORT_FORMATS) -> list[Path]:
    """Write ``report-YYYY-MM-DD.<ext>`` files, one per format.

    The date is the report's generation date in UTC. Existing files for the
    same day are overwritten.

    Returns:
        Paths written, in ``formats`` order.

    Raises:
        OSError: If the directory cannot be created or a file cannot be written.
    """
    directory = Path(output_dir)
    directory.mkdir(parents=True, exist_ok=True)
    date = report.generated_at.strftime("%Y-%m-%d")

    written = []
    for fmt in formats:
        content = render(report, fmt)
        path = directory / f"report-{date}.{FILE_EXTENSIONS[fmt]}"
        path.write_text(content, encoding="utf-8")
        logger.info("Report saved: %s", path)
        written.append(path)
    return written
