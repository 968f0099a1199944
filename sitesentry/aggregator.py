"""Fold per-site checker results into summaries."""

import logging
from collections.abc import Sequence

from .models import (
    AvailabilitySummary,
    CertificateResult,
    CertificateSummary,
    CheckResult,
    CrawlResult,
    HealthReport,
    LinkSummary,
    SiteProbeResult,
    Summary,
)

logger = logging.getLogger(__name__)


def summarize_certificates(results: Sequence[CertificateResult]) -> CertificateSummary:
    """Healthy unless a certificate is invalid, critical or could not be read."""
    summary = CertificateSummary(details=tuple(results))
    logger.debug(
        "SSL summary: %d valid, %d invalid, %d expiring soon, %d critical, %d errors",
        summary.valid,
        summary.invalid,
        summary.expiring_soon,
        summary.critical,
        summary.errors,
    )
    return summary


def summarize_availability(results: Sequence[SiteProbeResult]) -> AvailabilitySummary:
    """Healthy unless a site is down. Slow sites stay healthy."""
    summary = AvailabilitySummary(details=tuple(results))
    logger.debug("Uptime summary: %d up, %d down, %d slow", summary.up, summary.down, summary.slow)
    return summary


def summarize_links(results: Sequence[CrawlResult]) -> LinkSummary:
    """Healthy only when no broken link was found on any site."""
    summary = LinkSummary(details=tuple(results))
    logger.debug(
        "Link summary: %d broken link(s) on %d site(s)",
        summary.total_broken_links,
        summary.sites_with_broken_links,
    )
    return summary


_SUMMARIZERS = {
    "ssl": summarize_certificates,
    "uptime": summarize_availability,
    "links": summarize_links,
}


def summarize(kind: str, results: Sequence[CheckResult]) -> Summary:
    """Summarize the results of one checker.

    Args:
        kind: Check kind, one of ``ssl``, ``uptime`` or ``links``.
        results: Per-site results in input order. Every result must be of
            the variant produced by that checker.

    Returns:
        The summary for ``kind``. Its ``details`` keep the input order.

    Raises:
        ValueError: If ``kind`` is unknown or a result belongs to another checker.
    """
    summarizer = _SUMMARIZERS.get(kind)
    if summarizer is None:
        raise ValueError(f"Unknown check kind '{kind}'. Must be one of: {tuple(_SUMMARIZERS)}")

    mismatched = [type(result).__name__ for result in results if result.kind != kind]
    if mismatched:
        raise ValueError(f"Cannot summarize {mismatched[0]} as '{kind}' results")

    return summarizer(results)


def overall_health(report: HealthReport) -> bool:
    """Logical AND of every produced summary's ``all_healthy`` flag."""
    healthy = report.all_healthy
    if not healthy:
        failing = [kind for kind, summary in report.summaries.items() if not summary.all_healthy]
        logger.info("Unhealthy checks: %s", ", ".join(failing))
    return healthy
