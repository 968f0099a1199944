"""Run the configured checkers and collect their summaries."""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from .aggregator import summarize
from .availability import AvailabilityProbe
from .certificates import CertificateInspector
from .config import CHECK_KINDS, Config
from .links import LinkCrawler
from .models import HealthReport
from .scheduling import Deadline

logger = logging.getLogger(__name__)


def build_checkers(config: Config, deadline: Deadline | None = None) -> dict[str, object]:
    """Create one checker per kind from the configuration."""
    engine = config.engine
    thresholds = config.thresholds
    return {
        "ssl": CertificateInspector(
            warning_days=thresholds.ssl_expiry_warning_days,
            critical_days=thresholds.ssl_expiry_critical_days,
            timeout=engine.timeout,
            max_workers=engine.max_workers,
            deadline=deadline,
        ),
        "uptime": AvailabilityProbe(
            warning_ms=thresholds.latency_warning_ms,
            critical_ms=thresholds.latency_critical_ms,
            timeout=engine.timeout,
            user_agent=engine.user_agent,
            max_workers=engine.max_workers,
            deadline=deadline,
        ),
        "links": LinkCrawler(
            timeout=engine.timeout,
            user_agent=engine.user_agent,
            check_external=engine.check_external_links,
            max_depth=engine.max_crawl_depth,
            max_pages=engine.max_pages_per_site,
            max_workers=engine.max_workers,
            deadline=deadline,
        ),
    }


def run_health_checks(
    config: Config,
    kinds: Iterable[str] = CHECK_KINDS,
    clock: Callable[[], datetime] | None = None,
) -> HealthReport:
    """Run the requested checkers over the sites that enable them.

    Checkers run one after the other in ``ssl``, ``uptime``, ``links``
    order. A kind with no enabled site yields an empty (healthy) summary.

    Args:
        config: Loaded configuration.
        kinds: Check kinds to run. Kinds not listed get no summary.
        clock: Returns the current UTC time; injectable for tests.

    Returns:
        HealthReport with one summary per requested kind.

    Raises:
        ValueError: If ``kinds`` names an unknown check kind.
    """
    clock = clock or (lambda: datetime.now(UTC))
    requested = set(kinds)
    unknown = requested - set(CHECK_KINDS)
    if unknown:
        raise ValueError(f"Unknown check kind(s) {sorted(unknown)}. Must be one of: {CHECK_KINDS}")

    deadline = Deadline(config.engine.deadline_seconds) if config.engine.deadline_seconds else None
    checkers = build_checkers(config, deadline)

    started_at = clock()
    summaries = {}
    for kind in CHECK_KINDS:
        if kind not in requested:
            continue

        sites = config.sites_for(kind)
        if not sites:
            logger.info("No sites with %s checks enabled", kind)
            summaries[kind] = summarize(kind, [])
            continue

        logger.info("Running %s checks on %d site(s)", kind, len(sites))
        results = checkers[kind].check_sites(sites)
        summaries[kind] = summarize(kind, results)

    return HealthReport(started_at=started_at, finished_at=clock(), **summaries)
