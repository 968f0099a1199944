"""SiteSentry - TLS, uptime and broken-link health checks for websites."""

import argparse
import logging
import sys

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    """Configure logging for the application."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )


def _selected_kinds(args: argparse.Namespace) -> tuple[str, ...]:
    """Check kinds chosen on the command line; none chosen means all."""
    from .config import CHECK_KINDS

    chosen = tuple(kind for kind in CHECK_KINDS if getattr(args, kind, False))
    return chosen or CHECK_KINDS


def _cmd_run(args: argparse.Namespace) -> None:
    """Execute the run command - check every site once and report."""
    _setup_logging(args.verbose)

    logger.info("SiteSentry %s starting...", __version__)

    # Import here to allow logging setup first
    from .config import load_config, ConfigError
    from .runner import run_health_checks
    from .report import build_report, format_text, write_report
    from .alerter import Alerter

    # 1. Load configuration
    try:
        config = load_config(args.config)
        logger.info("Configuration loaded from %s", args.config)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        sys.exit(1)

    # 2. Run checks
    kinds = _selected_kinds(args)
    logger.info("Checking %d site(s): %s", len(config.sites), ", ".join(kinds))
    health = run_health_checks(config, kinds)

    # 3. Build and write the report
    report = build_report(
        health,
        timezone=config.report.timezone,
        actions_url=config.report.github.resolve_actions_url(),
    )
    print(format_text(report))

    output_dir = args.output_dir or config.report.output_dir
    try:
        write_report(report, output_dir, config.report.formats)
    except OSError as e:
        logger.error("Failed to write report to %s: %s", output_dir, e)
        sys.exit(1)

    # 4. Deliver alerts
    if args.send_alerts:
        results = Alerter(config.alerts).send_report(report)
        failed = [channel for channel, success in results.items() if not success]
        if failed:
            logger.warning("Alert delivery failed for: %s", ", ".join(failed))

    # 5. Exit status follows overall health
    if report.all_healthy:
        logger.info("All checks healthy")
        sys.exit(0)

    logger.warning("Health checks failed: %s", report.headline)
    sys.exit(1)


def _cmd_test_alert(args: argparse.Namespace) -> None:
    """Execute the test-alert command - verify webhook and SMTP configuration."""
    from .config import load_config, ConfigError
    from .alerter import Alerter

    # 1. Load configuration
    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"Error: {e}")
        sys.exit(1)

    # 2. Check if any alert channel is configured
    if not config.alerts.webhooks and not config.alerts.smtp.enabled:
        print("Error: No webhooks or SMTP configured in alerts section")
        sys.exit(1)

    # 3. Create alerter and test channels
    alerter = Alerter(config.alerts)
    results = {}
    if config.alerts.webhooks:
        print(f"Testing {len(config.alerts.webhooks)} webhook(s)...\n")
        results.update(alerter.test_webhooks())
    if config.alerts.smtp.enabled:
        print("Testing SMTP...\n")
        results["smtp"] = alerter.test_smtp()

    # 4. Display results
    success_count = sum(1 for success in results.values() if success)
    total_count = len(results)

    for channel, success in results.items():
        status = "✓ SUCCESS" if success else "✗ FAILED"
        print(f"{status}: {channel}")

    print(f"\nResult: {success_count}/{total_count} alert channels successful")

    if success_count < total_count:
        sys.exit(1)


def _add_run_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    parser.add_argument("--ssl", action="store_true", help="Run SSL certificate checks")
    parser.add_argument("--uptime", action="store_true", help="Run uptime and latency checks")
    parser.add_argument("--links", action="store_true", help="Run broken link checks")
    parser.add_argument(
        "--output-dir",
        help="Directory for report files (overrides config)",
    )
    parser.add_argument(
        "--send-alerts",
        action="store_true",
        help="Deliver the report to configured webhooks and email",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (debug) logging",
    )


def main(argv: list[str] | None = None) -> None:
    """Main entry point for the sitesentry package."""
    parser = argparse.ArgumentParser(
        description="SiteSentry - TLS, uptime and broken-link health checks for websites"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"sitesentry {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command")

    # Run subcommand (default behavior)
    run_parser = subparsers.add_parser(
        "run",
        help="Run health checks once and write the report (default)",
    )
    _add_run_arguments(run_parser)
    run_parser.set_defaults(func=_cmd_run)

    # Test-alert subcommand
    test_alert_parser = subparsers.add_parser(
        "test-alert",
        help="Test webhook and SMTP alert configuration",
    )
    test_alert_parser.add_argument(
        "-c", "--config",
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)",
    )
    test_alert_parser.set_defaults(func=_cmd_test_alert)

    if argv is None:
        argv = sys.argv[1:]

    # Default to 'run' when no subcommand is given
    if not argv or argv[0] not in ("run", "test-alert", "-h", "--help", "--version"):
        argv = ["run", *argv]

    args = parser.parse_args(argv)
    args.func(args)
