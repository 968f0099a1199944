"""Tests for the runner module and the command line interface."""

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import patch

import pytest

from sitesentry import __version__, main
from sitesentry.config import ChecksConfig, Config, EngineConfig, SiteConfig, ThresholdsConfig
from sitesentry.models import (
    AvailabilitySummary,
    CertificateResult,
    CertificateSummary,
    HealthReport,
    LinkSummary,
    SiteProbeResult,
    Status,
)
from sitesentry.runner import build_checkers, run_health_checks

NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=UTC)


def _probe_result(site: SiteConfig, status: Status = Status.OK) -> SiteProbeResult:
    return SiteProbeResult(
        site_id=site.id,
        site_name=site.name,
        url=site.url,
        pages=(),
        overall_status=status,
        avg_response_time_ms=100,
        checked_at=NOW,
    )


def _cert_result(site: SiteConfig) -> CertificateResult:
    return CertificateResult(
        site_id=site.id,
        site_name=site.name,
        url=site.url,
        status=Status.OK,
        checked_at=NOW,
        valid=True,
        days_remaining=90,
    )


@pytest.fixture
def config() -> Config:
    """Two sites; the second opts out of SSL and link checks."""
    return Config(
        sites=[
            SiteConfig(id="a", name="A", url="https://a.example.com"),
            SiteConfig(id="b", name="B", url="http://b.example.com", checks=ChecksConfig(ssl=False, links=False)),
        ],
        thresholds=ThresholdsConfig(ssl_expiry_warning_days=21, ssl_expiry_critical_days=3),
        engine=EngineConfig(timeout=4, max_workers=2, max_crawl_depth=2),
    )


class TestBuildCheckers:
    """Tests for build_checkers function."""

    def test_thresholds_and_engine_settings_are_injected(self, config: Config) -> None:
        """Checkers receive thresholds and engine settings from the config."""
        checkers = build_checkers(config)

        assert checkers["ssl"].warning_days == 21
        assert checkers["ssl"].critical_days == 3
        assert checkers["ssl"].timeout == 4
        assert checkers["uptime"].warning_ms == 2000
        assert checkers["uptime"].max_workers == 2
        assert checkers["links"].max_depth == 2
        assert checkers["links"].check_external is False


class TestRunHealthChecks:
    """Tests for run_health_checks function."""

    def test_each_checker_gets_its_enabled_sites(self, config: Config) -> None:
        """Sites are filtered per check kind before reaching a checker."""
        with (
            patch("sitesentry.runner.CertificateInspector.check_sites", autospec=True) as mock_ssl,
            patch("sitesentry.runner.AvailabilityProbe.check_sites", autospec=True) as mock_uptime,
            patch("sitesentry.runner.LinkCrawler.check_sites", autospec=True) as mock_links,
        ):
            mock_ssl.side_effect = lambda self, sites: [_cert_result(s) for s in sites]
            mock_uptime.side_effect = lambda self, sites: [_probe_result(s) for s in sites]
            mock_links.side_effect = lambda self, sites: []
            report = run_health_checks(config, clock=lambda: NOW)

        assert [s.id for s in mock_ssl.call_args[0][1]] == ["a"]
        assert [s.id for s in mock_uptime.call_args[0][1]] == ["a", "b"]
        assert [s.id for s in mock_links.call_args[0][1]] == ["a"]
        assert isinstance(report.ssl, CertificateSummary)
        assert [r.site_id for r in report.uptime.details] == ["a", "b"]
        assert report.all_healthy is True
        assert report.started_at == NOW

    def test_only_requested_kinds_run(self, config: Config) -> None:
        """Kinds not requested produce no summary."""
        with patch("sitesentry.runner.AvailabilityProbe.check_sites", autospec=True) as mock_uptime:
            mock_uptime.side_effect = lambda self, sites: [_probe_result(s, Status.DOWN) for s in sites]
            report = run_health_checks(config, kinds=["uptime"])

        assert report.ssl is None
        assert report.links is None
        assert isinstance(report.uptime, AvailabilitySummary)
        assert report.all_healthy is False

    def test_kind_with_no_enabled_sites_is_empty_and_healthy(self) -> None:
        """No enabled site yields an empty summary without calling the checker."""
        config = Config(sites=[SiteConfig(id="a", name="A", url="https://a.example.com", checks=ChecksConfig(links=False))])
        with patch("sitesentry.runner.LinkCrawler.check_sites") as mock_links:
            report = run_health_checks(config, kinds=["links"])

        mock_links.assert_not_called()
        assert report.links == LinkSummary(details=())
        assert report.all_healthy is True

    def test_rejects_unknown_kind(self, config: Config) -> None:
        """Unknown check kinds raise ValueError."""
        with pytest.raises(ValueError, match="Unknown check kind"):
            run_health_checks(config, kinds=["dns"])

    def test_deadline_is_shared_by_checkers(self) -> None:
        """A configured deadline is handed to every checker."""
        config = Config(
            sites=[SiteConfig(id="a", name="A", url="https://a.example.com")],
            engine=EngineConfig(deadline_seconds=60),
        )
        with patch("sitesentry.runner.build_checkers", wraps=build_checkers) as mock_build:
            with (
                patch("sitesentry.runner.CertificateInspector.check_sites", return_value=[]),
                patch("sitesentry.runner.AvailabilityProbe.check_sites", return_value=[]),
                patch("sitesentry.runner.LinkCrawler.check_sites", return_value=[]),
            ):
                run_health_checks(config)

        deadline = mock_build.call_args[0][1]
        assert deadline is not None
        assert 0 < deadline.remaining() <= 60


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Write a minimal configuration file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        f"""sites:
  - id: main
    name: Main
    url: https://example.com
report:
  output_dir: {tmp_path / "reports"}
"""
    )
    return path


def _health(status: Status) -> HealthReport:
    site = SiteConfig(id="main", name="Main", url="https://example.com")
    return HealthReport(uptime=AvailabilitySummary(details=(_probe_result(site, status),)))


class TestCli:
    """Tests for the sitesentry command."""

    def test_healthy_run_exits_zero(self, config_file: Path, tmp_path: Path, capsys) -> None:
        """A healthy run prints the report, writes files and exits 0."""
        with patch("sitesentry.runner.run_health_checks", return_value=_health(Status.OK)) as mock_run:
            with pytest.raises(SystemExit) as exc_info:
                main(["run", "-c", str(config_file)])

        assert exc_info.value.code == 0
        assert mock_run.call_args[0][1] == ("ssl", "uptime", "links")
        assert "SiteSentry Health Report" in capsys.readouterr().out
        assert len(list((tmp_path / "reports").iterdir())) == 3

    def test_unhealthy_run_exits_one(self, config_file: Path) -> None:
        """Any unhealthy summary makes the process exit 1."""
        with patch("sitesentry.runner.run_health_checks", return_value=_health(Status.DOWN)):
            with pytest.raises(SystemExit) as exc_info:
                main(["run", "-c", str(config_file)])

        assert exc_info.value.code == 1

    def test_run_is_the_default_command(self, config_file: Path, tmp_path: Path) -> None:
        """Options without a subcommand run the checks."""
        with patch("sitesentry.runner.run_health_checks", return_value=_health(Status.OK)) as mock_run:
            with pytest.raises(SystemExit):
                main(["-c", str(config_file), "--uptime", "--links", "--output-dir", str(tmp_path / "alt")])

        assert mock_run.call_args[0][1] == ("uptime", "links")
        assert (tmp_path / "alt").is_dir()

    def test_send_alerts(self, config_file: Path) -> None:
        """--send-alerts delivers the report."""
        with (
            patch("sitesentry.runner.run_health_checks", return_value=_health(Status.DOWN)),
            patch("sitesentry.alerter.Alerter.send_report", return_value={}) as mock_send,
        ):
            with pytest.raises(SystemExit):
                main(["run", "-c", str(config_file), "--send-alerts"])

        mock_send.assert_called_once()

    def test_invalid_config_exits_one(self, tmp_path: Path) -> None:
        """Configuration errors exit 1 before any check runs."""
        with patch("sitesentry.runner.run_health_checks") as mock_run:
            with pytest.raises(SystemExit) as exc_info:
                main(["run", "-c", str(tmp_path / "missing.yaml")])

        assert exc_info.value.code == 1
        mock_run.assert_not_called()

    def test_version(self, capsys) -> None:
        """--version prints the version."""
        with pytest.raises(SystemExit) as exc_info:
            main(["--version"])

        assert exc_info.value.code == 0
        assert __version__ in capsys.readouterr().out

    def test_test_alert_without_channels_fails(self, config_file: Path, capsys) -> None:
        """test-alert exits 1 when nothing is configured."""
        with pytest.raises(SystemExit) as exc_info:
            main(["test-alert", "-c", str(config_file)])

        assert exc_info.value.code == 1
        assert "No webhooks or SMTP configured" in capsys.readouterr().out

    def test_test_alert_reports_results(self, tmp_path: Path, capsys) -> None:
        """test-alert tests every webhook and prints the outcome."""
        path = tmp_path / "config.yaml"
        path.write_text(
            """sites:
  - id: main
    url: https://example.com
alerts:
  webhooks:
    - url: https://hooks.example.com/a
"""
        )
        with patch("sitesentry.alerter.Alerter.test_webhooks", return_value={"https://hooks.example.com/a": True}):
            main(["test-alert", "-c", str(path)])

        out = capsys.readouterr().out
        assert "✓ SUCCESS: https://hooks.example.com/a" in out
        assert "1/1 alert channels successful" in out
