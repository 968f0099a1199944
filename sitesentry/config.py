"""Configuration loader with type-safe dataclasses."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urljoin, urlparse
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml


class ConfigError(Exception):
    """Raised when configuration is invalid or cannot be loaded."""

    pass


# Check kinds, in the order the orchestrator runs them.
CHECK_KINDS = ("ssl", "uptime", "links")

REPORT_FORMATS = ("text", "html", "json")

DEFAULT_USER_AGENT = "SiteSentry/0.1"


@dataclass(frozen=True)
class PageConfig:
    """A page of a site, relative to the site's base URL."""

    path: str
    name: str

    def __post_init__(self) -> None:
        if not self.path:
            raise ConfigError("Page path cannot be empty")
        if not self.name:
            raise ConfigError(f"Page name cannot be empty for path '{self.path}'")


@dataclass(frozen=True)
class ChecksConfig:
    """Which checkers a site takes part in.

    Every check is on unless the site turns it off; a missing ``checks``
    section or a missing flag means enabled.
    """

    ssl: bool = True
    uptime: bool = True
    links: bool = True

    def enabled(self, kind: str) -> bool:
        if kind not in CHECK_KINDS:
            raise ConfigError(f"Unknown check kind '{kind}'. Must be one of: {CHECK_KINDS}")
        return bool(getattr(self, kind))


@dataclass(frozen=True)
class SiteConfig:
    """A monitored web property.

    Immutable for the duration of a run. Checkers resolve pages against
    ``url`` at check time via :meth:`page_url`.
    """

    id: str
    name: str
    url: str
    pages: tuple[PageConfig, ...] = ()
    checks: ChecksConfig = field(default_factory=ChecksConfig)

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigError("Site id cannot be empty")
        if not self.name:
            raise ConfigError(f"Site name cannot be empty for '{self.id}'")
        if not self.url:
            raise ConfigError(f"Site URL cannot be empty for '{self.id}'")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Site URL must start with http:// or https:// for '{self.id}'")

    def page_url(self, page: PageConfig) -> str:
        """Resolve a page path to an absolute URL."""
        return urljoin(self.url, page.path)


@dataclass(frozen=True)
class ThresholdsConfig:
    """Classification thresholds injected into the checkers."""

    ssl_expiry_warning_days: int = 30
    ssl_expiry_critical_days: int = 7
    latency_warning_ms: int = 2000
    latency_critical_ms: int = 5000

    def __post_init__(self) -> None:
        if self.ssl_expiry_critical_days < 0:
            raise ConfigError(
                f"ssl_expiry_critical_days must be non-negative (got {self.ssl_expiry_critical_days})"
            )
        if self.ssl_expiry_critical_days >= self.ssl_expiry_warning_days:
            raise ConfigError(
                "ssl_expiry_critical_days must be lower than ssl_expiry_warning_days "
                f"(got {self.ssl_expiry_critical_days} >= {self.ssl_expiry_warning_days})"
            )
        if self.latency_warning_ms < 1:
            raise ConfigError(f"latency_warning_ms must be at least 1 (got {self.latency_warning_ms})")
        if self.latency_critical_ms <= self.latency_warning_ms:
            raise ConfigError(
                "latency_critical_ms must be greater than latency_warning_ms "
                f"(got {self.latency_critical_ms} <= {self.latency_warning_ms})"
            )


@dataclass(frozen=True)
class EngineConfig:
    """Network and scheduling settings shared by all checkers."""

    timeout: int = 10  # seconds per network call
    max_workers: int = 1  # 1 keeps the fully sequential schedule
    check_external_links: bool = False
    max_crawl_depth: int = 1  # 1 = main page plus configured pages
    max_pages_per_site: int = 50
    deadline_seconds: int | None = None
    user_agent: str = DEFAULT_USER_AGENT

    def __post_init__(self) -> None:
        if self.timeout < 1:
            raise ConfigError(f"Engine timeout must be at least 1 second (got {self.timeout})")
        if self.max_workers < 1:
            raise ConfigError(f"Engine max_workers must be at least 1 (got {self.max_workers})")
        if self.max_crawl_depth < 1:
            raise ConfigError(f"Engine max_crawl_depth must be at least 1 (got {self.max_crawl_depth})")
        if self.max_pages_per_site < 1:
            raise ConfigError(f"Engine max_pages_per_site must be at least 1 (got {self.max_pages_per_site})")
        if self.deadline_seconds is not None and self.deadline_seconds < 1:
            raise ConfigError(f"Engine deadline_seconds must be at least 1 (got {self.deadline_seconds})")
        if not self.user_agent:
            raise ConfigError("Engine user_agent cannot be empty")


@dataclass(frozen=True)
class GithubConfig:
    """Where CI run logs live, for links in the report."""

    owner: str | None = None
    repo: str | None = None
    actions_url: str | None = None

    def resolve_actions_url(self) -> str | None:
        """Return the URL of the current Actions run, or the repo's Actions page.

        Uses ``GITHUB_RUN_ID`` when running inside GitHub Actions.
        """
        if not self.owner or not self.repo:
            return self.actions_url
        run_id = os.environ.get("GITHUB_RUN_ID")
        if run_id:
            return f"https://github.com/{self.owner}/{self.repo}/actions/runs/{run_id}"
        return self.actions_url or f"https://github.com/{self.owner}/{self.repo}/actions"


@dataclass(frozen=True)
class ReportConfig:
    """Configuration for rendered report files."""

    output_dir: str = "reports/output"
    timezone: str = "UTC"
    formats: tuple[str, ...] = REPORT_FORMATS
    github: GithubConfig = field(default_factory=GithubConfig)

    def __post_init__(self) -> None:
        if not self.output_dir:
            raise ConfigError("Report output_dir cannot be empty")
        unknown = [f for f in self.formats if f not in REPORT_FORMATS]
        if unknown:
            raise ConfigError(f"Unknown report format(s) {unknown}. Must be one of: {REPORT_FORMATS}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError):
            raise ConfigError(f"Unknown report timezone '{self.timezone}'")


@dataclass(frozen=True)
class WebhookConfig:
    """Configuration for a single webhook the report is posted to."""

    url: str
    enabled: bool = True
    on_failure: bool = True  # Post when the run is unhealthy
    on_success: bool = False  # Post when every check is healthy

    def __post_init__(self) -> None:
        if not self.url:
            raise ConfigError("Webhook URL cannot be empty")
        if not self.url.startswith(("http://", "https://")):
            raise ConfigError(f"Webhook URL must start with http:// or https://, got '{self.url}'")
        if not self.on_failure and not self.on_success:
            raise ConfigError("Webhook must have at least one of 'on_failure' or 'on_success' enabled")


@dataclass(frozen=True)
class SmtpConfig:
    """Configuration for emailing the report."""

    enabled: bool = False
    host: str = "smtp.gmail.com"
    port: int = 587
    username: str | None = None
    password: str | None = None
    use_tls: bool = True
    from_addr: str = ""
    to_addrs: tuple[str, ...] = ()
    backup_addrs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.enabled:
            if not self.host:
                raise ConfigError("SMTP host is required when SMTP is enabled")
            if not (1 <= self.port <= 65535):
                raise ConfigError(f"SMTP port must be between 1 and 65535, got {self.port}")
            if not self.from_addr:
                raise ConfigError("SMTP from_addr is required when SMTP is enabled")
            if not self.to_addrs:
                raise ConfigError("SMTP to_addrs must list at least one recipient")


@dataclass(frozen=True)
class AlertsConfig:
    """Configuration for alert mechanisms."""

    webhooks: list[WebhookConfig] = field(default_factory=list)
    smtp: SmtpConfig = field(default_factory=SmtpConfig)

    def __post_init__(self) -> None:
        if not isinstance(self.webhooks, list):
            raise ConfigError("Webhooks must be a list")


@dataclass(frozen=True)
class Config:
    """Main configuration container."""

    sites: list[SiteConfig]
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    alerts: AlertsConfig = field(default_factory=AlertsConfig)

    def __post_init__(self) -> None:
        if not self.sites:
            raise ConfigError("At least one site must be configured")
        ids = [site.id for site in self.sites]
        duplicates = [site_id for site_id in ids if ids.count(site_id) > 1]
        if duplicates:
            raise ConfigError(f"Duplicate site ids found: {set(duplicates)}")

    def sites_for(self, kind: str) -> list[SiteConfig]:
        """Return the sites with the given check kind enabled, in configured order."""
        return [site for site in self.sites if site.checks.enabled(kind)]


def _parse_page_config(data: dict, site_id: str, index: int) -> PageConfig:
    """Parse a single page entry of a site."""
    if not isinstance(data, dict):
        raise ConfigError(f"Page entry {index} of site '{site_id}' must be a dictionary")

    path = data.get("path")
    if path is None:
        raise ConfigError(f"Page entry {index} of site '{site_id}' is missing 'path' field")

    return PageConfig(path=str(path), name=str(data.get("name", path)))


def _parse_checks_config(data: dict | None, site_id: str) -> ChecksConfig:
    if data is None:
        return ChecksConfig()
    if not isinstance(data, dict):
        raise ConfigError(f"'checks' of site '{site_id}' must be a dictionary")

    unknown = set(data) - set(CHECK_KINDS)
    if unknown:
        raise ConfigError(f"Unknown check kind(s) {sorted(unknown)} for site '{site_id}'")

    return ChecksConfig(
        ssl=bool(data.get("ssl", True)),
        uptime=bool(data.get("uptime", True)),
        links=bool(data.get("links", True)),
    )


def _parse_site_config(data: dict, index: int) -> SiteConfig:
    """Parse a single site configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Site entry {index} must be a dictionary")

    site_id = data.get("id")
    url = data.get("url")

    if site_id is None:
        raise ConfigError(f"Site entry {index} is missing 'id' field")
    if url is None:
        raise ConfigError(f"Site entry {index} is missing 'url' field")

    site_id = str(site_id)
    pages_data = data.get("pages") or []
    if not isinstance(pages_data, list):
        raise ConfigError(f"'pages' of site '{site_id}' must be a list")

    site = SiteConfig(
        id=site_id,
        name=str(data.get("name", site_id)),
        url=str(url),
        pages=tuple(_parse_page_config(page, site_id, i) for i, page in enumerate(pages_data)),
        checks=_parse_checks_config(data.get("checks"), site_id),
    )

    try:
        if not urlparse(site.url).hostname:
            raise ConfigError(f"Site URL has no host for '{site_id}'")
        for page in site.pages:
            site.page_url(page)
    except ValueError as e:
        raise ConfigError(f"Invalid URL in site '{site_id}': {e}") from e

    return site


def _parse_thresholds_config(data: dict | None) -> ThresholdsConfig:
    """Parse thresholds configuration section."""
    if data is None:
        return ThresholdsConfig()
    if not isinstance(data, dict):
        raise ConfigError("'thresholds' section must be a dictionary")

    return ThresholdsConfig(
        ssl_expiry_warning_days=int(data.get("ssl_expiry_warning_days", 30)),
        ssl_expiry_critical_days=int(data.get("ssl_expiry_critical_days", 7)),
        latency_warning_ms=int(data.get("latency_warning_ms", 2000)),
        latency_critical_ms=int(data.get("latency_critical_ms", 5000)),
    )


def _parse_engine_config(data: dict | None) -> EngineConfig:
    """Parse engine configuration section."""
    if data is None:
        return EngineConfig()
    if not isinstance(data, dict):
        raise ConfigError("'engine' section must be a dictionary")

    deadline = data.get("deadline_seconds")

    return EngineConfig(
        timeout=int(data.get("timeout", 10)),
        max_workers=int(data.get("max_workers", 1)),
        check_external_links=bool(data.get("check_external_links", False)),
        max_crawl_depth=int(data.get("max_crawl_depth", 1)),
        max_pages_per_site=int(data.get("max_pages_per_site", 50)),
        deadline_seconds=int(deadline) if deadline is not None else None,
        user_agent=str(data.get("user_agent", DEFAULT_USER_AGENT)),
    )


def _parse_report_config(data: dict | None) -> ReportConfig:
    """Parse report configuration section."""
    if data is None:
        return ReportConfig()
    if not isinstance(data, dict):
        raise ConfigError("'report' section must be a dictionary")

    formats = data.get("formats", list(REPORT_FORMATS))
    if not isinstance(formats, list):
        raise ConfigError("'report.formats' must be a list")

    github_data = data.get("github") or {}
    if not isinstance(github_data, dict):
        raise ConfigError("'report.github' must be a dictionary")

    return ReportConfig(
        output_dir=str(data.get("output_dir", "reports/output")),
        timezone=str(data.get("timezone", "UTC")),
        formats=tuple(str(f) for f in formats),
        github=GithubConfig(
            owner=github_data.get("owner"),
            repo=github_data.get("repo"),
            actions_url=github_data.get("actions_url"),
        ),
    )


def _parse_webhook_config(data: dict, index: int) -> WebhookConfig:
    """Parse a single webhook configuration entry."""
    if not isinstance(data, dict):
        raise ConfigError(f"Webhook entry {index} must be a dictionary")

    url = data.get("url")
    if url is None:
        raise ConfigError(f"Webhook entry {index} is missing 'url' field")

    return WebhookConfig(
        url=str(url),
        enabled=bool(data.get("enabled", True)),
        on_failure=bool(data.get("on_failure", True)),
        on_success=bool(data.get("on_success", False)),
    )


def _as_address_tuple(value: object, name: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(addr.strip() for addr in value.split(",") if addr.strip())
    if isinstance(value, list):
        return tuple(str(addr) for addr in value)
    raise ConfigError(f"'alerts.smtp.{name}' must be a list or comma-separated string")


def _parse_smtp_config(data: dict | None) -> SmtpConfig:
    if data is None:
        return SmtpConfig()
    if not isinstance(data, dict):
        raise ConfigError("'alerts.smtp' section must be a dictionary")

    username = data.get("username")
    password = data.get("password")

    return SmtpConfig(
        enabled=bool(data.get("enabled", False)),
        host=str(data.get("host", "smtp.gmail.com")),
        port=int(data.get("port", 587)),
        username=str(username) if username is not None else None,
        password=str(password) if password is not None else None,
        use_tls=bool(data.get("use_tls", True)),
        from_addr=str(data.get("from_addr", username or "")),
        to_addrs=_as_address_tuple(data.get("to_addrs"), "to_addrs"),
        backup_addrs=_as_address_tuple(data.get("backup_addrs"), "backup_addrs"),
    )


def _parse_alerts_config(data: dict | None) -> AlertsConfig:
    """Parse alerts configuration section."""
    if data is None:
        return AlertsConfig()
    if not isinstance(data, dict):
        raise ConfigError("'alerts' section must be a dictionary")

    webhooks_data = data.get("webhooks", [])
    if not isinstance(webhooks_data, list):
        raise ConfigError("'alerts.webhooks' must be a list")

    webhooks = [_parse_webhook_config(webhook_data, i) for i, webhook_data in enumerate(webhooks_data)]

    return AlertsConfig(webhooks=webhooks, smtp=_parse_smtp_config(data.get("smtp")))


def _apply_env_overrides(config_data: dict) -> dict:
    """Apply environment variable overrides to configuration.

    Supported overrides:
    - SITESENTRY_TIMEOUT: Override engine.timeout
    - SITESENTRY_MAX_WORKERS: Override engine.max_workers
    - SITESENTRY_REPORT_DIR: Override report.output_dir
    - SITESENTRY_SMTP_HOST / SITESENTRY_SMTP_PORT: Override alerts.smtp.host / port
    - SITESENTRY_SMTP_USERNAME / SITESENTRY_SMTP_PASSWORD: Override SMTP credentials
    - SITESENTRY_ALERT_EMAIL: Override alerts.smtp.to_addrs (comma-separated)
    """
    for section in ("engine", "report", "alerts"):
        if config_data.get(section) is None:
            config_data[section] = {}
        elif not isinstance(config_data[section], dict):
            raise ConfigError(f"'{section}' section must be a dictionary")

    timeout = os.environ.get("SITESENTRY_TIMEOUT")
    if timeout is not None:
        config_data["engine"]["timeout"] = int(timeout)

    max_workers = os.environ.get("SITESENTRY_MAX_WORKERS")
    if max_workers is not None:
        config_data["engine"]["max_workers"] = int(max_workers)

    report_dir = os.environ.get("SITESENTRY_REPORT_DIR")
    if report_dir is not None:
        config_data["report"]["output_dir"] = report_dir

    smtp_overrides = {
        "host": os.environ.get("SITESENTRY_SMTP_HOST"),
        "port": os.environ.get("SITESENTRY_SMTP_PORT"),
        "username": os.environ.get("SITESENTRY_SMTP_USERNAME"),
        "password": os.environ.get("SITESENTRY_SMTP_PASSWORD"),
        "to_addrs": os.environ.get("SITESENTRY_ALERT_EMAIL"),
    }
    smtp_overrides = {key: value for key, value in smtp_overrides.items() if value is not None}
    if smtp_overrides:
        smtp = config_data["alerts"].get("smtp") or {}
        if not isinstance(smtp, dict):
            raise ConfigError("'alerts.smtp' section must be a dictionary")
        if "port" in smtp_overrides:
            smtp_overrides["port"] = int(smtp_overrides["port"])
        smtp.update(smtp_overrides)
        config_data["alerts"]["smtp"] = smtp

    return config_data


def load_config(config_path: str) -> Config:
    """Load and validate configuration from a YAML file.

    Args:
        config_path: Path to the YAML configuration file.

    Returns:
        Validated Config object.

    Raises:
        ConfigError: If the file cannot be read or configuration is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse YAML configuration: {e}")
    except OSError as e:
        raise ConfigError(f"Failed to read configuration file: {e}")

    if data is None:
        raise ConfigError("Configuration file is empty")

    if not isinstance(data, dict):
        raise ConfigError("Configuration must be a YAML dictionary")

    try:
        data = _apply_env_overrides(data)
    except ValueError as e:
        raise ConfigError(f"Invalid environment override: {e}")

    sites_data = data.get("sites")
    if sites_data is None:
        raise ConfigError("Configuration must contain a 'sites' section")
    if not isinstance(sites_data, list):
        raise ConfigError("'sites' must be a list")

    try:
        return Config(
            sites=[_parse_site_config(site_data, i) for i, site_data in enumerate(sites_data)],
            thresholds=_parse_thresholds_config(data.get("thresholds")),
            engine=_parse_engine_config(data.get("engine")),
            report=_parse_report_config(data.get("report")),
            alerts=_parse_alerts_config(data.get("alerts")),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")
