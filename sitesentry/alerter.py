"""Deliver health reports by webhook and email."""

import logging
import smtplib
import time
from datetime import UTC, datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import requests

from .config import AlertsConfig, SmtpConfig, WebhookConfig
from .report import Report, format_html, format_text

logger = logging.getLogger(__name__)

SMTPS_PORT = 465


class Alerter:
    """Delivers a finished report to the configured webhooks and mailbox."""

    def __init__(self, config: AlertsConfig, max_retries: int = 3, retry_delay: int = 2):
        """Initialize alerter with configuration.

        Args:
            config: Alerts configuration with webhooks and SMTP settings
            max_retries: Maximum number of retry attempts for failed deliveries
            retry_delay: Base delay in seconds between retries (increases exponentially)
        """
        self._config = config
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    def send_report(self, report: Report) -> dict[str, bool]:
        """Deliver a report to every matching channel.

        Webhooks receive the report when it matches their ``on_failure`` /
        ``on_success`` setting. Email is sent whenever SMTP is enabled;
        reports with critical issues also go to the backup addresses.

        Args:
            report: The report to deliver

        Returns:
            Dictionary mapping each attempted channel (webhook URL or
            ``"smtp"``) to whether delivery succeeded
        """
        results: dict[str, bool] = {}

        for webhook in self._config.webhooks:
            if not webhook.enabled:
                continue
            if report.all_healthy and not webhook.on_success:
                continue
            if not report.all_healthy and not webhook.on_failure:
                continue
            results[webhook.url] = self._send_webhook(webhook, self._build_payload(report))

        smtp = self._config.smtp
        if smtp.enabled:
            recipients = list(smtp.to_addrs)
            if report.critical_issues:
                recipients.extend(addr for addr in smtp.backup_addrs if addr not in recipients)
            results["smtp"] = self._send_email(smtp, self._build_message(smtp, report, recipients), recipients)

        if not results:
            logger.debug("No alert channel matched this report")
        return results

    def _build_payload(self, report: Report) -> dict:
        """Build the webhook payload.

        Args:
            report: The report being delivered

        Returns:
            The webhook payload dictionary
        """
        event = "health_ok" if report.all_healthy else "health_failed"
        return {
            "event": event,
            "status": report.headline,
            "timestamp": report.generated_at.isoformat(),
            "all_healthy": report.all_healthy,
            "checks": {kind: summary.all_healthy for kind, summary in report.health.summaries.items()},
            "critical_issues": list(report.critical_issues),
            "warnings": list(report.warnings),
            "actions": list(report.actions),
            "actions_url": report.actions_url,
        }

    def _send_webhook(self, webhook: WebhookConfig, payload: dict) -> bool:
        """Send a webhook (with retries).

        Args:
            webhook: The webhook configuration
            payload: JSON payload to post

        Returns:
            True if the webhook accepted the payload
        """
        retry_count = 0

        while retry_count <= self._max_retries:
            try:
                response = requests.post(
                    webhook.url,
                    json=payload,
                    timeout=10,
                )
                response.raise_for_status()

                logger.info("Webhook sent successfully to %s", webhook.url)
                return True

            except requests.RequestException as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Webhook failed for %s (attempt %d/%d, retrying in %ds): %s",
                        webhook.url,
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error(
                        "Webhook failed for %s after %d attempts: %s",
                        webhook.url,
                        retry_count,
                        e,
                    )

        return False

    def _build_message(self, smtp_config: SmtpConfig, report: Report, recipients: list[str]) -> MIMEMultipart:
        icon, status = report.status_parts
        msg = MIMEMultipart("alternative")
        msg["Subject"] = f"{icon} SiteSentry Report - {status} - {report.timestamp}"
        msg["From"] = smtp_config.from_addr
        msg["To"] = ", ".join(recipients)

        msg.attach(MIMEText(format_text(report), "plain", "utf-8"))
        msg.attach(MIMEText(format_html(report), "html", "utf-8"))
        return msg

    def _connect(self, smtp_config: SmtpConfig) -> smtplib.SMTP:
        if smtp_config.port == SMTPS_PORT:
            server = smtplib.SMTP_SSL(smtp_config.host, smtp_config.port, timeout=30)
        else:
            server = smtplib.SMTP(smtp_config.host, smtp_config.port, timeout=30)
            if smtp_config.use_tls:
                server.starttls()

        if smtp_config.username and smtp_config.password:
            server.login(smtp_config.username, smtp_config.password)
        return server

    def _send_email(self, smtp_config: SmtpConfig, msg: MIMEMultipart, recipients: list[str]) -> bool:
        """Send an email (with retries).

        Args:
            smtp_config: SMTP configuration
            msg: Message to send
            recipients: Envelope recipients

        Returns:
            True if the message was handed to the SMTP server
        """
        retry_count = 0
        while retry_count <= self._max_retries:
            try:
                server = self._connect(smtp_config)
                server.sendmail(smtp_config.from_addr, recipients, msg.as_string())
                server.quit()

                logger.info("Report email sent successfully to %s", ", ".join(recipients))
                return True

            except (smtplib.SMTPException, OSError) as e:
                retry_count += 1
                if retry_count <= self._max_retries:
                    delay = self._retry_delay * (2 ** (retry_count - 1))
                    logger.warning(
                        "Report email failed (attempt %d/%d, retrying in %ds): %s",
                        retry_count,
                        self._max_retries + 1,
                        delay,
                        e,
                    )
                    time.sleep(delay)
                else:
                    logger.error("Report email failed after %d attempts: %s", retry_count, e)

        return False

    def test_webhooks(self) -> dict[str, bool]:
        """Test all configured webhooks by sending a test payload.

        Returns:
            Dictionary mapping webhook URLs to success status
        """
        results = {}

        for webhook in self._config.webhooks:
            if not webhook.enabled:
                results[webhook.url] = False
                continue

            test_payload = {
                "event": "test",
                "status": "✅ All Systems OK",
                "timestamp": datetime.now(UTC).isoformat(),
                "all_healthy": True,
                "checks": {},
                "critical_issues": [],
                "warnings": [],
                "actions": [],
                "actions_url": None,
            }

            try:
                response = requests.post(
                    webhook.url,
                    json=test_payload,
                    timeout=10,
                )
                response.raise_for_status()
                results[webhook.url] = True
                logger.info("Test webhook sent successfully to %s", webhook.url)

            except requests.RequestException as e:
                results[webhook.url] = False
                logger.error("Test webhook failed for %s: %s", webhook.url, e)

        return results

    def test_smtp(self) -> bool:
        """Test SMTP configuration by sending a test email.

        Returns:
            True if test email was sent successfully, False otherwise
        """
        smtp_config = self._config.smtp
        if not smtp_config.enabled:
            logger.warning("SMTP is not configured or not enabled")
            return False

        msg = MIMEMultipart("alternative")
        msg["Subject"] = "✅ SiteSentry SMTP Test"
        msg["From"] = smtp_config.from_addr
        msg["To"] = ", ".join(smtp_config.to_addrs)

        body_text = "This is a test email from SiteSentry. If you received this, your SMTP configuration is working."
        body_html = f"""<!DOCTYPE html>
<html>
<body style="font-family: sans-serif; padding: 20px;">
    <div style="background-color: #28a745; color: white; padding: 20px; border-radius: 8px; text-align: center;">
        <h1>✅ SMTP Test Successful</h1>
    </div>
    <p style="margin-top: 20px;">{body_text}</p>
</body>
</html>"""

        msg.attach(MIMEText(body_text, "plain", "utf-8"))
        msg.attach(MIMEText(body_html, "html", "utf-8"))

        try:
            server = self._connect(smtp_config)
            server.sendmail(smtp_config.from_addr, list(smtp_config.to_addrs), msg.as_string())
            server.quit()

            logger.info("Test email sent successfully to %s", ", ".join(smtp_config.to_addrs))
            return True

        except (smtplib.SMTPException, OSError) as e:
            logger.error("Test email failed: %s", e)
            return False
