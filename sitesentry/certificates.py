"""TLS certificate inspection and expiry classification."""

import logging
import socket
import ssl
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from urllib.parse import urlparse

from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.x509.oid import NameOID

from .config import SiteConfig
from .models import CertificateResult, Status
from .scheduling import DEADLINE_EXCEEDED, Deadline, deadline_expired, run_ordered
from .transport import DEFAULT_TIMEOUT, describe_error

logger = logging.getLogger(__name__)

DEFAULT_WARNING_DAYS = 30
DEFAULT_CRITICAL_DAYS = 7

HTTPS_PORT = 443


@dataclass(frozen=True)
class PeerCertificate:
    """Fields read from a server's leaf certificate."""

    not_before: datetime
    not_after: datetime
    issuer: str | None
    subject: str | None
    fingerprint: str


@dataclass(frozen=True)
class Classification:
    status: Status
    days_remaining: int
    is_expired: bool
    not_yet_valid: bool

    @property
    def valid(self) -> bool:
        return not self.is_expired and not self.not_yet_valid


def _name_attribute(name: x509.Name, *oids: x509.ObjectIdentifier) -> str | None:
    for oid in oids:
        attributes = name.get_attributes_for_oid(oid)
        if attributes:
            return str(attributes[0].value)
    return None


def parse_certificate(der: bytes) -> PeerCertificate:
    """Parse a DER encoded certificate.

    Args:
        der: Certificate bytes as returned by ``getpeercert(binary_form=True)``.

    Returns:
        PeerCertificate with a UTC validity window.

    Raises:
        ValueError: If the bytes are not a valid certificate.
    """
    cert = x509.load_der_x509_certificate(der)
    digest = cert.fingerprint(hashes.SHA256()).hex().upper()
    return PeerCertificate(
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        issuer=_name_attribute(cert.issuer, NameOID.ORGANIZATION_NAME, NameOID.COMMON_NAME),
        subject=_name_attribute(cert.subject, NameOID.COMMON_NAME),
        fingerprint=":".join(digest[i : i + 2] for i in range(0, len(digest), 2)),
    )


def fetch_peer_certificate(hostname: str, port: int = HTTPS_PORT, timeout: float = DEFAULT_TIMEOUT) -> bytes:
    """Complete a TLS handshake and return the leaf certificate in DER form.

    Chain and hostname verification are disabled so that expired or
    otherwise untrusted certificates can still be read and classified.
    """
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE

    with socket.create_connection((hostname, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=hostname) as ssl_sock:
            der = ssl_sock.getpeercert(binary_form=True)

    if not der:
        raise ssl.SSLError("No certificate returned by server")
    return der


def classify_certificate(
    not_before: datetime,
    not_after: datetime,
    now: datetime,
    warning_days: int = DEFAULT_WARNING_DAYS,
    critical_days: int = DEFAULT_CRITICAL_DAYS,
) -> Classification:
    """Classify a validity window against the expiry thresholds.

    First match wins:

    1. expired or not yet valid -> critical
    2. ``days_remaining <= critical_days`` -> critical
    3. ``days_remaining <= warning_days`` -> warning
    4. otherwise -> ok

    ``days_remaining`` is floored, so a certificate expiring in 23 hours has
    0 days left and one that expired an hour ago has -1.
    """
    days_remaining = (not_after - now).days
    is_expired = now > not_after
    not_yet_valid = now < not_before

    if is_expired or not_yet_valid:
        status = Status.CRITICAL
    elif days_remaining <= critical_days:
        status = Status.CRITICAL
    elif days_remaining <= warning_days:
        status = Status.WARNING
    else:
        status = Status.OK

    return Classification(
        status=status,
        days_remaining=days_remaining,
        is_expired=is_expired,
        not_yet_valid=not_yet_valid,
    )


class CertificateInspector:
    """Inspects the TLS certificate of each site's base URL.

    Every call resolves to a CertificateResult; network and handshake
    failures become ``error`` results, never exceptions.

    Example:
        inspector = CertificateInspector(warning_days=30, critical_days=7)
        results = inspector.check_sites(sites)
    """

    def __init__(
        self,
        warning_days: int = DEFAULT_WARNING_DAYS,
        critical_days: int = DEFAULT_CRITICAL_DAYS,
        timeout: float = DEFAULT_TIMEOUT,
        max_workers: int = 1,
        deadline: Deadline | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the inspector.

        Args:
            warning_days: Days remaining at or below which a certificate is a warning.
            critical_days: Days remaining at or below which a certificate is critical.
                Callers must keep it below ``warning_days``.
            timeout: Seconds allowed for connect plus handshake.
            max_workers: Sites inspected concurrently; 1 is sequential.
            deadline: Optional run deadline.
            clock: Returns the current UTC time; injectable for tests.
        """
        self.warning_days = warning_days
        self.critical_days = critical_days
        self.timeout = timeout
        self.max_workers = max_workers
        self._deadline = deadline
        self._clock = clock or (lambda: datetime.now(UTC))

    def check_url(self, url: str, site_id: str = "", site_name: str = "") -> CertificateResult:
        """Inspect the certificate served for ``url``.

        The handshake goes to port 443 unless the URL names another port,
        in which case the certificate served on that port is inspected.
        Non-https URLs are an ``error`` result without any connection.
        """
        checked_at = self._clock()
        parsed = urlparse(url)

        def failure(message: str, hostname: str | None = None) -> CertificateResult:
            return CertificateResult(
                site_id=site_id,
                site_name=site_name,
                url=url,
                status=Status.ERROR,
                checked_at=checked_at,
                hostname=hostname,
                error=message,
            )

        if parsed.scheme != "https":
            return failure("Not HTTPS")

        try:
            hostname = parsed.hostname
            port = parsed.port or HTTPS_PORT
        except ValueError as e:
            return failure(f"Invalid URL: {e}")

        if not hostname:
            return failure("Invalid URL: no hostname")

        if deadline_expired(self._deadline):
            return failure(DEADLINE_EXCEEDED, hostname)

        try:
            der = fetch_peer_certificate(hostname, port, self.timeout)
            cert = parse_certificate(der)
        except Exception as e:
            logger.debug("Certificate check failed for %s (%s): %s", hostname, type(e).__name__, e)
            return failure(describe_error(e), hostname)

        now = self._clock()
        classification = classify_certificate(
            cert.not_before,
            cert.not_after,
            now,
            warning_days=self.warning_days,
            critical_days=self.critical_days,
        )

        if classification.is_expired:
            logger.warning("%s: certificate expired %d days ago", hostname, -classification.days_remaining)
        elif classification.not_yet_valid:
            logger.warning("%s: certificate not valid before %s", hostname, cert.not_before.isoformat())
        elif classification.status is not Status.OK:
            logger.warning(
                "%s: certificate expires in %d days (threshold: %d)",
                hostname,
                classification.days_remaining,
                self.warning_days,
            )

        return CertificateResult(
            site_id=site_id,
            site_name=site_name,
            url=url,
            status=classification.status,
            checked_at=checked_at,
            hostname=hostname,
            valid=classification.valid,
            not_before=cert.not_before,
            not_after=cert.not_after,
            days_remaining=classification.days_remaining,
            is_expired=classification.is_expired,
            not_yet_valid=classification.not_yet_valid,
            issuer=cert.issuer,
            subject=cert.subject,
            fingerprint=cert.fingerprint,
        )

    def check_site(self, site: SiteConfig) -> CertificateResult:
        """Inspect one site; unexpected failures become an ``error`` result."""
        logger.info("Checking SSL: %s", site.name)
        try:
            return self.check_url(site.url, site_id=site.id, site_name=site.name)
        except Exception as e:
            logger.error("SSL check for %s failed unexpectedly: %s", site.name, e)
            return CertificateResult(
                site_id=site.id,
                site_name=site.name,
                url=site.url,
                status=Status.ERROR,
                checked_at=self._clock(),
                error=str(e) or type(e).__name__,
            )

    def check_sites(self, sites: Sequence[SiteConfig]) -> list[CertificateResult]:
        """Inspect every site; results follow input order."""
        return run_ordered(self.check_site, sites, self.max_workers)
