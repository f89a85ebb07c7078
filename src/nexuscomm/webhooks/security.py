"""URL validation for webhook endpoints.

Rejects malformed targets and, unless private URLs are allowed, targets that
point back into the platform's own network.

Security Controls:
    - http/https schemes only, hostname required
    - Blocked hostnames (localhost, cloud metadata names)
    - Private, loopback, link-local and reserved IP literals
    - DNS resolution (on by default) so hostnames resolving to private
      ranges are caught as well
"""

from __future__ import annotations

import ipaddress
import logging
import socket
from dataclasses import dataclass, field
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

__all__ = [
    "URLValidationError",
    "ValidatedURL",
    "WebhookURLValidator",
]


class URLValidationError(Exception):
    """Raised when URL validation fails."""

    def __init__(self, reason: str, code: str = "invalid_url") -> None:
        self.reason = reason
        self.code = code
        super().__init__(reason)

    @property
    def blocked(self) -> bool:
        """True when the URL is well-formed but refused for security reasons."""
        return self.code.endswith("_blocked")


@dataclass
class ValidatedURL:
    """Result of URL validation.

    Attributes:
        url: The validated URL
        host: Extracted hostname
        resolved_ips: IP addresses checked (empty when DNS is not resolved)
    """

    url: str
    host: str
    resolved_ips: list[str] = field(default_factory=list)


# Cloud metadata endpoints to block
METADATA_IPS = [
    "169.254.169.254",  # AWS, GCP, Azure
    "fd00:ec2::254",  # AWS IPv6
]

# Dangerous hostnames
BLOCKED_HOSTNAMES = [
    "localhost",
    "localhost.localdomain",
    "metadata.google.internal",
    "metadata",
    "kubernetes.default.svc",
]

# Any name under these suffixes is loopback by convention
BLOCKED_SUFFIXES = (".localhost",)


class WebhookURLValidator:
    """Validates endpoint URLs before they are stored.

    Example:
        >>> validator = WebhookURLValidator()
        >>> validator.validate("https://crm.example.com/hook").host
        'crm.example.com'

        >>> validator.validate("https://192.168.1.1/hook")
        URLValidationError: Private IP addresses are not allowed: 192.168.1.1
    """

    def __init__(
        self,
        allow_private: bool = False,
        resolve_dns: bool = True,
        dns_timeout: float = 5.0,
    ) -> None:
        """Initialize URL validator.

        Args:
            allow_private: Allow localhost and private targets (development only)
            resolve_dns: Resolve hostnames and check every resolved address.
                Disable only where names cannot be resolved (offline tests)
            dns_timeout: Timeout for DNS resolution in seconds
        """
        self.allow_private = allow_private
        self.resolve_dns = resolve_dns
        self.dns_timeout = dns_timeout

    def validate(self, url: str) -> ValidatedURL:
        """Validate an endpoint URL.

        Args:
            url: The URL to validate

        Returns:
            ValidatedURL with the extracted host

        Raises:
            URLValidationError: If URL fails validation
        """
        if not url or not url.strip():
            raise URLValidationError("URL is required", code="url_required")

        try:
            parsed = urlparse(url.strip())
        except ValueError as e:
            raise URLValidationError(f"Invalid URL format: {e}") from e

        if parsed.scheme not in ("http", "https"):
            raise URLValidationError(
                f"Invalid scheme: {parsed.scheme or '(none)'}",
                code="invalid_scheme",
            )

        if not parsed.hostname:
            raise URLValidationError("URL must include a hostname")

        # "localhost." and "localhost" name the same host
        hostname = parsed.hostname.lower().rstrip(".")
        if not hostname:
            raise URLValidationError("URL must include a hostname")

        if self.allow_private:
            return ValidatedURL(url=url, host=hostname)

        if hostname in BLOCKED_HOSTNAMES or hostname.endswith(BLOCKED_SUFFIXES):
            raise URLValidationError(
                f"Hostname not allowed: {hostname}",
                code="hostname_blocked",
            )

        resolved_ips = self._resolve_host(hostname)
        for ip_str in resolved_ips:
            self._validate_ip(ip_str)

        return ValidatedURL(url=url, host=hostname, resolved_ips=resolved_ips)

    def _resolve_host(self, hostname: str) -> list[str]:
        """Return the addresses to check for a hostname.

        IP literals are returned as-is. Names are only resolved when
        `resolve_dns` is enabled.
        """
        try:
            ip = ipaddress.ip_address(hostname)
            return [str(ip)]
        except ValueError:
            pass

        if not self.resolve_dns:
            return []

        previous_timeout = socket.getdefaulttimeout()
        try:
            socket.setdefaulttimeout(self.dns_timeout)
            results = socket.getaddrinfo(
                hostname, None, socket.AF_UNSPEC, socket.SOCK_STREAM
            )
        except socket.gaierror as e:
            raise URLValidationError(
                f"DNS resolution failed for {hostname}: {e}",
                code="dns_resolution_failed",
            ) from e
        finally:
            socket.setdefaulttimeout(previous_timeout)

        ips: list[str] = []
        for result in results:
            addr = result[4][0]
            if isinstance(addr, str) and addr not in ips:
                ips.append(addr)
        return ips

    def _validate_ip(self, ip_str: str) -> None:
        """Reject loopback, private, link-local and reserved addresses."""
        ip = ipaddress.ip_address(ip_str)

        if ip_str in METADATA_IPS:
            raise URLValidationError(
                "Cloud metadata endpoints are blocked",
                code="metadata_blocked",
            )

        if ip.is_loopback:
            raise URLValidationError(
                "Localhost addresses are not allowed",
                code="localhost_blocked",
            )

        if ip.is_link_local:
            raise URLValidationError(
                f"Link-local addresses are not allowed: {ip_str}",
                code="link_local_blocked",
            )

        if ip.is_private:
            raise URLValidationError(
                f"Private IP addresses are not allowed: {ip_str}",
                code="private_ip_blocked",
            )

        if ip.is_reserved:
            raise URLValidationError(
                f"Reserved IP addresses are not allowed: {ip_str}",
                code="reserved_ip_blocked",
            )
