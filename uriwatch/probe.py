"""Single HTTP probe of the target URI."""

import logging
import re
import time

import requests

from . import __version__
from .models import NO_STATUS, ProbeResult, utc_iso

logger = logging.getLogger(__name__)

USER_AGENT = f"uriwatch/{__version__}"

# Transport exit codes, numbered like curl's so logs stay comparable
# with history recorded by curl-based probes.
EXIT_OK = 0
EXIT_FAILED = 1
EXIT_MALFORMED_URL = 3
EXIT_DNS_FAILURE = 6
EXIT_CONNECT_FAILURE = 7
EXIT_TIMEOUT = 28
EXIT_TLS_FAILURE = 35

_DNS_MARKERS = (
    "NameResolutionError",
    "Name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "Temporary failure in name resolution",
    "No address associated with hostname",
)


def _clean_message(message: str) -> str:
    """Collapse whitespace (including newlines) into single spaces."""
    return re.sub(r"\s+", " ", message).strip()


def _classify_exception(exc: Exception, timeout: float) -> tuple[int, str]:
    """Map a transport exception to (exit_code, error_message)."""
    if isinstance(exc, requests.Timeout):
        return EXIT_TIMEOUT, f"timeout after {timeout:g}s: {exc}"
    if isinstance(exc, requests.exceptions.SSLError):
        return EXIT_TLS_FAILURE, f"TLS failure: {exc}"
    if isinstance(exc, requests.ConnectionError):
        text = str(exc)
        if any(marker in text for marker in _DNS_MARKERS):
            return EXIT_DNS_FAILURE, f"DNS resolution failed: {text}"
        return EXIT_CONNECT_FAILURE, f"connection failed: {text}"
    if isinstance(exc, (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                        requests.exceptions.InvalidSchema)):
        return EXIT_MALFORMED_URL, f"malformed URL: {exc}"
    return EXIT_FAILED, f"probe failed: {str(exc) or type(exc).__name__}"


def probe_uri(
    uri: str,
    timeout: float,
    headers: dict[str, str] | None = None,
) -> ProbeResult:
    """Perform one HTTP GET against the target and classify the outcome.

    Redirects are not followed, so a 3xx response counts as success. The call
    never raises: timeouts, DNS and connection failures become a failed
    ProbeResult with http_status NO_STATUS and a non-zero transport_exit_code.

    Args:
        uri: Target URI.
        timeout: Per-attempt timeout in seconds.
        headers: Extra request headers; may override the default User-Agent.

    Returns:
        ProbeResult for this attempt.
    """
    request_headers = {"User-Agent": USER_AGENT}
    if headers:
        request_headers.update(headers)

    started_at = int(time.time())
    start = time.monotonic()
    try:
        response = requests.get(uri, headers=request_headers, timeout=timeout, allow_redirects=False)
        try:
            # Consume the body so latency covers the full transfer
            _ = response.content
        finally:
            response.close()
    except Exception as e:
        elapsed_ms = round((time.monotonic() - start) * 1000, 3)
        exit_code, message = _classify_exception(e, timeout)
        logger.debug("Probe of %s failed (exit %d): %s", uri, exit_code, message)
        return ProbeResult(
            started_at=started_at,
            started_iso=utc_iso(started_at),
            http_status=NO_STATUS,
            latency_ms=elapsed_ms,
            success=False,
            transport_exit_code=exit_code,
            error_message=_clean_message(message),
        )

    elapsed_ms = round((time.monotonic() - start) * 1000, 3)
    status = response.status_code
    success = status < 400

    return ProbeResult(
        started_at=started_at,
        started_iso=utc_iso(started_at),
        http_status=status,
        latency_ms=elapsed_ms,
        success=success,
        transport_exit_code=EXIT_OK,
        error_message="" if success else f"http_status_{status}",
    )
