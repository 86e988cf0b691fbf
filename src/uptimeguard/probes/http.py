"""
HTTP and keyword probes.
"""
import asyncio
import logging
import ssl
import time
from datetime import datetime, timezone
from typing import Optional

import httpx

from uptimeguard.clock import Clock, SystemClock
from uptimeguard.errors import (
    AssertionMismatch,
    ConnectionFailure,
    ProbeTimeout,
    TlsError,
)
from uptimeguard.probes.base import Probe, ProbeResult, elapsed_ms, parse_host_port
from uptimeguard.schemas import AuthType, Monitor, MonitorType, SslInfo

logger = logging.getLogger("uptimeguard.probes.http")

# Headroom kept between the certificate fetch and the attempt's hard timeout.
CERTIFICATE_MARGIN = 0.25  # seconds


def _is_tls_failure(exc: BaseException) -> bool:
    seen = exc
    while seen is not None:
        if isinstance(seen, ssl.SSLError):
            return True
        seen = seen.__cause__ or seen.__context__
    return "CERTIFICATE_VERIFY_FAILED" in str(exc)


def _name_field(fields, *keys: str) -> Optional[str]:
    values: dict[str, str] = {}
    for rdn in fields or ():
        for item in rdn:
            if isinstance(item, tuple) and len(item) == 2:
                values[str(item[0])] = str(item[1])
    for key in keys:
        if values.get(key):
            return values[key]
    return None


async def fetch_certificate(url: str, timeout: float, now: datetime) -> Optional[SslInfo]:
    """Read the peer certificate of an https URL over a separate TLS connection."""
    host, port = parse_host_port(url, default_port=443)
    context = ssl.create_default_context()
    reader, writer = await asyncio.wait_for(
        asyncio.open_connection(host, port, ssl=context, server_hostname=host),
        timeout=timeout,
    )
    try:
        cert = writer.get_extra_info("peercert")
    finally:
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass  # peer may drop the TLS session first

    if not cert or "notAfter" not in cert or "notBefore" not in cert:
        return None

    valid_from = datetime.fromtimestamp(ssl.cert_time_to_seconds(cert["notBefore"]), tz=timezone.utc)
    valid_to = datetime.fromtimestamp(ssl.cert_time_to_seconds(cert["notAfter"]), tz=timezone.utc)
    issuer = _name_field(cert.get("issuer"), "organizationName", "commonName") or "unknown"
    return SslInfo(
        valid_from=valid_from,
        valid_to=valid_to,
        issuer=issuer,
        days_remaining=(valid_to - now).days,
    )


class HttpProbe(Probe):
    """Issues the configured request; KEYWORD monitors also assert on the body."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()

    async def check(self, monitor: Monitor) -> ProbeResult:
        attempt_start = time.monotonic()
        settings = monitor.advanced_settings
        headers = dict(settings.headers)
        auth = None
        if settings.auth is not None:
            if settings.auth.type == AuthType.BASIC:
                auth = httpx.BasicAuth(settings.auth.username or "", settings.auth.password or "")
            elif settings.auth.type == AuthType.BEARER:
                headers.setdefault("Authorization", f"Bearer {settings.auth.token or ''}")
            else:
                raise ConnectionFailure(f"{settings.auth.type.value} authentication is not supported")

        try:
            async with httpx.AsyncClient(
                follow_redirects=settings.follow_redirects,
                timeout=httpx.Timeout(monitor.timeout),
                verify=not settings.accept_invalid_certs,
                proxy=settings.proxy.url if settings.proxy else None,
            ) as client:
                start = time.monotonic()
                response = await client.request(
                    monitor.method.value,
                    monitor.url,
                    headers=headers,
                    content=settings.body,
                    auth=auth,
                )
                response_time = elapsed_ms(start)
                body = response.text if monitor.type == MonitorType.KEYWORD else ""
        except httpx.TimeoutException:
            raise ProbeTimeout(f"Request timed out after {monitor.timeout}s")
        except httpx.ConnectError as e:
            if _is_tls_failure(e):
                raise TlsError(f"TLS handshake failed: {str(e)[:200]}")
            raise ConnectionFailure(f"Connection failed: {str(e)[:200]}")
        except httpx.RequestError as e:
            raise ConnectionFailure(f"Request error: {str(e)[:200]}")

        status_code = response.status_code
        if status_code != monitor.expected_status_code:
            raise AssertionMismatch(
                f"Expected status {monitor.expected_status_code}, got {status_code}",
                response_time=response_time,
                status_code=status_code,
            )

        if monitor.type == MonitorType.KEYWORD and monitor.expected_string:
            if monitor.expected_string not in body:
                raise AssertionMismatch(
                    f"Keyword '{monitor.expected_string}' not found in response body",
                    response_time=response_time,
                    status_code=status_code,
                )

        ssl_info = None
        message = None
        verify = not settings.accept_invalid_certs
        if monitor.ssl_check and verify and monitor.url.lower().startswith("https://"):
            remaining = monitor.timeout - (time.monotonic() - attempt_start) - CERTIFICATE_MARGIN
            ssl_info = await self._inspect_certificate(monitor, remaining)
            if ssl_info and ssl_info.days_remaining <= monitor.ssl_expiry_warning_days:
                message = (
                    f"SSL certificate expires in {ssl_info.days_remaining} days "
                    f"(threshold: {monitor.ssl_expiry_warning_days})"
                )
                logger.warning(f"{monitor.name}: {message}")

        return ProbeResult(
            response_time=response_time,
            status_code=status_code,
            message=message,
            ssl_info=ssl_info,
        )

    async def _inspect_certificate(self, monitor: Monitor, budget: float) -> Optional[SslInfo]:
        """Read the certificate within `budget` seconds, or give up with None."""
        if budget <= 0:
            logger.debug(f"No time left to inspect the certificate of {monitor.name}")
            return None
        try:
            return await asyncio.wait_for(
                fetch_certificate(monitor.url, budget, self._clock.now()), timeout=budget
            )
        except (OSError, asyncio.TimeoutError, ValueError, ConnectionFailure) as e:
            logger.debug(f"Certificate inspection failed for {monitor.name}: {e}")
            return None
