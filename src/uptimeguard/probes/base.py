import abc
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlsplit

from uptimeguard.errors import ConnectionFailure
from uptimeguard.schemas import Monitor, SslInfo


@dataclass(frozen=True)
class ProbeResult:
    """Outcome of a successful check attempt.

    Attributes:
        response_time: Milliseconds until the first definitive response, or
            None to let the executor use its own measurement.
        status_code: Protocol status code (HTTP only).
        message: Informational note, e.g. an SSL expiry warning.
        ssl_info: Certificate summary for TLS targets.
    """

    response_time: Optional[int] = None
    status_code: Optional[int] = None
    message: Optional[str] = None
    ssl_info: Optional[SslInfo] = None


class Probe(abc.ABC):
    """One check attempt against a monitor's target.

    Implementations return a ProbeResult on success and raise a ProbeError
    subclass on failure. The hard timeout is imposed by the caller.
    """

    # Passive probes report the state of an external signal; re-asking
    # within the same cycle cannot change the answer.
    retryable: bool = True

    @abc.abstractmethod
    async def check(self, monitor: Monitor) -> ProbeResult:
        ...


def elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def parse_host_port(target: str, default_port: Optional[int] = None) -> tuple[str, Optional[int]]:
    """Split `host:port`, `[v6]:port` or `scheme://host:port/path` into parts."""
    target = target.strip()
    if "://" not in target:
        target = f"//{target}"
    try:
        parts = urlsplit(target)
        port = parts.port
    except ValueError as e:
        raise ConnectionFailure(f"Invalid target address: {e}") from e
    if not parts.hostname:
        raise ConnectionFailure(f"Invalid target address: {target.lstrip('/')}")
    return parts.hostname, port if port is not None else default_port
