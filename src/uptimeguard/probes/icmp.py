"""
ICMP echo probe.

Raw ICMP sockets need elevated privileges, so the probe drives the system
`ping` executable, which is installed setuid or with CAP_NET_RAW.
"""
import asyncio
import contextlib
import math
import re
import time

from uptimeguard.errors import ConnectionFailure, DnsFailure
from uptimeguard.probes.base import Probe, ProbeResult, elapsed_ms, parse_host_port
from uptimeguard.schemas import Monitor

PING_EXECUTABLE = "ping"

_RTT_PATTERN = re.compile(r"time[=<]\s*([\d.]+)\s*ms")
_RESOLVE_ERRORS = (
    "unknown host",
    "name or service not known",
    "temporary failure in name resolution",
    "cannot resolve",
)


def parse_round_trip(output: str) -> int | None:
    match = _RTT_PATTERN.search(output)
    if not match:
        return None
    return int(round(float(match.group(1))))


class PingProbe(Probe):
    """Sends a single echo request and waits for the reply."""

    async def check(self, monitor: Monitor) -> ProbeResult:
        host, _ = parse_host_port(monitor.url)
        if host.startswith("-"):
            raise ConnectionFailure(f"Invalid host: {host}")
        wait_seconds = max(1, math.ceil(monitor.timeout))

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                PING_EXECUTABLE, "-c", "1", "-W", str(wait_seconds), host,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            raise ConnectionFailure(f"'{PING_EXECUTABLE}' executable not found")

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            raise
        response_time = elapsed_ms(start)

        output = (stdout or b"").decode(errors="replace")
        if process.returncode != 0:
            error_text = ((stderr or b"").decode(errors="replace") + output).lower()
            if any(marker in error_text for marker in _RESOLVE_ERRORS):
                raise DnsFailure(f"Could not resolve {host}")
            raise ConnectionFailure(f"No echo reply from {host}")

        round_trip = parse_round_trip(output)
        return ProbeResult(response_time=round_trip if round_trip is not None else response_time)
