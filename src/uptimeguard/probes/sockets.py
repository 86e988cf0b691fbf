"""
TCP connect and UDP exchange probes.
"""
import asyncio
import socket
import time
from typing import Optional

from uptimeguard.errors import ConnectionFailure, DnsFailure
from uptimeguard.probes.base import Probe, ProbeResult, elapsed_ms, parse_host_port
from uptimeguard.schemas import Monitor


def _require_port(monitor: Monitor) -> tuple[str, int]:
    host, port = parse_host_port(monitor.url)
    if port is None:
        raise ConnectionFailure(f"Target '{monitor.url}' has no port")
    return host, port


class TcpProbe(Probe):
    """Succeeds when a TCP connection to host:port is established."""

    async def check(self, monitor: Monitor) -> ProbeResult:
        host, port = _require_port(monitor)
        start = time.monotonic()
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except socket.gaierror as e:
            raise DnsFailure(f"Could not resolve {host}: {e}")
        except OSError as e:
            raise ConnectionFailure(f"TCP connection to {host}:{port} failed: {str(e)[:200]}")
        response_time = elapsed_ms(start)

        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass  # connection already reset by peer
        return ProbeResult(response_time=response_time)


class _DatagramExchange(asyncio.DatagramProtocol):
    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self.reply: asyncio.Future[bytes] = loop.create_future()

    def datagram_received(self, data: bytes, addr) -> None:
        if not self.reply.done():
            self.reply.set_result(data)

    def error_received(self, exc: Exception) -> None:
        # ICMP port unreachable arrives here as ConnectionRefusedError
        if not self.reply.done():
            self.reply.set_exception(exc)

    def connection_lost(self, exc: Optional[Exception]) -> None:
        if exc is not None and not self.reply.done():
            self.reply.set_exception(exc)


class UdpProbe(Probe):
    """Sends one datagram and succeeds when any reply datagram comes back.

    The payload is the monitor's configured body, or an empty datagram.
    """

    async def check(self, monitor: Monitor) -> ProbeResult:
        host, port = _require_port(monitor)
        payload = (monitor.advanced_settings.body or "").encode()
        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.create_datagram_endpoint(
                lambda: _DatagramExchange(loop),
                remote_addr=(host, port),
            )
        except socket.gaierror as e:
            raise DnsFailure(f"Could not resolve {host}: {e}")
        except OSError as e:
            raise ConnectionFailure(f"UDP socket to {host}:{port} failed: {str(e)[:200]}")

        try:
            start = time.monotonic()
            transport.sendto(payload)
            await protocol.reply
            response_time = elapsed_ms(start)
        except OSError as e:
            raise ConnectionFailure(f"UDP exchange with {host}:{port} failed: {str(e)[:200]}")
        finally:
            transport.close()
        return ProbeResult(response_time=response_time)
