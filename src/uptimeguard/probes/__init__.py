from typing import Optional

from uptimeguard.clock import Clock
from uptimeguard.probes.base import Probe, ProbeResult, parse_host_port
from uptimeguard.probes.http import HttpProbe
from uptimeguard.probes.icmp import PingProbe
from uptimeguard.probes.passive import PassiveHeartbeatProbe
from uptimeguard.probes.resolver import DnsProbe
from uptimeguard.probes.sockets import TcpProbe, UdpProbe
from uptimeguard.repository import Repository
from uptimeguard.schemas import MonitorType

__all__ = [
    "Probe",
    "ProbeResult",
    "HttpProbe",
    "TcpProbe",
    "UdpProbe",
    "DnsProbe",
    "PingProbe",
    "PassiveHeartbeatProbe",
    "build_probe",
    "parse_host_port",
]


def build_probe(
    monitor_type: MonitorType,
    repository: Optional[Repository] = None,
    clock: Optional[Clock] = None,
) -> Probe:
    """Return the probe variant for a monitor type."""
    if monitor_type in (MonitorType.HTTP, MonitorType.KEYWORD):
        return HttpProbe(clock)
    if monitor_type == MonitorType.TCP:
        return TcpProbe()
    if monitor_type == MonitorType.UDP:
        return UdpProbe()
    if monitor_type == MonitorType.DNS:
        return DnsProbe()
    if monitor_type == MonitorType.PING:
        return PingProbe()
    if monitor_type == MonitorType.HEARTBEAT:
        if repository is None:
            raise ValueError("Passive heartbeat monitors need a repository")
        return PassiveHeartbeatProbe(repository, clock)
    raise ValueError(f"Unsupported monitor type: {monitor_type}")
