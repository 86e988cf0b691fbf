"""
DNS resolution probe.
"""
import time

import dns.asyncresolver
import dns.exception
import dns.resolver

from uptimeguard.errors import DnsFailure, ProbeTimeout
from uptimeguard.probes.base import Probe, ProbeResult, elapsed_ms, parse_host_port
from uptimeguard.schemas import Monitor


class DnsProbe(Probe):
    """Resolves the target host; success requires at least one record.

    The record type comes from the monitor's advanced settings (A by default).
    """

    async def check(self, monitor: Monitor) -> ProbeResult:
        host, _ = parse_host_port(monitor.url)
        record_type = monitor.advanced_settings.dns_record_type
        start = time.monotonic()
        try:
            resolver = dns.asyncresolver.Resolver()
            resolver.lifetime = monitor.timeout
            answer = await resolver.resolve(host, record_type)
        except dns.resolver.NXDOMAIN:
            raise DnsFailure(f"Domain {host} does not exist (NXDOMAIN)")
        except dns.resolver.NoAnswer:
            raise DnsFailure(f"No {record_type} record for {host}")
        except dns.resolver.NoNameservers:
            raise DnsFailure(f"No nameserver could answer for {host}")
        except dns.exception.Timeout:
            raise ProbeTimeout(f"DNS resolution for {host} timed out")
        except dns.exception.DNSException as e:
            raise DnsFailure(f"DNS resolution failed: {str(e)[:200]}")
        response_time = elapsed_ms(start)

        records = [r.to_text() for r in answer]
        if not records:
            raise DnsFailure(f"No {record_type} record for {host}")
        return ProbeResult(
            response_time=response_time,
            message=f"{record_type} {', '.join(records[:3])}",
        )
