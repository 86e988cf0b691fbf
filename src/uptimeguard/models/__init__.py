from uptimeguard.models.monitor import MonitorRecord
from uptimeguard.models.heartbeat import HeartbeatRecord
from uptimeguard.models.incident import IncidentRecord
from uptimeguard.models.uptime_stats import UptimeStatsRecord

__all__ = ["MonitorRecord", "HeartbeatRecord", "IncidentRecord", "UptimeStatsRecord"]
