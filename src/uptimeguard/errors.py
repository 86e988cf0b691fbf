"""
Error taxonomy for the monitoring pipeline.

Probe errors describe why a single check attempt failed. They are turned into
DOWN heartbeats by the executor and never reach the scheduler.
"""


class UptimeGuardError(Exception):
    pass


class ProbeError(UptimeGuardError):
    """A check attempt failed.

    `response_time` and `status_code` are set only when the target actually
    answered (e.g. an HTTP response with the wrong status).
    """

    def __init__(
        self,
        message: str,
        response_time: int | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.response_time = response_time
        self.status_code = status_code


class ProbeTimeout(ProbeError):
    pass


class ConnectionFailure(ProbeError):
    pass


class DnsFailure(ProbeError):
    pass


class TlsError(ProbeError):
    pass


class AssertionMismatch(ProbeError):
    """The target answered, but not with what the monitor expects."""


class RepositoryUnavailable(UptimeGuardError):
    pass


class NotifierDeliveryFailure(UptimeGuardError):
    pass
