"""Error taxonomy and failure classification."""

from __future__ import annotations

from fleet_probe.transport import Failure, HttpResponseFailure, SetupFailure, TimeoutFailure


class FleetProbeError(Exception):
    """Base class for every error raised by fleet_probe."""


class ConfigError(FleetProbeError):
    pass


class AuthCheckError(FleetProbeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthRefreshError(FleetProbeError):
    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StorageWriteError(FleetProbeError):
    def __init__(self, message: str, *, host: str | None = None) -> None:
        super().__init__(message)
        self.host = host


class ProbeError(FleetProbeError):
    """A failed probe, already classified.

    `recorded_status` is the status code written to storage for the outcome.
    """

    kind = "probe_error"

    @property
    def recorded_status(self) -> int:
        return 0


class ProbeHttpError(ProbeError):
    kind = "http_error"

    def __init__(self, status_code: int, reason: str = "") -> None:
        detail = f"HTTP {status_code}"
        if reason:
            detail = f"{detail} {reason}"
        super().__init__(detail)
        self.status_code = int(status_code)
        self.reason = reason

    @property
    def recorded_status(self) -> int:
        return self.status_code


class ProbeTimeout(ProbeError):
    kind = "timeout"


class ProbeTransportError(ProbeError):
    kind = "transport_error"


def classify_failure(failure: Failure) -> ProbeError:
    """
    Map a transport failure onto exactly one ProbeError kind.

    HTTP failures keep the response status; timeouts and setup failures are
    recorded with status 0.
    """
    if isinstance(failure, HttpResponseFailure):
        return ProbeHttpError(failure.status_code, failure.reason)
    if isinstance(failure, TimeoutFailure):
        return ProbeTimeout(failure.message or "deadline exceeded")
    if isinstance(failure, SetupFailure):
        return ProbeTransportError(failure.message or "request setup failed")
    raise TypeError(f"Unknown transport failure: {failure!r}")
