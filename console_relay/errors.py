"""Fault types raised inside the relay and re-emitted as error events."""


class RelayError(Exception):
    """Base class for all relay faults."""


class NoTargetFound(RelayError):
    """Target discovery returned nothing that could be selected."""


class NormalizationFault(RelayError):
    """An upstream protocol event could not be converted to a LogEntry."""


class PersistenceFault(RelayError):
    """Directory creation, open or write of a partition file failed."""


class ConnectionFault(RelayError):
    """Transport-level failure talking to the debugging endpoint."""


class LauncherError(RelayError):
    """The browser process could not be started or stopped."""
