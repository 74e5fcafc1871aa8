"""Fatal conditions.

Everything in here aborts the controller.  Components raise; only
:func:`automate.orchestrator.main` turns them into a CRITICAL log line and a
non-zero exit status.
"""
from __future__ import annotations

__all__ = [
    "FatalError",
    "ConfigError",
    "DeviceNotFound",
    "BadCombinationLink",
    "MissingSoftwarePath",
    "NoViableOptimization",
    "CommitError",
    "LaunchError",
    "UnkillableProcess",
]


class FatalError(RuntimeError):
    """Base class – the controller cannot continue."""


class ConfigError(FatalError):
    """Configuration file missing or a required key is absent / invalid."""


class DeviceNotFound(FatalError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unable to locate this miner in the database: {name}")
        self.name = name


class BadCombinationLink(FatalError):
    def __init__(self, combination_id: int) -> None:
        super().__init__(
            f"Miner software algo has a bad software or algo link: {combination_id}"
        )
        self.combination_id = combination_id


class MissingSoftwarePath(FatalError):
    def __init__(self, software: str) -> None:
        super().__init__(f"No file path found for miner software: {software}")
        self.software = software


class NoViableOptimization(FatalError):
    def __init__(self, device_id: int) -> None:
        super().__init__(
            "Could not determine an optimization for this miner. Load pool "
            "statistics and miner statistics with the collector programs first."
        )
        self.device_id = device_id


class CommitError(FatalError):
    """Persisting a change failed; the stored state is ambiguous."""


class LaunchError(FatalError):
    """The OS refused to start the mining software."""


class UnkillableProcess(FatalError):
    def __init__(self, pid: int, attempts: int) -> None:
        super().__init__(
            f"Fatal error: Unable to close inferior process {pid} "
            f"after {attempts:,} attempts."
        )
        self.pid = pid
        self.attempts = attempts
