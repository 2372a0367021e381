"""Error taxonomy for a rebalancing run.

Propagation:
- ConfigError / SnapshotError abort the run before any ledger mutation.
- ResolutionError is fatal for one validator's operation chain only.
- SubmissionError is per operation and ends up in the RunReport.
"""

from __future__ import annotations

from enum import Enum


class StakematicError(Exception):
    """Base class for all rebalancer errors."""


class ConfigError(StakematicError):
    """Settings document missing, unreadable or invalid."""


class SnapshotError(StakematicError):
    """Cluster state could not be read from the ledger."""


class ResolutionError(StakematicError):
    """A validator's operations could not be resolved (e.g. account pool exhausted)."""

    def __init__(self, validator: str, message: str):
        super().__init__(f"{validator}: {message}")
        self.validator = validator
        self.message = message


class FailureKind(str, Enum):
    """Why an operation ended in Failed."""

    TRANSIENT = "Transient"
    REJECTED = "Rejected"
    TIMEOUT = "Timeout"


class SubmissionError(StakematicError):
    """Submission or confirmation of a transaction failed."""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(f"{kind.value}: {message}")
        self.kind = kind
        self.message = message


class LedgerClientError(StakematicError):
    """Raised by ledger clients. ``transient`` errors may be retried."""

    def __init__(self, message: str, transient: bool = False, code: int | None = None):
        super().__init__(message)
        self.transient = transient
        self.code = code


__all__ = [
    "ConfigError",
    "FailureKind",
    "LedgerClientError",
    "ResolutionError",
    "SnapshotError",
    "StakematicError",
    "SubmissionError",
]
