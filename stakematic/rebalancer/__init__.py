"""Stake rebalancing core: classify -> plan -> resolve.

The executor, snapshot reader and runtime touch the ledger and are imported
from their own modules.
"""

from .classifier import classify
from .errors import (
    ConfigError,
    FailureKind,
    LedgerClientError,
    ResolutionError,
    SnapshotError,
    StakematicError,
    SubmissionError,
)
from .models import (
    Allocation,
    ClusterSnapshot,
    Eligible,
    Excluded,
    Operation,
    OperationChain,
    Policy,
    Poor,
    ReasonCode,
    StakeAccountState,
    ValidatorSnapshot,
    Verdict,
)
from .planner import plan
from .report import OperationOutcome, OperationStatus, RunReport
from .resolver import AccountPool, ResolutionPlan, ResolveOptions, resolve

__all__ = [
    "AccountPool",
    "Allocation",
    "ClusterSnapshot",
    "ConfigError",
    "Eligible",
    "Excluded",
    "FailureKind",
    "LedgerClientError",
    "Operation",
    "OperationChain",
    "OperationOutcome",
    "OperationStatus",
    "Policy",
    "Poor",
    "ReasonCode",
    "ResolutionError",
    "ResolutionPlan",
    "ResolveOptions",
    "RunReport",
    "SnapshotError",
    "StakematicError",
    "StakeAccountState",
    "SubmissionError",
    "ValidatorSnapshot",
    "Verdict",
    "classify",
    "plan",
    "resolve",
]
