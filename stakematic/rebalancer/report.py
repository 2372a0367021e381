"""Run report: every verdict, every planned target and every operation outcome.

A run always ends with a RunReport, including under partial failure.
"""

from __future__ import annotations

import threading
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from stakematic.shared.determinism import compute_hash

from .errors import FailureKind
from .models import Operation


class OperationStatus(str, Enum):
    PENDING = "Pending"
    SUBMITTED = "Submitted"
    CONFIRMED = "Confirmed"
    FAILED = "Failed"
    SKIPPED = "Skipped"


@dataclass
class OperationOutcome:
    """Final state of one operation."""

    validator: str
    step: int  # position in the validator's chain
    operation: Operation
    status: OperationStatus = OperationStatus.PENDING
    failure: FailureKind | None = None
    reason: str = ""
    attempts: int = 0
    signature: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "validator": self.validator,
            "step": self.step,
            "operation": self.operation.model_dump(mode="json"),
            "status": self.status.value,
            "failure": self.failure.value if self.failure else None,
            "reason": self.reason,
            "attempts": self.attempts,
            "signature": self.signature,
        }


class ReportCollector:
    """Thread-safe sink that chain tasks record their outcomes into."""

    def __init__(self) -> None:
        self._outcomes: list[OperationOutcome] = []
        self._lock = threading.Lock()

    def record(self, outcome: OperationOutcome) -> None:
        with self._lock:
            self._outcomes.append(outcome)

    def outcomes(self) -> list[OperationOutcome]:
        """Outcomes ordered by (validator, step), independent of completion order."""
        with self._lock:
            return sorted(self._outcomes, key=lambda o: (o.validator, o.step))


@dataclass
class RunReport:
    """Structured summary of one rebalancing run."""

    outcomes: list[OperationOutcome] = field(default_factory=list)
    dry_run: bool = False
    epoch: int | None = None
    budget: int | None = None
    verdicts: dict[str, str] = field(default_factory=dict)  # identity -> "Poor(Delinquent)"
    targets: dict[str, int] = field(default_factory=dict)
    notes: dict[str, str] = field(default_factory=dict)
    resolution_errors: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None

    def counts(self) -> dict[str, int]:
        counter = Counter(o.status.value for o in self.outcomes)
        return {status.value: counter.get(status.value, 0) for status in OperationStatus}

    def failed(self) -> list[OperationOutcome]:
        return [o for o in self.outcomes if o.status == OperationStatus.FAILED]

    @property
    def ok(self) -> bool:
        """True when nothing failed and every chain resolved."""
        return not self.failed() and not self.resolution_errors

    def summary(self) -> dict[str, Any]:
        return {
            "epoch": self.epoch,
            "dry_run": self.dry_run,
            "budget": self.budget,
            "ok": self.ok,
            "counts": self.counts(),
            "verdicts": dict(sorted(self.verdicts.items())),
            "targets": dict(sorted(self.targets.items())),
            "notes": dict(sorted(self.notes.items())),
            "resolution_errors": dict(sorted(self.resolution_errors.items())),
            "warnings": list(self.warnings),
            "operations": [o.to_dict() for o in self.outcomes],
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }

    def fingerprint(self) -> str:
        """Hash of the report content, excluding timestamps and signatures."""
        data = self.summary()
        data.pop("started_at")
        data.pop("finished_at")
        for op in data["operations"]:
            op.pop("signature")
        return compute_hash(data)

    def render_text(self) -> str:
        """Short plain-text form for notifications."""
        counts = self.counts()
        verdict_counts = Counter(v.split("(")[0] for v in self.verdicts.values())
        lines = [
            f"Stake rebalance{' (dry run)' if self.dry_run else ''}"
            f"{f' epoch {self.epoch}' if self.epoch is not None else ''}: "
            f"{'OK' if self.ok else 'ATTENTION REQUIRED'}",
            "Validators: " + ", ".join(
                f"{name} {n}" for name, n in sorted(verdict_counts.items())
            ),
            "Operations: " + ", ".join(f"{k} {v}" for k, v in counts.items() if v),
        ]
        for o in self.failed():
            lines.append(
                f"FAILED {o.validator} {o.operation.kind} "
                f"({o.failure.value if o.failure else '?'}): {o.reason}"
            )
        for identity, message in sorted(self.resolution_errors.items()):
            lines.append(f"UNRESOLVED {identity}: {message}")
        lines.extend(f"WARNING {w}" for w in self.warnings)
        return "\n".join(lines)


__all__ = ["OperationOutcome", "OperationStatus", "ReportCollector", "RunReport"]
