"""Pydantic models for one rebalancing run.

Snapshot, policy, verdict and operation values are frozen: they are
fetched or derived once per run and never mutated. Verdicts and operations
are closed tagged unions discriminated on ``kind``.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


# ---------------------------------------------------------------------------
# Cluster snapshot
# ---------------------------------------------------------------------------


class ValidatorSnapshot(BaseModel):
    """One validator as observed at the start of a run."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(min_length=1)
    vote_account: str = Field(min_length=1)
    commission: int = Field(ge=0, le=100)
    active_stake: int = Field(default=0, ge=0)
    delinquent: bool = False
    version: str | None = None
    self_stake: int = Field(default=0, ge=0)


class ActivationState(str, Enum):
    ACTIVATING = "Activating"
    ACTIVE = "Active"
    DEACTIVATING = "Deactivating"
    INACTIVE = "Inactive"


class StakeAccountState(BaseModel):
    """Ledger-owned stake account. The core only reads it and proposes transitions."""

    model_config = ConfigDict(frozen=True)

    account: str = Field(min_length=1)
    voter: str | None = Field(
        default=None, description="Vote account this stake is delegated to"
    )
    balance: int = Field(ge=0)
    state: ActivationState


class EpochInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    epoch: int = Field(ge=0)
    slot_index: int = 0
    slots_in_epoch: int = 0


class ClusterSnapshot(BaseModel):
    """Everything read from the ledger for one run."""

    model_config = ConfigDict(frozen=True)

    validators: list[ValidatorSnapshot] = Field(default_factory=list)
    stake_accounts: list[StakeAccountState] = Field(default_factory=list)
    epoch: EpochInfo | None = None

    @property
    def total_stake(self) -> int:
        """Balance currently delegated (Active or Activating) across all accounts."""
        return sum(
            a.balance for a in self.stake_accounts
            if a.voter is not None
            and a.state in (ActivationState.ACTIVE, ActivationState.ACTIVATING)
        )

    def deployable_stake(self, reserve_account: str) -> int:
        """Delegated stake plus the reserve balance: what a run can allocate.

        Withdrawn stake counts again once it has been merged into the reserve.
        """
        return sum(
            a.balance for a in self.stake_accounts
            if a.account == reserve_account
            or (
                a.voter is not None
                and a.state in (ActivationState.ACTIVE, ActivationState.ACTIVATING)
            )
        )


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------


class Policy(BaseModel):
    """Static eligibility and allocation policy, read-only for a run."""

    model_config = ConfigDict(frozen=True)

    min_self_stake: int = Field(default=0, ge=0)
    max_commission: int = Field(default=100, ge=0, le=100)
    blacklist: frozenset[str] = Field(default_factory=frozenset)
    max_concentration: float = Field(default=1.0, gt=0.0, le=1.0)
    min_version: str | None = None
    min_stake_change: int = Field(
        default=0, ge=0, description="Adjustments smaller than this are not made"
    )
    dust_threshold: int = Field(
        default=0, ge=0, description="Balances below this are reclaimed"
    )


# ---------------------------------------------------------------------------
# Verdicts
# ---------------------------------------------------------------------------


class ReasonCode(str, Enum):
    DELINQUENT = "Delinquent"
    COMMISSION_TOO_HIGH = "CommissionTooHigh"
    INSUFFICIENT_SELF_STAKE = "InsufficientSelfStake"
    BLACKLISTED = "Blacklisted"
    STALE_SOFTWARE = "StaleSoftware"
    DUPLICATE_IDENTITY = "DuplicateIdentity"


class Eligible(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["eligible"] = "eligible"


class Poor(BaseModel):
    """Keeps existing accounts but receives no new allocation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["poor"] = "poor"
    reason: ReasonCode


class Excluded(BaseModel):
    """Stake must be fully withdrawn and accounts reclaimed."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["excluded"] = "excluded"
    reason: ReasonCode


Verdict = Annotated[Union[Eligible, Poor, Excluded], Field(discriminator="kind")]

VerdictAdapter: TypeAdapter[Verdict] = TypeAdapter(Verdict)


def is_eligible(verdict: Verdict) -> bool:
    return isinstance(verdict, Eligible)


def describe_verdict(verdict: Verdict) -> str:
    """Short human form, e.g. ``Poor(CommissionTooHigh)``."""
    if isinstance(verdict, Eligible):
        return "Eligible"
    return f"{type(verdict).__name__}({verdict.reason.value})"


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


class Allocation(BaseModel):
    """Target stake per validator identity for one run."""

    targets: dict[str, int] = Field(default_factory=dict)
    budget: int = Field(ge=0)
    warnings: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.targets.values())

    def get(self, identity: str) -> int:
        return self.targets.get(identity, 0)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class Delegate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["delegate"] = "delegate"
    account: str
    validator: str = Field(description="Vote account to delegate to")
    amount: int = Field(gt=0)

    def accounts(self) -> frozenset[str]:
        return frozenset({self.account})


class IncreaseStake(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["increase"] = "increase"
    account: str
    amount: int = Field(gt=0)

    def accounts(self) -> frozenset[str]:
        return frozenset({self.account})


class DecreaseStake(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["decrease"] = "decrease"
    account: str
    amount: int = Field(gt=0)

    def accounts(self) -> frozenset[str]:
        return frozenset({self.account})


class Merge(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["merge"] = "merge"
    src: str
    dst: str

    def accounts(self) -> frozenset[str]:
        return frozenset({self.src, self.dst})


class Split(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["split"] = "split"
    src: str
    new_account: str
    amount: int = Field(gt=0)

    def accounts(self) -> frozenset[str]:
        return frozenset({self.src, self.new_account})


class Deactivate(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["deactivate"] = "deactivate"
    account: str

    def accounts(self) -> frozenset[str]:
        return frozenset({self.account})


Operation = Annotated[
    Union[Delegate, IncreaseStake, DecreaseStake, Merge, Split, Deactivate],
    Field(discriminator="kind"),
]

OperationListAdapter: TypeAdapter[list[Operation]] = TypeAdapter(list[Operation])


class OperationChain(BaseModel):
    """Operations for one validator, executed strictly in order."""

    validator: str
    operations: list[Operation] = Field(default_factory=list)


__all__ = [
    "ActivationState",
    "Allocation",
    "ClusterSnapshot",
    "Deactivate",
    "DecreaseStake",
    "Delegate",
    "Eligible",
    "EpochInfo",
    "Excluded",
    "IncreaseStake",
    "Merge",
    "Operation",
    "OperationChain",
    "OperationListAdapter",
    "Policy",
    "Poor",
    "ReasonCode",
    "Split",
    "StakeAccountState",
    "ValidatorSnapshot",
    "Verdict",
    "VerdictAdapter",
    "describe_verdict",
    "is_eligible",
]
