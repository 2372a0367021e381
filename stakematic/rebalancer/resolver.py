"""Delta resolution: target allocation vs. on-ledger stake accounts -> operations.

Output is one OperationChain per validator. Chains are independent of each
other (the executor may run them concurrently) but operations inside a chain
depend on their predecessors and must run in order:

  reclaim merges -> dust deactivations -> decreases -> increase/delegate

Inactive accounts are merged back into the reserve account; accounts being
withdrawn are deactivated this run and merged once inactive on a later run.
A merge is never emitted for an account that is decreased in the same run.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable

from .errors import ResolutionError
from .models import (
    ActivationState,
    Allocation,
    Deactivate,
    DecreaseStake,
    Delegate,
    IncreaseStake,
    Merge,
    Operation,
    OperationChain,
    Policy,
    Split,
    StakeAccountState,
    ValidatorSnapshot,
)

_LIVE_STATES = (ActivationState.ACTIVE, ActivationState.ACTIVATING)


class AccountPool:
    """Unallocated stake account handles available to new delegations.

    The only mutable state shared across chains. A handle is handed out at
    most once per run; acquisition is exclusive.
    """

    def __init__(self, handles: Iterable[str] = ()):
        self._free: list[str] = list(dict.fromkeys(handles))
        self._owners: dict[str, str] = {}
        self._lock = threading.Lock()

    def acquire(self, owner: str) -> str:
        """Check out the next free handle for ``owner``.

        Raises:
            ResolutionError: The pool is exhausted.
        """
        with self._lock:
            if not self._free:
                raise ResolutionError(owner, "stake account pool exhausted")
            handle = self._free.pop(0)
            self._owners[handle] = owner
            return handle

    def release(self, handle: str) -> None:
        with self._lock:
            if self._owners.pop(handle, None) is not None:
                self._free.insert(0, handle)

    def owner_of(self, handle: str) -> str | None:
        with self._lock:
            return self._owners.get(handle)

    @property
    def available(self) -> int:
        with self._lock:
            return len(self._free)


@dataclass
class ResolveOptions:
    """Knobs for ``resolve``. ``available_reserve=None`` means unlimited funding."""

    reserve_account: str
    min_stake_change: int = 0
    dust_threshold: int = 0
    available_reserve: int | None = None
    split_decreases: bool = False

    @classmethod
    def from_policy(cls, policy: Policy, reserve_account: str, **overrides) -> ResolveOptions:
        return cls(
            reserve_account=reserve_account,
            min_stake_change=policy.min_stake_change,
            dust_threshold=policy.dust_threshold,
            **overrides,
        )


@dataclass
class ResolutionPlan:
    """Resolver output for one run."""

    chains: list[OperationChain] = field(default_factory=list)
    notes: dict[str, str] = field(default_factory=dict)  # identity -> why nothing was done
    errors: dict[str, str] = field(default_factory=dict)  # identity -> ResolutionError message
    merge_candidates: list[str] = field(default_factory=list)  # accounts left with dust

    @property
    def operations(self) -> list[Operation]:
        return [op for chain in self.chains for op in chain.operations]

    def is_empty(self) -> bool:
        return not self.operations


@dataclass
class _Staged:
    identity: str
    vote_account: str
    live: list[StakeAccountState]
    reclaim: list[Operation] = field(default_factory=list)
    dust: list[Operation] = field(default_factory=list)
    adjust: list[Operation] = field(default_factory=list)
    fund: list[Operation] = field(default_factory=list)

    def operations(self) -> list[Operation]:
        return [*self.reclaim, *self.dust, *self.adjust, *self.fund]


def delegated_by_validator(
    accounts: Iterable[StakeAccountState],
    validators: Iterable[ValidatorSnapshot],
) -> dict[str, int]:
    """Active + activating stake per validator identity.

    Accounts delegated to a vote account missing from the snapshot are keyed
    by that vote account so their stake is still visible to the planner.
    """
    identity_of: dict[str, str] = {}
    for v in validators:
        identity_of.setdefault(v.vote_account, v.identity)

    delegated: dict[str, int] = defaultdict(int)
    for acct in accounts:
        if acct.voter is None or acct.state not in _LIVE_STATES:
            continue
        delegated[identity_of.get(acct.voter, acct.voter)] += acct.balance
    return dict(sorted(delegated.items()))


def check_chain_order(chain: OperationChain) -> None:
    """Reject chains that use an account before it exists or after it is merged away.

    Raises:
        ResolutionError: An operation precedes its prerequisite.
    """
    ops = chain.operations
    created_at = {op.new_account: i for i, op in enumerate(ops) if isinstance(op, Split)}
    merged_away: set[str] = set()

    for i, op in enumerate(ops):
        touched = op.accounts()
        stale = touched & merged_away
        if stale:
            raise ResolutionError(
                chain.validator, f"{op.kind} at step {i} uses merged account {sorted(stale)}"
            )
        for acct in touched:
            if created_at.get(acct, i) > i:
                raise ResolutionError(
                    chain.validator, f"{op.kind} at step {i} uses {acct} before its split"
                )
        if isinstance(op, Merge):
            merged_away.add(op.src)


def _stage_decrease(
    staged: _Staged,
    target: int,
    withdraw: int,
    options: ResolveOptions,
    pool: AccountPool,
    plan: ResolutionPlan,
) -> None:
    if target == 0:
        staged.adjust = [Deactivate(account=a.account) for a in staged.live]
        return

    for acct in staged.live:
        if withdraw <= 0:
            break
        if acct.balance <= withdraw:
            staged.adjust.append(Deactivate(account=acct.account))
            withdraw -= acct.balance
            continue

        if options.split_decreases:
            transient = pool.acquire(staged.identity)
            staged.adjust.append(
                Split(src=acct.account, new_account=transient, amount=withdraw)
            )
            staged.adjust.append(Deactivate(account=transient))
        else:
            staged.adjust.append(DecreaseStake(account=acct.account, amount=withdraw))

        if acct.balance - withdraw < options.dust_threshold:
            plan.merge_candidates.append(acct.account)
        withdraw = 0


def _stage_increase(
    staged: _Staged,
    amount: int,
    pool: AccountPool,
) -> bool:
    """Fund ``amount`` for one validator. Returns False if the validator is busy."""
    active = [a for a in staged.live if a.state == ActivationState.ACTIVE]
    if active:
        staged.fund.append(IncreaseStake(account=active[0].account, amount=amount))
        return True
    if staged.live:
        # Only activating stake: cannot be topped up until it is active.
        return False
    account = pool.acquire(staged.identity)
    staged.fund.append(
        Delegate(account=account, validator=staged.vote_account, amount=amount)
    )
    return True


def resolve(
    target: Allocation,
    current: list[StakeAccountState],
    *,
    validators: list[ValidatorSnapshot],
    pool: AccountPool,
    options: ResolveOptions,
    retained: frozenset[str] | set[str] = frozenset(),
) -> ResolutionPlan:
    """Diff the target allocation against ledger state.

    Args:
        target: Planner output.
        current: Stake accounts as read from the ledger this run.
        validators: Validator snapshot (identity <-> vote account mapping).
        pool: Unallocated account handles for new delegations and splits.
        options: Reserve account, change thresholds, reserve funding limit.
        retained: Identities whose inactive accounts are kept instead of
            merged into the reserve (Poor validators).

    Returns:
        ResolutionPlan with one chain per validator that needs operations.
        A ResolutionError only drops the affected validator's chain.
    """
    plan = ResolutionPlan()

    vote_of: dict[str, str] = {}
    for v in validators:
        vote_of.setdefault(v.identity, v.vote_account)
    identity_of = {vote: identity for identity, vote in vote_of.items()}

    by_voter: dict[str, list[StakeAccountState]] = defaultdict(list)
    for acct in current:
        if acct.voter is None or acct.account == options.reserve_account:
            continue
        by_voter[acct.voter].append(acct)

    identities = set(target.targets) | {identity_of.get(vote, vote) for vote in by_voter}

    staged_all: dict[str, _Staged] = {}
    to_fund: list[tuple[int, str, int]] = []  # (delegated, identity, wanted)

    for identity in sorted(identities):
        vote = vote_of.get(identity, identity)
        accounts = sorted(by_voter.get(vote, []), key=lambda a: (-a.balance, a.account))
        live = [a for a in accounts if a.state in _LIVE_STATES]
        staged = _Staged(identity=identity, vote_account=vote, live=live)

        if identity not in retained:
            staged.reclaim = [
                Merge(src=a.account, dst=options.reserve_account)
                for a in sorted(accounts, key=lambda a: a.account)
                if a.state == ActivationState.INACTIVE and a.balance > 0
            ]

        if options.dust_threshold > 0:
            active = [a for a in live if a.state == ActivationState.ACTIVE]
            dust = [a for a in active[1:] if a.balance < options.dust_threshold]
            staged.dust = [Deactivate(account=a.account) for a in dust]
            staged.live = [a for a in live if a not in dust]

        delegated = sum(a.balance for a in staged.live)
        wanted = target.get(identity)
        delta = wanted - delegated

        try:
            if delta < 0:
                if wanted > 0 and -delta < options.min_stake_change:
                    plan.notes[identity] = f"not removing {-delta} (amount too small)"
                else:
                    _stage_decrease(staged, wanted, -delta, options, pool, plan)
            elif delta > 0:
                if delta < options.min_stake_change:
                    plan.notes[identity] = f"not adding {delta} (amount too small)"
                else:
                    to_fund.append((delegated, identity, delta))
        except ResolutionError as e:
            plan.errors[identity] = e.message
            continue

        staged_all[identity] = staged

    # Smallest delegations are funded first.
    reserve = options.available_reserve
    for _, identity, wanted in sorted(to_fund):
        if identity not in staged_all:
            continue
        amount = wanted if reserve is None else min(wanted, reserve)
        if amount <= 0 or amount < options.min_stake_change:
            plan.notes[identity] = "reserve depleted"
            continue
        try:
            funded = _stage_increase(staged_all[identity], amount, pool)
        except ResolutionError as e:
            plan.errors[identity] = e.message
            del staged_all[identity]
            continue
        if not funded:
            plan.notes[identity] = "busy: stake still activating"
            continue
        if reserve is not None:
            reserve -= amount

    for identity in sorted(staged_all):
        ops = staged_all[identity].operations()
        if not ops:
            continue
        chain = OperationChain(validator=identity, operations=ops)
        try:
            check_chain_order(chain)
        except ResolutionError as e:
            plan.errors[identity] = e.message
            continue
        plan.chains.append(chain)

    return plan


__all__ = [
    "AccountPool",
    "ResolutionPlan",
    "ResolveOptions",
    "check_chain_order",
    "delegated_by_validator",
    "resolve",
]
