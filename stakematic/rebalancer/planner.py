"""Deterministic target allocation shared by live runs and dry-run previews.

Both the rebalance runtime and the offline preview tool call ``plan`` so a
previewed allocation is exactly what a live run would target, given
identical inputs. No randomness, no external state.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal
from typing import Mapping

import numpy as np

from .models import Allocation, Policy, ValidatorSnapshot, Verdict, is_eligible

_I64_MAX = np.iinfo(np.int64).max


def concentration_cap(budget: int, max_concentration: float) -> int:
    """floor(budget * max_concentration), computed in exact decimal arithmetic."""
    cap = Decimal(budget) * Decimal(str(max_concentration))
    return int(cap.to_integral_value(rounding=ROUND_FLOOR))


def water_fill(budget: int, n: int, cap: int) -> np.ndarray:
    """Capped equal-share fill over ``n`` slots ordered by tie-break priority.

    Each round splits what is left equally among the open slots, with the
    indivisible remainder going one unit at a time to the lowest slots.
    Slots whose share would exceed ``cap`` are clamped to it and closed; the
    surplus they release is shared out next round. Every round except the
    last closes at least one slot, so the loop is bounded by ``n`` rounds.
    """
    alloc = np.zeros(n, dtype=np.int64)
    open_mask = np.ones(n, dtype=bool)
    remaining = budget

    for _ in range(n):
        open_idx = np.flatnonzero(open_mask)
        if remaining <= 0 or open_idx.size == 0:
            break

        share, extra = divmod(remaining, int(open_idx.size))
        give = np.full(open_idx.size, share, dtype=np.int64)
        give[:extra] += 1
        proposed = alloc[open_idx] + give

        over = proposed > cap
        if not over.any():
            alloc[open_idx] = proposed
            remaining = 0
            break

        clamped = open_idx[over]
        remaining -= int((cap - alloc[clamped]).sum())
        alloc[clamped] = cap
        open_mask[clamped] = False

    return alloc


def plan(
    verdicts: Mapping[str, Verdict],
    validators: list[ValidatorSnapshot],
    total_budget: int,
    current_allocation: Mapping[str, int],
    policy: Policy,
) -> Allocation:
    """Compute the target stake per validator.

    Steps:
    1. Eligible set E = validators present in the snapshot with an Eligible
       verdict, ordered by ascending identity (the tie-break order).
    2. cap = floor(total_budget * policy.max_concentration)
    3. Capped equal-share water fill of total_budget over E.
    4. Everyone else (Poor, Excluded, unclassified, or only known from
       current_allocation) gets an explicit 0, which withdraws their stake.

    Args:
        verdicts: identity -> Verdict from ``classify``.
        validators: Validator snapshot for this run.
        total_budget: Stake available to allocate, in ledger base units.
        current_allocation: identity -> currently delegated stake.
        policy: Static policy (max_concentration).

    Returns:
        Allocation with targets for every known identity, sorted by identity.
    """
    if total_budget < 0:
        raise ValueError(f"total_budget must be non-negative, got {total_budget}")
    if total_budget > _I64_MAX:
        raise ValueError(f"total_budget too large: {total_budget}")

    warnings: list[str] = []
    in_snapshot = {v.identity for v in validators}
    known = set(verdicts) | in_snapshot | set(current_allocation)

    unclassified = sorted(in_snapshot - set(verdicts))
    if unclassified:
        warnings.append(f"{len(unclassified)} validators without a verdict: {unclassified[:5]}")

    eligible = sorted(
        identity for identity, verdict in verdicts.items()
        if is_eligible(verdict) and identity in in_snapshot
    )

    targets = {identity: 0 for identity in known}

    if not eligible:
        warnings.append("no eligible validators")
    elif total_budget == 0:
        warnings.append("zero budget")
    else:
        cap = concentration_cap(total_budget, policy.max_concentration)
        filled = water_fill(total_budget, len(eligible), cap)
        for identity, amount in zip(eligible, filled):
            targets[identity] = int(amount)

        undistributed = total_budget - int(filled.sum())
        if undistributed > 0:
            warnings.append(
                f"{undistributed} undistributed: every eligible validator is at the "
                f"concentration cap ({cap})"
            )

    return Allocation(
        targets=dict(sorted(targets.items())),
        budget=total_budget,
        warnings=warnings,
    )


__all__ = ["concentration_cap", "plan", "water_fill"]
