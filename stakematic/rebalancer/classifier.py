"""Eligibility classification: snapshot + policy -> one verdict per validator.

Rules are evaluated in a fixed priority order and the first match wins, so
every verdict can be explained by exactly one reason code:

1. blacklisted identity            -> Excluded(Blacklisted)
2. duplicated identity/vote key    -> Excluded(DuplicateIdentity)
3. delinquent                      -> Poor(Delinquent)
4. commission above the cap        -> Poor(CommissionTooHigh)
5. self-stake below the minimum    -> Poor(InsufficientSelfStake)
6. software older than min_version -> Poor(StaleSoftware)
7. otherwise                       -> Eligible

Pure function: no ledger access, no ambient configuration.
"""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import Iterable

from .models import (
    Eligible,
    Excluded,
    Policy,
    Poor,
    ReasonCode,
    ValidatorSnapshot,
    Verdict,
)

_VERSION_PREFIX = re.compile(r"^\s*v?(\d+(?:\.\d+)*)")


def parse_version(version: str | None) -> tuple[int, ...] | None:
    """Leading dotted numeric components of a version string.

    ``"1.14.3-rc1"`` -> ``(1, 14, 3)``. Returns None when nothing numeric
    can be read.
    """
    if not version:
        return None
    match = _VERSION_PREFIX.match(version)
    if match is None:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def is_version_older(version: str | None, minimum: str) -> bool:
    """True if ``version`` sorts before ``minimum``. Unreadable versions count as older."""
    required = parse_version(minimum)
    if required is None:
        raise ValueError(f"Invalid minimum version: {minimum!r}")
    actual = parse_version(version)
    if actual is None:
        return True
    width = max(len(actual), len(required))
    actual = actual + (0,) * (width - len(actual))
    required = required + (0,) * (width - len(required))
    return actual < required


def _duplicated_identities(validators: Iterable[ValidatorSnapshot]) -> set[str]:
    validators = list(validators)
    identity_counts = Counter(v.identity for v in validators)
    duplicated = {identity for identity, n in identity_counts.items() if n > 1}

    by_vote: dict[str, set[str]] = defaultdict(set)
    for v in validators:
        by_vote[v.vote_account].add(v.identity)
    for identities in by_vote.values():
        if len(identities) > 1:
            duplicated.update(identities)
    return duplicated


def classify_one(
    validator: ValidatorSnapshot,
    policy: Policy,
    duplicated: frozenset[str] | set[str] = frozenset(),
) -> Verdict:
    """Verdict for a single validator."""
    if validator.identity in policy.blacklist:
        return Excluded(reason=ReasonCode.BLACKLISTED)
    if validator.identity in duplicated:
        return Excluded(reason=ReasonCode.DUPLICATE_IDENTITY)
    if validator.delinquent:
        return Poor(reason=ReasonCode.DELINQUENT)
    if validator.commission > policy.max_commission:
        return Poor(reason=ReasonCode.COMMISSION_TOO_HIGH)
    if validator.self_stake < policy.min_self_stake:
        return Poor(reason=ReasonCode.INSUFFICIENT_SELF_STAKE)
    if policy.min_version is not None and is_version_older(
        validator.version, policy.min_version
    ):
        return Poor(reason=ReasonCode.STALE_SOFTWARE)
    return Eligible()


def classify(
    validators: list[ValidatorSnapshot],
    policy: Policy,
) -> dict[str, Verdict]:
    """Classify every validator in the snapshot.

    Args:
        validators: Validator snapshot for this run.
        policy: Static policy.

    Returns:
        identity -> Verdict, keys in ascending identity order. A duplicated
        identity yields a single Excluded(DuplicateIdentity) entry.
    """
    duplicated = _duplicated_identities(validators)
    verdicts: dict[str, Verdict] = {}
    for validator in sorted(validators, key=lambda v: (v.identity, v.vote_account)):
        if validator.identity in verdicts:
            continue
        verdicts[validator.identity] = classify_one(validator, policy, duplicated)
    return verdicts


__all__ = ["classify", "classify_one", "is_version_older", "parse_version"]
