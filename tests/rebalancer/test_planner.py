"""Tests for the capped equal-share allocation planner."""

import numpy as np
import pytest

from stakematic.rebalancer.models import (
    Eligible,
    Excluded,
    Policy,
    Poor,
    ReasonCode,
    ValidatorSnapshot,
    is_eligible,
)
from stakematic.rebalancer.planner import concentration_cap, plan, water_fill


def _validators(*identities: str) -> list[ValidatorSnapshot]:
    return [
        ValidatorSnapshot(identity=i, vote_account=f"vote-{i}", commission=5)
        for i in identities
    ]


def _all_eligible(*identities: str) -> dict:
    return {i: Eligible() for i in identities}


class TestPlan:

    def test_two_validators_no_clamping(self):
        alloc = plan(
            _all_eligible("A", "B"), _validators("A", "B"), 1000, {},
            Policy(max_concentration=0.6),
        )
        assert alloc.targets == {"A": 500, "B": 500}
        assert alloc.warnings == []

    def test_remainder_goes_to_lowest_identity(self):
        alloc = plan(
            _all_eligible("A", "B", "C"), _validators("A", "B", "C"), 1000, {},
            Policy(max_concentration=0.34),
        )
        assert alloc.targets == {"A": 334, "B": 333, "C": 333}
        assert alloc.total == 1000

    def test_all_clamped_leaves_surplus_undistributed(self):
        alloc = plan(
            _all_eligible("A", "B", "C"), _validators("A", "B", "C"), 1000, {},
            Policy(max_concentration=0.3),
        )
        assert alloc.targets == {"A": 300, "B": 300, "C": 300}
        assert alloc.total == 900
        assert any("100 undistributed" in w for w in alloc.warnings)

    def test_ineligible_validators_get_zero(self):
        verdicts = {
            "A": Eligible(),
            "B": Poor(reason=ReasonCode.DELINQUENT),
            "C": Excluded(reason=ReasonCode.BLACKLISTED),
        }
        alloc = plan(verdicts, _validators("A", "B", "C"), 900, {}, Policy())
        assert alloc.targets == {"A": 900, "B": 0, "C": 0}

    def test_nonzero_target_implies_eligible(self):
        verdicts = {
            "A": Eligible(),
            "B": Poor(reason=ReasonCode.COMMISSION_TOO_HIGH),
            "C": Eligible(),
            "D": Excluded(reason=ReasonCode.DUPLICATE_IDENTITY),
        }
        alloc = plan(
            verdicts, _validators("A", "B", "C", "D"), 10_000, {},
            Policy(max_concentration=0.25),
        )
        for identity, amount in alloc.targets.items():
            if amount > 0:
                assert is_eligible(verdicts[identity])

    def test_vanished_validator_gets_explicit_zero(self):
        alloc = plan(
            _all_eligible("A"), _validators("A"), 100, {"GONE": 400}, Policy(),
        )
        assert alloc.targets == {"A": 100, "GONE": 0}

    def test_eligible_verdict_without_snapshot_entry_gets_zero(self):
        alloc = plan(_all_eligible("A", "Z"), _validators("A"), 100, {}, Policy())
        assert alloc.targets == {"A": 100, "Z": 0}

    def test_no_eligible_validators(self):
        verdicts = {"A": Poor(reason=ReasonCode.DELINQUENT)}
        alloc = plan(verdicts, _validators("A"), 1000, {"A": 1000}, Policy())
        assert alloc.targets == {"A": 0}
        assert "no eligible validators" in alloc.warnings

    def test_zero_budget(self):
        alloc = plan(_all_eligible("A", "B"), _validators("A", "B"), 0, {}, Policy())
        assert alloc.targets == {"A": 0, "B": 0}
        assert alloc.total == 0

    def test_negative_budget_rejected(self):
        with pytest.raises(ValueError):
            plan(_all_eligible("A"), _validators("A"), -1, {}, Policy())

    def test_unclassified_validator_warns(self):
        alloc = plan(_all_eligible("A"), _validators("A", "B"), 100, {}, Policy())
        assert alloc.targets == {"A": 100, "B": 0}
        assert any("without a verdict" in w for w in alloc.warnings)

    def test_deterministic(self):
        verdicts = _all_eligible("C", "A", "B", "D")
        validators = _validators("D", "C", "B", "A")
        policy = Policy(max_concentration=0.3)
        first = plan(verdicts, validators, 12_345, {}, policy)
        second = plan(verdicts, list(reversed(validators)), 12_345, {}, policy)
        assert first == second
        assert list(first.targets) == sorted(first.targets)

    @pytest.mark.parametrize("budget", [0, 1, 7, 999, 1000, 10**12 + 3])
    @pytest.mark.parametrize("fraction", [0.05, 0.2, 0.34, 0.5, 1.0])
    def test_budget_and_cap_respected(self, budget, fraction):
        identities = [f"V{i:02d}" for i in range(7)]
        alloc = plan(
            _all_eligible(*identities), _validators(*identities), budget, {},
            Policy(max_concentration=fraction),
        )
        cap = concentration_cap(budget, fraction)
        assert alloc.total <= budget
        assert all(amount <= cap for amount in alloc.targets.values())


class TestWaterFill:

    def test_staggered_clamping(self):
        assert water_fill(10, 3, 3).tolist() == [3, 3, 3]

    def test_no_slots(self):
        assert water_fill(100, 0, 100).size == 0

    def test_dtype(self):
        assert water_fill(100, 3, 100).dtype == np.int64

    def test_concentration_cap_is_floored(self):
        assert concentration_cap(1000, 0.34) == 340
        assert concentration_cap(1001, 0.1) == 100
        assert concentration_cap(999, 1.0) == 999
