"""Tests for eligibility classification."""

import pytest

from stakematic.rebalancer.classifier import (
    classify,
    classify_one,
    is_version_older,
    parse_version,
)
from stakematic.rebalancer.models import (
    Eligible,
    Excluded,
    Policy,
    Poor,
    ReasonCode,
    ValidatorSnapshot,
)


def _validator(identity: str, **overrides) -> ValidatorSnapshot:
    data = dict(
        identity=identity,
        vote_account=f"vote-{identity}",
        commission=5,
        active_stake=10_000,
        delinquent=False,
        version="1.18.0",
        self_stake=5_000,
    )
    data.update(overrides)
    return ValidatorSnapshot(**data)


@pytest.fixture
def policy() -> Policy:
    return Policy(max_commission=10, min_self_stake=1000)


class TestClassify:

    def test_commission_scenario(self, policy):
        verdicts = classify(
            [
                _validator("A", commission=5, self_stake=2000),
                _validator("B", commission=15),
            ],
            policy,
        )
        assert verdicts["A"] == Eligible()
        assert verdicts["B"] == Poor(reason=ReasonCode.COMMISSION_TOO_HIGH)

    def test_every_validator_gets_exactly_one_verdict(self, policy):
        validators = [_validator(name) for name in ("C", "A", "B")]
        verdicts = classify(validators, policy)
        assert list(verdicts) == ["A", "B", "C"]

    def test_input_order_does_not_matter(self, policy):
        validators = [
            _validator("A"),
            _validator("B", delinquent=True),
            _validator("C", commission=50),
        ]
        assert classify(validators, policy) == classify(list(reversed(validators)), policy)

    def test_blacklist_wins_over_everything(self):
        policy = Policy(max_commission=10, blacklist=frozenset({"A"}))
        verdict = classify_one(_validator("A", delinquent=True, commission=90), policy)
        assert verdict == Excluded(reason=ReasonCode.BLACKLISTED)

    def test_delinquent_checked_before_commission(self, policy):
        verdict = classify_one(_validator("A", delinquent=True, commission=90), policy)
        assert verdict == Poor(reason=ReasonCode.DELINQUENT)

    def test_commission_at_cap_is_eligible(self, policy):
        assert classify_one(_validator("A", commission=10), policy) == Eligible()

    def test_insufficient_self_stake(self, policy):
        verdict = classify_one(_validator("A", self_stake=999), policy)
        assert verdict == Poor(reason=ReasonCode.INSUFFICIENT_SELF_STAKE)

    def test_stale_software(self):
        policy = Policy(min_version="1.14.0")
        assert classify_one(_validator("A", version="1.13.9"), policy) == Poor(
            reason=ReasonCode.STALE_SOFTWARE
        )
        assert classify_one(_validator("B", version="1.14"), policy) == Eligible()
        assert classify_one(_validator("C", version="v1.14.2-rc1"), policy) == Eligible()

    def test_missing_version_is_stale_only_with_minimum(self):
        assert classify_one(_validator("A", version=None), Policy()) == Eligible()
        assert classify_one(
            _validator("A", version=None), Policy(min_version="1.0.0")
        ) == Poor(reason=ReasonCode.STALE_SOFTWARE)

    def test_duplicated_identity_is_excluded_once(self, policy):
        verdicts = classify(
            [
                _validator("A", vote_account="vote-1"),
                _validator("A", vote_account="vote-2"),
                _validator("B"),
            ],
            policy,
        )
        assert verdicts == {
            "A": Excluded(reason=ReasonCode.DUPLICATE_IDENTITY),
            "B": Eligible(),
        }

    def test_shared_vote_account_excludes_both(self, policy):
        verdicts = classify(
            [
                _validator("A", vote_account="shared"),
                _validator("B", vote_account="shared"),
            ],
            policy,
        )
        assert verdicts["A"] == Excluded(reason=ReasonCode.DUPLICATE_IDENTITY)
        assert verdicts["B"] == Excluded(reason=ReasonCode.DUPLICATE_IDENTITY)

    def test_blacklist_wins_over_duplicate(self):
        policy = Policy(blacklist=frozenset({"A"}))
        verdicts = classify(
            [_validator("A", vote_account="v1"), _validator("A", vote_account="v2")],
            policy,
        )
        assert verdicts["A"] == Excluded(reason=ReasonCode.BLACKLISTED)

    def test_empty_snapshot(self, policy):
        assert classify([], policy) == {}


class TestVersions:

    def test_parse_version(self):
        assert parse_version("1.14.3-rc1") == (1, 14, 3)
        assert parse_version("v2.0") == (2, 0)
        assert parse_version("unknown") is None
        assert parse_version("") is None
        assert parse_version(None) is None

    def test_is_version_older(self):
        assert is_version_older("1.13.9", "1.14.0")
        assert not is_version_older("1.14.0", "1.14")
        assert not is_version_older("1.15", "1.14.7")
        assert is_version_older("garbage", "1.0")

    def test_invalid_minimum_raises(self):
        with pytest.raises(ValueError):
            is_version_older("1.0.0", "latest")
