"""Tests for loading the YAML settings document."""

import pytest

from stakematic.config.settings import (
    ExecutorSettings,
    load_settings,
    parse_settings,
    read_settings_document,
    sanitize_dict,
)
from stakematic.rebalancer.errors import ConfigError

SETTINGS_YAML = """
policy:
  max_commission: 10
  min_self_stake: 1000
  blacklist: [IdentityKeyA, IdentityKeyB]
  max_concentration: 0.1
  min_version: "1.14.0"
  min_stake_change: 5000
budget: 1000000000000
reserve_account: ReserveStakeAccount
account_pool: [PoolAccount1, PoolAccount2]
executor:
  max_attempts: 5
"""


def _write(tmp_path, text: str):
    path = tmp_path / "stakematic.yaml"
    path.write_text(text)
    return path


class TestLoadSettings:

    def test_load_full_document(self, tmp_path):
        settings = load_settings(_write(tmp_path, SETTINGS_YAML))

        assert settings.policy.max_commission == 10
        assert settings.policy.blacklist == frozenset({"IdentityKeyA", "IdentityKeyB"})
        assert settings.policy.max_concentration == 0.1
        assert settings.budget == 1_000_000_000_000
        assert settings.account_pool == ["PoolAccount1", "PoolAccount2"]
        assert settings.executor.max_attempts == 5
        # untouched fields keep code defaults
        assert settings.executor.max_ops_per_transaction == ExecutorSettings().max_ops_per_transaction
        assert settings.policy.dust_threshold == 0

    def test_minimal_document(self, tmp_path):
        settings = load_settings(_write(tmp_path, "reserve_account: R\n"))
        assert settings.budget is None
        assert settings.policy.max_concentration == 1.0
        assert settings.split_decreases is False

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_settings(tmp_path / "nope.yaml")

    def test_invalid_yaml(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(_write(tmp_path, "policy: [unclosed\n"))

    def test_document_must_be_a_mapping(self, tmp_path):
        with pytest.raises(ConfigError, match="mapping"):
            read_settings_document(_write(tmp_path, "- a\n- b\n"))

    @pytest.mark.parametrize("document", [
        {"reserve_account": "R", "policy": {"max_concentration": 1.5}},
        {"reserve_account": "R", "policy": {"max_concentration": 0}},
        {"reserve_account": "R", "policy": {"max_commission": 101}},
        {"reserve_account": "R", "budget": -1},
        {"reserve_account": "R", "executor": {"max_attempts": 0}},
        {"policy": {}},
    ])
    def test_invalid_values(self, document):
        with pytest.raises(ConfigError):
            parse_settings(document)

    def test_sanitize_hides_webhook(self):
        assert sanitize_dict({"webhook_url": "https://hooks.example/T0/secret", "budget": 1}) == {
            "webhook_url": "***",
            "budget": 1,
        }
