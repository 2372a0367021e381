"""Settings document for the rebalancer.

Loads a YAML document into typed, validated settings. Code carries every
default; the YAML only overrides. Validation happens here, once, so the
core only ever sees an already-typed ``Policy``.

Example::

    policy:
      max_commission: 10
      min_self_stake: 1000
      blacklist: [IdentityKeyA]
      max_concentration: 0.1
      min_version: "1.14.0"
    budget: 1000000000000
    reserve_account: ReserveStakeAccount
    account_pool: [PoolAccount1, PoolAccount2]
    executor:
      max_attempts: 3
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from stakematic.rebalancer.errors import ConfigError
from stakematic.rebalancer.models import Policy


class ExecutorSettings(BaseModel):
    """Batching, retry and timeout policy for transaction submission."""

    max_ops_per_transaction: int = Field(default=4, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=1.0, ge=0.0)
    backoff_max: float = Field(default=8.0, ge=0.0)
    confirmation_timeout: float = Field(default=60.0, gt=0.0)
    poll_interval: float = Field(default=2.0, gt=0.0)
    run_timeout: float = Field(default=600.0, gt=0.0)


class RebalanceSettings(BaseModel):
    """Everything a run needs besides the ledger client and wallet."""

    policy: Policy = Field(default_factory=Policy)
    budget: int | None = Field(default=None, ge=0)
    reserve_account: str = Field(min_length=1)
    account_pool: list[str] = Field(default_factory=list)
    split_decreases: bool = False
    report_dir: str | None = None
    webhook_url: str | None = None
    executor: ExecutorSettings = Field(default_factory=ExecutorSettings)


def parse_settings(data: Any) -> RebalanceSettings:
    """Validate an already-parsed settings mapping.

    Raises:
        ConfigError: The document is not a mapping or fails validation.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"settings document must be a mapping, got {type(data).__name__}")
    try:
        return RebalanceSettings.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"invalid settings: {e}") from e


def read_settings_document(path: str | Path) -> dict[str, Any]:
    """Read a YAML settings file into a plain mapping, without validating it.

    Raises:
        ConfigError: Missing file, unreadable YAML or not a mapping.
    """
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"settings file not found: {path}")
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read settings {path}: {e}") from e
    data = data or {}
    if not isinstance(data, dict):
        raise ConfigError(f"settings document must be a mapping, got {type(data).__name__}")
    return data


def load_settings(path: str | Path) -> RebalanceSettings:
    """Load and validate a YAML settings file.

    Raises:
        ConfigError: Missing file, unreadable YAML or invalid content.
    """
    return parse_settings(read_settings_document(path))


def sanitize_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Settings as a loggable dict (webhook URLs can embed tokens)."""
    out = dict(data)
    if out.get("webhook_url"):
        out["webhook_url"] = "***"
    return out


__all__ = [
    "ExecutorSettings",
    "RebalanceSettings",
    "load_settings",
    "parse_settings",
    "read_settings_document",
    "sanitize_dict",
]
