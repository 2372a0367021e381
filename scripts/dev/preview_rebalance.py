"""Preview a rebalance offline from a saved cluster snapshot.

Runs classify -> plan -> resolve against a snapshot JSON file and prints,
per validator, the verdict, current and target stake, and the operations
that would be submitted. Nothing is signed or sent.

Snapshot file format is a serialized ClusterSnapshot:
    {"validators": [...], "stake_accounts": [...], "epoch": {"epoch": 512}}

Usage:
    uv run python scripts/dev/preview_rebalance.py --snapshot snap.json --config stakematic.yaml
    uv run python scripts/dev/preview_rebalance.py --snapshot snap.json --config stakematic.yaml --budget 5000000 --json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from stakematic.config.settings import load_settings
from stakematic.rebalancer.errors import ConfigError
from stakematic.rebalancer.models import ClusterSnapshot, describe_verdict
from stakematic.rebalancer.resolver import delegated_by_validator
from stakematic.rebalancer.runtime import prepare_run


def _describe_op(op) -> str:
    fields = op.model_dump(exclude={"kind"})
    return f"{op.kind}(" + ", ".join(f"{k}={v}" for k, v in fields.items()) + ")"


def main() -> None:
    parser = argparse.ArgumentParser(description="Preview a stake rebalance from a snapshot file")
    parser.add_argument("--snapshot", type=str, required=True, help="ClusterSnapshot JSON file")
    parser.add_argument("--config", type=str, required=True, help="Settings YAML file")
    parser.add_argument("--budget", type=int, default=None, help="Override the settings budget")
    parser.add_argument("--json", action="store_true", help="Print the plan as JSON")
    args = parser.parse_args()

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"Config error: {e}")
        sys.exit(1)

    try:
        snapshot = ClusterSnapshot.model_validate_json(Path(args.snapshot).read_text())
    except (OSError, ValidationError) as e:
        print(f"Cannot read snapshot {args.snapshot}: {e}")
        sys.exit(1)

    run_plan = prepare_run(snapshot, settings, args.budget)
    current = delegated_by_validator(snapshot.stake_accounts, snapshot.validators)
    chains = {c.validator: c for c in run_plan.resolution.chains}

    if args.json:
        print(json.dumps({
            "budget": run_plan.allocation.budget,
            "verdicts": {k: describe_verdict(v) for k, v in run_plan.verdicts.items()},
            "targets": run_plan.allocation.targets,
            "current": current,
            "chains": {k: [op.model_dump(mode="json") for op in c.operations] for k, c in chains.items()},
            "notes": run_plan.resolution.notes,
            "errors": run_plan.resolution.errors,
            "warnings": run_plan.allocation.warnings,
        }, indent=2, sort_keys=True))
        return

    epoch = snapshot.epoch.epoch if snapshot.epoch else "?"
    print(f"\nRebalance Preview (epoch {epoch}, budget {run_plan.allocation.budget:,})")
    print(f"{'=' * 96}")
    print(f"\n{'Identity':<20}  {'Verdict':<30}  {'Current':>14}  {'Target':>14}  {'Delta':>14}")
    print(f"{'-' * 20}  {'-' * 30}  {'-' * 14}  {'-' * 14}  {'-' * 14}")

    for identity, target in run_plan.allocation.targets.items():
        verdict = run_plan.verdicts.get(identity)
        label = describe_verdict(verdict) if verdict is not None else "(not in snapshot)"
        have = current.get(identity, 0)
        print(f"{identity[:20]:<20}  {label:<30}  {have:>14,}  {target:>14,}  {target - have:>+14,}")

        chain = chains.get(identity)
        if chain is not None:
            for step, op in enumerate(chain.operations):
                print(f"{'':<22}{step}. {_describe_op(op)}")
        if identity in run_plan.resolution.notes:
            print(f"{'':<22}note: {run_plan.resolution.notes[identity]}")
        if identity in run_plan.resolution.errors:
            print(f"{'':<22}UNRESOLVED: {run_plan.resolution.errors[identity]}")

    print(f"\nAllocated {run_plan.allocation.total:,} of {run_plan.allocation.budget:,}; "
          f"{len(run_plan.resolution.operations)} operations in {len(chains)} chains")
    for warning in run_plan.allocation.warnings:
        print(f"WARNING: {warning}")


if __name__ == "__main__":
    main()
