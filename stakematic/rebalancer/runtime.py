"""Rebalancer runtime.

One run: snapshot -> classify -> plan -> resolve -> execute -> report.
The loop reruns once per epoch; the last rebalanced epoch is the only state
carried between runs and only decides *when* to run.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import bittensor as bt

from stakematic.config.settings import RebalanceSettings

from .classifier import classify
from .executor import TransactionExecutor
from .models import Allocation, ClusterSnapshot, Poor, Verdict, describe_verdict
from .notifier import WebhookNotifier
from .planner import plan
from .report import RunReport
from .resolver import AccountPool, ResolutionPlan, ResolveOptions, delegated_by_validator, resolve
from .snapshot import ClusterSnapshotReader

if TYPE_CHECKING:
    from stakematic.ledger.interface import LedgerClient


@dataclass
class RunPlan:
    """Everything decided for a run before any ledger mutation."""

    snapshot: ClusterSnapshot
    verdicts: dict[str, Verdict]
    allocation: Allocation
    resolution: ResolutionPlan

    def to_report(self, report: RunReport) -> RunReport:
        """Fold the planning results into the executor's report."""
        report.epoch = self.snapshot.epoch.epoch if self.snapshot.epoch else None
        report.budget = self.allocation.budget
        report.verdicts = {k: describe_verdict(v) for k, v in self.verdicts.items()}
        report.targets = dict(self.allocation.targets)
        report.notes = dict(self.resolution.notes)
        report.resolution_errors = dict(self.resolution.errors)
        report.warnings = list(self.allocation.warnings)
        if self.resolution.merge_candidates:
            report.warnings.append(
                f"accounts left below dust threshold: {sorted(self.resolution.merge_candidates)}"
            )
        return report


def prepare_run(
    snapshot: ClusterSnapshot,
    settings: RebalanceSettings,
    budget: int | None = None,
) -> RunPlan:
    """Classify, plan and resolve against a snapshot. Pure; touches no ledger.

    Budget precedence: ``budget`` argument, then ``settings.budget``, then
    the delegated stake plus the reserve balance in the snapshot.
    """
    policy = settings.policy
    if budget is None:
        if settings.budget is not None:
            budget = settings.budget
        else:
            budget = snapshot.deployable_stake(settings.reserve_account)

    verdicts = classify(snapshot.validators, policy)
    current = delegated_by_validator(snapshot.stake_accounts, snapshot.validators)
    allocation = plan(verdicts, snapshot.validators, budget, current, policy)

    existing = {a.account for a in snapshot.stake_accounts}
    pool = AccountPool(h for h in settings.account_pool if h not in existing)

    reserve = next(
        (a for a in snapshot.stake_accounts if a.account == settings.reserve_account), None,
    )
    options = ResolveOptions.from_policy(
        policy,
        settings.reserve_account,
        available_reserve=reserve.balance if reserve is not None else None,
        split_decreases=settings.split_decreases,
    )
    retained = {k for k, v in verdicts.items() if isinstance(v, Poor)}

    resolution = resolve(
        allocation,
        snapshot.stake_accounts,
        validators=snapshot.validators,
        pool=pool,
        options=options,
        retained=retained,
    )
    return RunPlan(
        snapshot=snapshot, verdicts=verdicts, allocation=allocation, resolution=resolution,
    )


class RebalanceRuntime:
    """Drives rebalancing runs against one ledger client."""

    def __init__(
        self,
        client: LedgerClient,
        wallet: Any,
        settings: RebalanceSettings,
        *,
        executor: TransactionExecutor | None = None,
        notifier: WebhookNotifier | None = None,
        interval: float = 300.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.reader = ClusterSnapshotReader(client)
        self.executor = executor or TransactionExecutor(client, wallet, settings.executor)
        if notifier is None and settings.webhook_url:
            notifier = WebhookNotifier(settings.webhook_url)
        self.notifier = notifier
        self.interval = interval
        self._sleep = sleep
        self._running = False
        self.last_epoch: int | None = None

    async def run_once(self, budget: int | None = None, dry_run: bool = False) -> RunReport:
        """Execute one full run.

        Raises:
            SnapshotError: Ledger state could not be read; nothing was submitted.
            ValueError: Invalid budget.
        """
        started_at = datetime.now(timezone.utc)
        snapshot = await self.reader.fetch()
        run_plan = prepare_run(snapshot, self.settings, budget)

        for identity, message in run_plan.resolution.errors.items():
            bt.logging.warning({"resolver": {"validator": identity, "error": message}})
        bt.logging.info({
            "rebalance_plan": {
                "budget": run_plan.allocation.budget,
                "allocated": run_plan.allocation.total,
                "chains": len(run_plan.resolution.chains),
                "operations": len(run_plan.resolution.operations),
                "warnings": run_plan.allocation.warnings,
            }
        })

        executed = await self.executor.execute(run_plan.resolution.chains, dry_run=dry_run)
        report = run_plan.to_report(executed)
        report.started_at = started_at

        bt.logging.info({"rebalance_report": {
            "epoch": report.epoch,
            "ok": report.ok,
            "counts": report.counts(),
            "fingerprint": report.fingerprint(),
        }})
        self._write_report(report)
        if self.notifier is not None:
            await self.notifier.notify(report)
        return report

    def _write_report(self, report: RunReport) -> Path | None:
        if not self.settings.report_dir:
            return None
        out_dir = Path(self.settings.report_dir).expanduser()
        stamp = report.started_at.strftime("%Y%m%dT%H%M%SZ")
        path = out_dir / f"rebalance-{report.epoch if report.epoch is not None else 'na'}-{stamp}.json"
        try:
            out_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(report.summary(), indent=2, sort_keys=True))
        except OSError as e:
            bt.logging.error({"rebalance_report_file_error": {"path": str(path), "error": str(e)}})
            report.warnings.append(f"report file not written: {e}")
            return None
        bt.logging.debug({"rebalance_report_file": str(path)})
        return path

    async def run(self, budget: int | None = None, dry_run: bool = False) -> None:
        """Rebalance once per epoch until stopped."""
        self._running = True
        bt.logging.info({
            "rebalance_runtime": {
                "status": "starting",
                "interval": self.interval,
                "dry_run": dry_run,
            }
        })

        consecutive_errors = 0
        max_errors = 10

        while self._running:
            try:
                await self._cycle(budget, dry_run)
                consecutive_errors = 0
            except asyncio.CancelledError:
                break
            except Exception as e:
                consecutive_errors += 1
                bt.logging.error({"rebalance_cycle_error": str(e), "consecutive": consecutive_errors})
                if consecutive_errors >= max_errors:
                    bt.logging.error({"rebalance_runtime": "too_many_errors, stopping"})
                    break
                await self._sleep(min(30, 5 * consecutive_errors))
                continue

            if not self._running:
                break
            try:
                await self._sleep(self.interval)
            except asyncio.CancelledError:
                break

        self._running = False
        bt.logging.info({"rebalance_runtime": "stopped"})

    def stop(self) -> None:
        """Signal the runtime to stop."""
        self._running = False

    async def _cycle(self, budget: int | None, dry_run: bool) -> RunReport | None:
        epoch = (await self.client.get_epoch_info()).epoch
        if epoch == self.last_epoch:
            bt.logging.debug({"rebalance_cycle": "epoch_unchanged", "epoch": epoch})
            return None
        report = await self.run_once(budget=budget, dry_run=dry_run)
        self.last_epoch = epoch
        return report


__all__ = ["RebalanceRuntime", "RunPlan", "prepare_run"]
