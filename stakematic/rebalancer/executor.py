"""Transaction executor: operation chains -> signed, submitted, confirmed batches.

Per-operation state machine:

    Pending -> Submitted -> Confirmed
                         -> Failed(Rejected)   ledger rejected it, never retried
                         -> Failed(Timeout)    not finalized in time, manual follow-up
    Pending -> Failed(Transient)               submission kept failing, attempts exhausted
    Pending -> Failed(Timeout)                 run deadline passed during submission
    Pending -> Skipped                         dry run, run deadline, or earlier step failed

One task per validator chain runs concurrently; inside a chain, batches run
strictly in order and a failure aborts the rest of that chain. Retries and
polling are bounded loops, and every ledger call is cancelled once the run
deadline passes, so every run terminates.
"""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import bittensor as bt
import httpx

from stakematic.config.settings import ExecutorSettings
from stakematic.ledger.models import ConfirmationState
from stakematic.ledger.signer import sign_transaction

from .errors import FailureKind, LedgerClientError, SubmissionError
from .models import Operation, OperationChain
from .report import OperationOutcome, OperationStatus, ReportCollector, RunReport

if TYPE_CHECKING:
    from stakematic.ledger.interface import LedgerClient


def batch_operations(
    operations: list[Operation], max_ops: int,
) -> list[list[Operation]]:
    """Group consecutive operations into transactions.

    Operations share a transaction only when no two of them touch the same
    account, so an operation never lands in the same transaction as the
    step it depends on (e.g. a Split and the Deactivate of its new account).
    """
    if max_ops < 1:
        raise ValueError(f"max_ops must be >= 1, got {max_ops}")

    batches: list[list[Operation]] = []
    current: list[Operation] = []
    touched: set[str] = set()
    for op in operations:
        accounts = op.accounts()
        if current and (len(current) >= max_ops or accounts & touched):
            batches.append(current)
            current, touched = [], set()
        current.append(op)
        touched |= accounts
    if current:
        batches.append(current)
    return batches


@dataclass
class _BatchResult:
    status: OperationStatus
    attempts: int
    failure: FailureKind | None = None
    reason: str = ""
    signature: str | None = None


class TransactionExecutor:
    """Submits operation chains to the ledger and reports every outcome."""

    def __init__(
        self,
        client: LedgerClient,
        wallet: Any,
        settings: ExecutorSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.wallet = wallet
        self.settings = settings or ExecutorSettings()
        self._sleep = sleep
        self._clock = clock

    async def execute(
        self, chains: list[OperationChain], dry_run: bool = False,
    ) -> RunReport:
        """Execute all chains and return the run report.

        Args:
            chains: Resolver output, one chain per validator.
            dry_run: Skip submission; every operation is reported Skipped.
        """
        collector = ReportCollector()

        if dry_run:
            for chain in chains:
                for step, op in enumerate(chain.operations):
                    collector.record(OperationOutcome(
                        validator=chain.validator, step=step, operation=op,
                        status=OperationStatus.SKIPPED, reason="dry run",
                    ))
        else:
            deadline = self._clock() + self.settings.run_timeout
            await asyncio.gather(*(
                self._run_chain(chain, collector, deadline) for chain in chains
            ))

        report = RunReport(
            outcomes=collector.outcomes(),
            dry_run=dry_run,
            finished_at=datetime.now(timezone.utc),
        )
        bt.logging.info({
            "executor": {
                "chains": len(chains),
                "dry_run": dry_run,
                "counts": report.counts(),
            }
        })
        return report

    # -- Chains --

    async def _run_chain(
        self, chain: OperationChain, collector: ReportCollector, deadline: float,
    ) -> None:
        """Run one validator's chain. Never raises; failures end up in the report."""
        outcomes: dict[int, OperationOutcome] = {}
        steps = list(enumerate(chain.operations))
        batches = batch_operations(
            chain.operations, self.settings.max_ops_per_transaction,
        )

        def skip_rest(reason: str) -> None:
            for step, op in steps:
                if step not in outcomes:
                    outcomes[step] = OperationOutcome(
                        validator=chain.validator, step=step, operation=op,
                        status=OperationStatus.SKIPPED, reason=reason,
                    )

        try:
            cursor = 0
            for batch in batches:
                batch_steps = steps[cursor:cursor + len(batch)]
                cursor += len(batch)

                if self._clock() >= deadline:
                    skip_rest("run timeout reached before submission")
                    break

                result = await self._execute_batch(batch, deadline)
                for step, op in batch_steps:
                    outcomes[step] = OperationOutcome(
                        validator=chain.validator, step=step, operation=op,
                        status=result.status, failure=result.failure,
                        reason=result.reason, attempts=result.attempts,
                        signature=result.signature,
                    )

                if result.status == OperationStatus.FAILED:
                    first = batch_steps[0][0]
                    bt.logging.warning({
                        "executor_chain_aborted": {
                            "validator": chain.validator,
                            "step": first,
                            "failure": result.failure.value if result.failure else None,
                            "reason": result.reason,
                        }
                    })
                    skip_rest(f"aborted: step {first} failed ({result.reason})")
                    break
        except Exception as e:
            bt.logging.error({"executor_chain_error": {"validator": chain.validator, "error": str(e)}})
            for step, op in steps:
                if step not in outcomes:
                    outcomes[step] = OperationOutcome(
                        validator=chain.validator, step=step, operation=op,
                        status=OperationStatus.FAILED, reason=f"executor error: {e}",
                    )
        finally:
            for outcome in outcomes.values():
                collector.record(outcome)

    # -- Batches --

    async def _until_deadline(self, call: Awaitable[Any], deadline: float) -> Any:
        """Await a ledger call, cancelling it once the run deadline passes."""
        return await asyncio.wait_for(call, timeout=max(0.0, deadline - self._clock()))

    def _backoff(self, attempt: int) -> float:
        return min(self.settings.backoff_max, self.settings.backoff_base * 2 ** (attempt - 1))

    async def _execute_batch(self, batch: list[Operation], deadline: float) -> _BatchResult:
        """Submit one batch and wait for it. Failures come back as a Failed result."""
        result = _BatchResult(status=OperationStatus.PENDING, attempts=0)
        try:
            await self._submit(batch, deadline, result)
            await self._await_confirmation(result, deadline)
        except SubmissionError as e:
            result.status = OperationStatus.FAILED
            result.failure = e.kind
            result.reason = e.message
        else:
            result.status = OperationStatus.CONFIRMED
        return result

    async def _submit(self, batch: list[Operation], deadline: float, result: _BatchResult) -> None:
        """Submit with bounded retries on transient errors.

        Raises:
            SubmissionError: Rejected, retries exhausted, or run deadline hit.
        """
        # Signed once: a retry resubmits the identical transaction.
        transaction = sign_transaction(batch, self.wallet)
        last_error = ""

        while result.attempts < self.settings.max_attempts:
            if result.attempts and self._clock() >= deadline:
                raise SubmissionError(
                    FailureKind.TIMEOUT, f"run timeout during retries: {last_error}",
                )
            result.attempts += 1
            try:
                response = await self._until_deadline(
                    self.client.submit_transaction(transaction), deadline,
                )
            except asyncio.TimeoutError as e:
                raise SubmissionError(
                    FailureKind.TIMEOUT, "run timeout while awaiting submission",
                ) from e
            except LedgerClientError as e:
                if not e.transient:
                    raise SubmissionError(FailureKind.REJECTED, str(e)) from e
                last_error = str(e)
            except httpx.TransportError as e:
                last_error = str(e) or type(e).__name__
            else:
                result.signature = response.signature
                if response.error:
                    raise SubmissionError(FailureKind.REJECTED, response.error)
                if not response.signature:
                    raise SubmissionError(FailureKind.REJECTED, "ledger returned no signature")
                result.status = OperationStatus.SUBMITTED
                bt.logging.debug({
                    "executor_submitted": {
                        "signature": response.signature,
                        "ops": [op.kind for op in batch],
                        "attempts": result.attempts,
                    }
                })
                return

            if result.attempts < self.settings.max_attempts:
                wait = self._backoff(result.attempts)
                bt.logging.warning({
                    "executor_retry": {"attempt": result.attempts, "wait": wait, "error": last_error}
                })
                await self._sleep(wait)

        raise SubmissionError(FailureKind.TRANSIENT, last_error)

    async def _await_confirmation(self, result: _BatchResult, deadline: float) -> None:
        """Poll until finalized.

        Raises:
            SubmissionError: Rejected on-ledger, or not finalized within the
                confirmation timeout or the run deadline.
        """
        signature = result.signature
        interval = self.settings.poll_interval
        max_polls = max(1, math.ceil(self.settings.confirmation_timeout / interval))

        for poll in range(max_polls):
            if self._clock() >= deadline:
                raise SubmissionError(
                    FailureKind.TIMEOUT, "run timeout while awaiting confirmation",
                )
            try:
                status = await self._until_deadline(
                    self.client.poll_confirmation(signature), deadline,
                )
            except asyncio.TimeoutError as e:
                raise SubmissionError(
                    FailureKind.TIMEOUT, "run timeout while awaiting confirmation",
                ) from e
            except (LedgerClientError, httpx.TransportError) as e:
                bt.logging.debug({"executor_poll_error": {"signature": signature, "error": str(e)}})
            else:
                if status.status == ConfirmationState.FINALIZED:
                    return
                if status.status == ConfirmationState.FAILED:
                    raise SubmissionError(
                        FailureKind.REJECTED, status.error or "transaction failed",
                    )
            if poll < max_polls - 1:
                await self._sleep(interval)

        raise SubmissionError(
            FailureKind.TIMEOUT,
            f"not finalized within {self.settings.confirmation_timeout:g}s",
        )


__all__ = ["TransactionExecutor", "batch_operations"]
