"""Shared fakes: in-memory ledger, wallet, clock."""

from __future__ import annotations

import hashlib
from typing import Any

import pytest

from stakematic.ledger.models import (
    ConfirmationState,
    ConfirmationStatus,
    SignedTransaction,
    SubmitResult,
)
from stakematic.rebalancer.models import EpochInfo, StakeAccountState, ValidatorSnapshot


class FakeHotkey:
    ss58_address = "5FakeStakerHotkey"

    def sign(self, data: bytes) -> bytes:
        return hashlib.sha256(b"fake-key:" + data).digest()


class FakeWallet:
    def __init__(self) -> None:
        self.hotkey = FakeHotkey()


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep stand-in: records delays and advances an optional clock."""

    def __init__(self, clock: FakeClock | None = None) -> None:
        self.calls: list[float] = []
        self.clock = clock

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeLedger:
    """In-memory LedgerClient.

    ``submit_script`` is consumed one entry per submission: an exception is
    raised, a SubmitResult is returned. Once empty, submissions succeed.
    ``poll_script`` maps a signature to the statuses returned by successive
    polls; the last one repeats. Unscripted signatures finalize at once.
    Transactions touching ``reject_accounts`` are refused; touching
    ``crash_accounts`` raises a non-ledger exception.
    """

    def __init__(
        self,
        validators: list[ValidatorSnapshot] | None = None,
        stake_accounts: list[StakeAccountState] | None = None,
        epoch: int = 100,
        clock: FakeClock | None = None,
        submit_cost: float = 0.0,
        poll_cost: float = 0.0,
    ) -> None:
        self.validators = validators or []
        self.stake_accounts = stake_accounts or []
        self.epoch = epoch
        self.clock = clock
        self.submit_cost = submit_cost
        self.poll_cost = poll_cost
        self.submit_script: list[Any] = []
        self.poll_script: dict[str, list[ConfirmationStatus]] = {}
        self.submitted: list[SignedTransaction] = []
        self.polls: list[str] = []
        self.read_error: Exception | None = None
        self.reject_accounts: set[str] = set()
        self.crash_accounts: set[str] = set()

    async def get_validators(self) -> list[ValidatorSnapshot]:
        if self.read_error is not None:
            raise self.read_error
        return list(self.validators)

    async def get_stake_accounts(self) -> list[StakeAccountState]:
        return list(self.stake_accounts)

    async def get_epoch_info(self) -> EpochInfo:
        if self.read_error is not None:
            raise self.read_error
        return EpochInfo(epoch=self.epoch)

    async def submit_transaction(self, transaction: SignedTransaction) -> SubmitResult:
        self.submitted.append(transaction)
        if self.clock is not None:
            self.clock.advance(self.submit_cost)
        touched = set().union(*(op.accounts() for op in transaction.operations))
        if touched & self.crash_accounts:
            raise RuntimeError("ledger client crashed")
        if touched & self.reject_accounts:
            return SubmitResult(error="rejected by ledger")
        if self.submit_script:
            step = self.submit_script.pop(0)
            if isinstance(step, Exception):
                raise step
            return step
        return SubmitResult(signature=f"sig-{transaction.nonce}")

    async def poll_confirmation(self, signature: str) -> ConfirmationStatus:
        self.polls.append(signature)
        if self.clock is not None:
            self.clock.advance(self.poll_cost)
        script = self.poll_script.get(signature)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return ConfirmationStatus(status=ConfirmationState.FINALIZED)


@pytest.fixture
def wallet() -> FakeWallet:
    return FakeWallet()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()
