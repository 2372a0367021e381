"""LedgerClient protocol - pluggable ledger transport.

Implementations: JsonRpcLedgerClient (httpx), in-memory fakes in tests.
Read results are treated as an immutable snapshot for the run; retry and
timeout policy for writes lives in the executor, not the client.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from stakematic.rebalancer.models import EpochInfo, StakeAccountState, ValidatorSnapshot

from .models import ConfirmationStatus, SignedTransaction, SubmitResult


@runtime_checkable
class LedgerClient(Protocol):
    """Abstract interface for reading cluster state and submitting transactions."""

    async def get_validators(self) -> list[ValidatorSnapshot]:
        """Current validator set with vote-account status."""
        ...

    async def get_stake_accounts(self) -> list[StakeAccountState]:
        """Stake accounts managed by the staker."""
        ...

    async def get_epoch_info(self) -> EpochInfo:
        ...

    async def submit_transaction(self, transaction: SignedTransaction) -> SubmitResult:
        """Submit a signed transaction. Raises LedgerClientError on transport failure."""
        ...

    async def poll_confirmation(self, signature: str) -> ConfirmationStatus:
        """Current confirmation status of a submitted transaction."""
        ...


__all__ = ["LedgerClient"]
