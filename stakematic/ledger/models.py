"""Write-side ledger payloads: signed transactions, submit and confirmation results."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from stakematic.rebalancer.models import Operation


class SignedTransaction(BaseModel):
    """A batch of operations signed by the staker key."""

    operations: list[Operation] = Field(min_length=1)
    signer: str
    nonce: str
    payload_hash: str
    signature: str = ""


class SubmitResult(BaseModel):
    """Immediate response to a submission. ``error`` means the ledger rejected it."""

    signature: str | None = None
    error: str | None = None


class ConfirmationState(str, Enum):
    PENDING = "pending"
    FINALIZED = "finalized"
    FAILED = "failed"


class ConfirmationStatus(BaseModel):
    status: ConfirmationState
    error: str | None = None


__all__ = ["ConfirmationState", "ConfirmationStatus", "SignedTransaction", "SubmitResult"]
