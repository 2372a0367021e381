"""Ledger boundary: client protocol, JSON-RPC client and transaction signing."""

from .interface import LedgerClient
from .models import ConfirmationState, ConfirmationStatus, SignedTransaction, SubmitResult
from .rpc_client import JsonRpcLedgerClient
from .signer import sign_transaction, verify_transaction

__all__ = [
    "ConfirmationState",
    "ConfirmationStatus",
    "JsonRpcLedgerClient",
    "LedgerClient",
    "SignedTransaction",
    "SubmitResult",
    "sign_transaction",
    "verify_transaction",
]
