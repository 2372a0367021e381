"""Transaction signing and verification using bittensor keypairs.

The staker signs each transaction batch with its hotkey. The signature
covers the canonical hash of the operations, the signer address and a
per-batch nonce, so the same batch can be resubmitted unchanged on retry.
"""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Any

from stakematic.shared.determinism import compute_hash

from .models import SignedTransaction

if TYPE_CHECKING:
    from stakematic.rebalancer.models import Operation


def _signing_payload(operations: list[Operation], signer: str, nonce: str) -> str:
    return compute_hash({
        "operations": [op.model_dump(mode="json") for op in operations],
        "signer": signer,
        "nonce": nonce,
    })


def sign_transaction(
    operations: list[Operation],
    wallet: Any,
    nonce: str | None = None,
) -> SignedTransaction:
    """Sign a batch of operations with the wallet's hotkey.

    Args:
        operations: Operations to include, in order.
        wallet: Bittensor wallet with hotkey access.
        nonce: Batch nonce; a random one is generated when omitted.

    Returns:
        SignedTransaction with hex-encoded signature.
    """
    signer = wallet.hotkey.ss58_address
    nonce = nonce or secrets.token_hex(8)
    payload_hash = _signing_payload(operations, signer, nonce)
    signature = wallet.hotkey.sign(payload_hash.encode())
    return SignedTransaction(
        operations=list(operations),
        signer=signer,
        nonce=nonce,
        payload_hash=payload_hash,
        signature=signature.hex() if isinstance(signature, bytes) else str(signature),
    )


def verify_transaction(transaction: SignedTransaction, hotkey_ss58: str) -> bool:
    """Verify a transaction signature against a hotkey.

    Returns:
        True if the payload hash matches the operations and the signature
        is valid for the given hotkey.
    """
    import bittensor as bt

    if not transaction.signature or transaction.signer != hotkey_ss58:
        return False

    payload_hash = _signing_payload(transaction.operations, transaction.signer, transaction.nonce)
    if payload_hash != transaction.payload_hash:
        return False

    try:
        sig_bytes = bytes.fromhex(transaction.signature)
    except ValueError:
        return False

    try:
        keypair = bt.Keypair(ss58_address=hotkey_ss58)
        return keypair.verify(payload_hash.encode(), sig_bytes)
    except Exception:
        return False


__all__ = ["sign_transaction", "verify_transaction"]
