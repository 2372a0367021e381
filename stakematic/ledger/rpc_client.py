"""JSON-RPC 2.0 LedgerClient over HTTP.

Reads retry on transport errors with exponential backoff. Writes never
retry here: the executor owns submission retry policy and resubmits the
same signed transaction.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any, Awaitable, Callable

import bittensor as bt
import httpx
from pydantic import TypeAdapter, ValidationError

from stakematic.rebalancer.errors import LedgerClientError
from stakematic.rebalancer.models import EpochInfo, StakeAccountState, ValidatorSnapshot

from .models import ConfirmationStatus, SignedTransaction, SubmitResult

_VALIDATORS = TypeAdapter(list[ValidatorSnapshot])
_STAKE_ACCOUNTS = TypeAdapter(list[StakeAccountState])


class JsonRpcLedgerClient:
    """Ledger client speaking JSON-RPC 2.0 to a single endpoint."""

    def __init__(
        self,
        rpc_url: str,
        staker: str | None = None,
        timeout: float = 30.0,
        max_retries: int = 3,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.rpc_url = rpc_url
        self.staker = staker
        self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._max_retries = max(1, max_retries)
        self._ids = itertools.count(1)
        self._sleep = sleep

    async def close(self) -> None:
        await self._client.aclose()

    # -- Transport --

    async def _post(self, method: str, params: list[Any]) -> Any:
        """Single JSON-RPC call. Maps failures onto LedgerClientError."""
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self.rpc_url, json=payload)
        except httpx.TransportError as e:
            raise LedgerClientError(f"{method}: {str(e) or type(e).__name__}", transient=True) from e

        if resp.status_code == 429 or resp.status_code >= 500:
            raise LedgerClientError(
                f"{method}: HTTP {resp.status_code}", transient=True, code=resp.status_code,
            )
        if resp.status_code != 200:
            raise LedgerClientError(
                f"{method}: HTTP {resp.status_code} {resp.text}", code=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise LedgerClientError(f"{method}: malformed response body") from e

        error = body.get("error") if isinstance(body, dict) else None
        if error:
            if not isinstance(error, dict):
                raise LedgerClientError(f"{method}: {error}")
            raise LedgerClientError(
                f"{method}: {error.get('message', error)}", code=error.get("code"),
            )
        if not isinstance(body, dict) or "result" not in body:
            raise LedgerClientError(f"{method}: response has no result")
        return body["result"]

    async def _call(self, method: str, params: list[Any] | None = None) -> Any:
        """Read call with retry on transient failures."""
        params = params or []
        for attempt in range(self._max_retries):
            try:
                return await self._post(method, params)
            except LedgerClientError as e:
                if not e.transient or attempt == self._max_retries - 1:
                    raise
                wait = 2 ** attempt
                bt.logging.warning({"ledger_rpc_client": {"method": method, "retry": attempt, "wait": wait, "error": str(e)}})
                await self._sleep(wait)
        raise LedgerClientError(f"{method}: max retries exceeded", transient=True)

    # -- LedgerClient interface --

    async def get_validators(self) -> list[ValidatorSnapshot]:
        result = await self._call("getValidators")
        try:
            return _VALIDATORS.validate_python(result)
        except ValidationError as e:
            raise LedgerClientError(f"getValidators: invalid result: {e}") from e

    async def get_stake_accounts(self) -> list[StakeAccountState]:
        result = await self._call("getStakeAccounts", [self.staker] if self.staker else [])
        try:
            return _STAKE_ACCOUNTS.validate_python(result)
        except ValidationError as e:
            raise LedgerClientError(f"getStakeAccounts: invalid result: {e}") from e

    async def get_epoch_info(self) -> EpochInfo:
        result = await self._call("getEpochInfo")
        try:
            return EpochInfo.model_validate(result)
        except ValidationError as e:
            raise LedgerClientError(f"getEpochInfo: invalid result: {e}") from e

    async def submit_transaction(self, transaction: SignedTransaction) -> SubmitResult:
        try:
            result = await self._post(
                "submitTransaction", [transaction.model_dump(mode="json")],
            )
        except LedgerClientError as e:
            if e.transient:
                raise
            # The node answered and refused the transaction.
            return SubmitResult(error=str(e))
        if isinstance(result, str):
            return SubmitResult(signature=result)
        return SubmitResult.model_validate(result)

    async def poll_confirmation(self, signature: str) -> ConfirmationStatus:
        result = await self._call("getTransactionStatus", [signature])
        try:
            return ConfirmationStatus.model_validate(result)
        except ValidationError as e:
            raise LedgerClientError(f"getTransactionStatus: invalid result: {e}") from e


__all__ = ["JsonRpcLedgerClient"]
