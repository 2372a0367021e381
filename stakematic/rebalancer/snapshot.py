"""Cluster snapshot: one consistent read of ledger state per run."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import bittensor as bt
import httpx
from pydantic import ValidationError

from .errors import LedgerClientError, SnapshotError
from .models import ClusterSnapshot

if TYPE_CHECKING:
    from stakematic.ledger.interface import LedgerClient


class ClusterSnapshotReader:
    """Reads validators, stake accounts and epoch info concurrently."""

    def __init__(self, client: LedgerClient):
        self.client = client

    async def fetch(self) -> ClusterSnapshot:
        """Read the full cluster state.

        Raises:
            SnapshotError: Any read failed. Nothing partial is returned.
        """
        try:
            validators, accounts, epoch = await asyncio.gather(
                self.client.get_validators(),
                self.client.get_stake_accounts(),
                self.client.get_epoch_info(),
            )
            snapshot = ClusterSnapshot(
                validators=validators, stake_accounts=accounts, epoch=epoch,
            )
        except (LedgerClientError, httpx.HTTPError, ValidationError) as e:
            raise SnapshotError(f"cannot read cluster state: {e}") from e

        bt.logging.info({
            "snapshot": {
                "epoch": snapshot.epoch.epoch if snapshot.epoch else None,
                "validators": len(snapshot.validators),
                "stake_accounts": len(snapshot.stake_accounts),
                "total_stake": snapshot.total_stake,
            }
        })
        return snapshot


__all__ = ["ClusterSnapshotReader"]
