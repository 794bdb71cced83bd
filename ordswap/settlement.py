"""Finalize fully signed PSBTs and broadcast them."""

from __future__ import annotations

import logging

from .rpc_client import BitcoinRPCClient, RPCError, describe_rpc_failure

logger = logging.getLogger(__name__)


class SettlementError(RuntimeError):
    """Raised when a signed PSBT cannot be finalized or broadcast."""


class SettlementSubmitter:
    """Turn a signed PSBT into a network transaction.

    Failures are final: nothing is retried and nothing that happened earlier
    in the run is rolled back.
    """

    def __init__(self, rpc: BitcoinRPCClient) -> None:
        self.rpc = rpc

    def finalize(self, psbt: str) -> str:
        """Return the broadcastable hex of ``psbt``; every input must be signed."""

        try:
            finalized = self.rpc.finalizepsbt(psbt)
        except RPCError as exc:
            raise SettlementError(describe_rpc_failure("Finalizing the PSBT failed", exc)) from exc
        if not finalized.get("complete") or not finalized.get("hex"):
            raise SettlementError(
                "PSBT is not fully signed; at least one input is missing its signature"
            )
        return finalized["hex"]

    def broadcast(self, raw_tx: str) -> str:
        try:
            txid = self.rpc.sendrawtransaction(raw_tx)
        except RPCError as exc:
            raise SettlementError(describe_rpc_failure("Broadcast failed", exc)) from exc
        logger.info("Broadcasted transaction %s", txid)
        return txid

    def submit(self, psbt: str) -> str:
        """Finalize and broadcast ``psbt``, returning the txid."""

        return self.broadcast(self.finalize(psbt))
