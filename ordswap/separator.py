"""Find or mint the buyer's separator output.

The combined trade transaction spends a low-value buyer output at input 0 so
that the seller's input lands at index 1, next to the seller's output at
index 1 (``SIGHASH_SINGLE`` pairs input and output by position). Any buyer
output at or below the separator threshold will do; when none exists one is
split off the buyer's largest output and broadcast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from .fees import TradeBudget
from .model import OutPoint, UnspentOutput
from .psbt import (
    PartiallySignedTransaction,
    PSBTError,
    build_psbt,
    decode_transaction,
    pay_to,
    spend,
    unsigned_transaction,
)
from .rpc_client import BitcoinRPCClient, RPCError, RPCTransportError, describe_rpc_failure
from .settlement import SettlementSubmitter

logger = logging.getLogger(__name__)


class SeparatorError(RuntimeError):
    """Raised when no separator can be found or created."""

    def __init__(self, message: str, created_txid: str | None = None) -> None:
        super().__init__(message)
        self.created_txid = created_txid


@dataclass
class SeparatorProvision:
    """The separator to use, and what (if anything) was broadcast to get it."""

    separator: UnspentOutput
    created_txid: Optional[str] = None
    consumed: Optional[OutPoint] = None
    change: Optional[UnspentOutput] = None

    @property
    def created(self) -> bool:
        return self.created_txid is not None


def find_separator(candidates: Sequence[UnspentOutput], threshold: int) -> UnspentOutput | None:
    """First candidate (in the given order) worth at most ``threshold`` sats."""

    for utxo in candidates:
        if utxo.value <= threshold:
            return utxo
    return None


def separator_source(candidates: Sequence[UnspentOutput]) -> UnspentOutput | None:
    if not candidates:
        return None
    return max(candidates, key=lambda utxo: utxo.value)


class SeparatorProvisioner:
    def __init__(
        self,
        rpc: BitcoinRPCClient,
        budget: TradeBudget,
        buyer_address: str,
        *,
        submitter: SettlementSubmitter | None = None,
    ) -> None:
        self.rpc = rpc
        self.budget = budget
        self.buyer_address = buyer_address
        self.submitter = submitter or SettlementSubmitter(rpc)

    def provision(
        self, candidates: Sequence[UnspentOutput], *, allow_create: bool = True
    ) -> SeparatorProvision:
        """Return a separator from ``candidates`` (ascending by value), minting one if needed.

        ``candidates`` must already exclude inscription holders. Re-running
        with a qualifying output present never creates a new transaction.
        """

        existing = find_separator(candidates, self.budget.separator_value)
        if existing is not None:
            logger.info("Using existing separator %s (%d sats)", existing.outpoint, existing.value)
            return SeparatorProvision(separator=existing)

        source = separator_source(candidates)
        if source is None:
            raise SeparatorError("Buyer has no spendable outputs to create a separator from")
        if not allow_create:
            raise SeparatorError(
                "Buyer has no separator output and creating one requires a broadcast; "
                "rerun without --dry-run"
            )
        return self.create(source)

    def build_creation_psbt(self, source: UnspentOutput) -> PartiallySignedTransaction:
        """Unsigned one-in, two-out PSBT splitting ``source`` into separator + change."""

        change_value = self.budget.separator_change_for(source.value)
        if change_value <= 0:
            raise SeparatorError(
                f"Output {source.outpoint} holds {source.value} sats; creating a separator needs more than "
                f"{self.budget.separator_value + self.budget.separator_creation_fee} sats"
            )
        script = source.script_pubkey or self.rpc.address_script(self.buyer_address)
        try:
            prev_tx = decode_transaction(self.rpc.wallet_transaction_hex(source.txid))
        except RPCError as exc:
            raise SeparatorError(
                describe_rpc_failure(f"Buyer wallet cannot return transaction {source.txid}", exc)
            ) from exc
        except PSBTError as exc:
            raise SeparatorError(f"Buyer wallet returned a malformed transaction {source.txid}: {exc}") from exc
        tx = unsigned_transaction(
            [spend(source.txid, source.vout)],
            [
                pay_to(self.budget.separator_value, script),
                pay_to(change_value, script),
            ],
        )
        try:
            return build_psbt(tx, {0: prev_tx})
        except PSBTError as exc:
            raise SeparatorError(f"Cannot spend {source.outpoint}: {exc}") from exc

    def create(self, source: UnspentOutput) -> SeparatorProvision:
        psbt = self.build_creation_psbt(source)
        logger.info(
            "No separator found; splitting %s (%d sats) to create one", source.outpoint, source.value
        )
        try:
            processed = self.rpc.walletprocesspsbt(psbt.to_base64(), True)
        except RPCError as exc:
            raise SeparatorError(describe_rpc_failure("Buyer wallet failed to sign the separator", exc)) from exc
        signed_b64 = processed.get("psbt")
        if not signed_b64:
            raise SeparatorError("Buyer wallet returned no PSBT for the separator transaction")

        txid = self.submitter.submit(signed_b64)
        logger.info("Created separator transaction %s", txid)
        # From here on the split is on the network; every failure must name it.
        try:
            return self._locate_created(txid, source)
        except SeparatorError:
            raise
        except (KeyError, RPCError, RPCTransportError, TypeError, ValueError) as exc:
            raise SeparatorError(
                f"Separator transaction {txid} was broadcast but its outputs cannot be read back: {exc}",
                created_txid=txid,
            ) from exc

    def _locate_created(self, txid: str, source: UnspentOutput) -> SeparatorProvision:
        # The new outputs are unconfirmed, so look at the mempool as well.
        entries = self.rpc.listunspent(0, addresses=[self.buyer_address])
        by_outpoint = {OutPoint(entry["txid"], int(entry["vout"])): entry for entry in entries}
        separator_entry = by_outpoint.get(OutPoint(txid, 0))
        if separator_entry is None:
            raise SeparatorError(
                f"Separator output {txid}:0 was broadcast but is not visible in the buyer wallet",
                created_txid=txid,
            )
        change_entry = by_outpoint.get(OutPoint(txid, 1))
        return SeparatorProvision(
            separator=UnspentOutput.from_rpc(separator_entry),
            created_txid=txid,
            consumed=source.outpoint,
            change=UnspentOutput.from_rpc(change_entry) if change_entry is not None else None,
        )
