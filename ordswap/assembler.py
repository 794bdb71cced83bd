"""Splice the seller's signed offer into the buyer's trade transaction."""

from __future__ import annotations

import logging
from typing import Dict

from bitcointx.core import CTransaction

from .coin_selection import PaymentSelection
from .fees import DUST_LIMIT_SATS, TradeBudget
from .model import UnspentOutput
from .psbt import (
    PartiallySignedTransaction,
    PSBTError,
    build_psbt,
    decode_psbt,
    decode_transaction,
    outpoint_of,
    pay_to,
    psbt_fee,
    signature_state,
    spend,
    txid_of,
    unsigned_transaction,
)
from .rpc_client import BitcoinRPCClient, RPCError, describe_rpc_failure
from .seller import SellerOffer

logger = logging.getLogger(__name__)

SELLER_INPUT_INDEX = 1
SELLER_OUTPUT_INDEX = 1


class AssemblyError(RuntimeError):
    """Raised when the combined trade transaction is inconsistent."""


class TradeAssembler:
    """Build and buyer-sign the combined trade PSBT.

    Layout of the combined transaction::

        inputs:  [separator, seller input, payment inputs...]
        outputs: [inscription + separator -> buyer,
                  seller output (verbatim),
                  marketplace fee,
                  change allowance -> buyer,
                  change -> buyer]

    The seller's signature covers input 1 and output 1 only, so both must sit
    at index 1 and be byte-identical to what the seller signed.
    """

    def __init__(
        self,
        rpc: BitcoinRPCClient,
        budget: TradeBudget,
        buyer_address: str,
        marketplace_script: bytes,
    ) -> None:
        self.rpc = rpc
        self.budget = budget
        self.buyer_address = buyer_address
        self.marketplace_script = marketplace_script
        self._prev_tx_cache: Dict[str, CTransaction] = {}

    def _previous_transaction(self, txid: str) -> CTransaction:
        cached = self._prev_tx_cache.get(txid)
        if cached is None:
            try:
                cached = decode_transaction(self.rpc.wallet_transaction_hex(txid))
            except RPCError as exc:
                raise AssemblyError(
                    describe_rpc_failure(f"Buyer wallet cannot return transaction {txid}", exc)
                ) from exc
            except PSBTError as exc:
                raise AssemblyError(f"Buyer wallet returned a malformed transaction {txid}: {exc}") from exc
            self._prev_tx_cache[txid] = cached
        return cached

    def _decode_offer(self, offer: SellerOffer) -> PartiallySignedTransaction:
        try:
            seller_psbt = offer.decode()
        except PSBTError as exc:
            raise AssemblyError(f"Seller PSBT is malformed: {exc}") from exc
        seller_tx = seller_psbt.unsigned_tx
        if len(seller_tx.vin) != 1 or len(seller_tx.vout) != 1:
            raise AssemblyError(
                f"Seller PSBT must have exactly one input and one output, got "
                f"{len(seller_tx.vin)} and {len(seller_tx.vout)}"
            )
        spent_txid, spent_vout = outpoint_of(seller_tx.vin[0])
        if (spent_txid, spent_vout) != (offer.inscription.txid, offer.inscription.vout):
            raise AssemblyError(
                f"Seller PSBT spends {spent_txid}:{spent_vout}, not the inscription {offer.inscription}"
            )
        return seller_psbt

    def assemble(
        self,
        offer: SellerOffer,
        separator: UnspentOutput,
        selection: PaymentSelection,
    ) -> PartiallySignedTransaction:
        """Return the unsigned (buyer-side) combined PSBT."""

        seller_psbt = self._decode_offer(offer)
        if separator.address != self.buyer_address:
            raise AssemblyError(
                f"Separator {separator.outpoint} pays {separator.address}, not the buyer address {self.buyer_address}"
            )

        change = self.budget.change_for(selection.total)
        if change < 0:
            raise AssemblyError(
                f"Payment inputs total {selection.total} sats; {selection.required} sats are required"
            )
        if change < DUST_LIMIT_SATS:
            logger.warning("Buyer change of %d sats is below the dust limit", change)

        buyer_script = separator.script_pubkey or self.rpc.address_script(self.buyer_address)
        seller_in = seller_psbt.unsigned_tx.vin[0]
        seller_out = seller_psbt.unsigned_tx.vout[0]
        seller_txid, seller_vout = outpoint_of(seller_in)

        inputs = [
            spend(separator.txid, separator.vout),
            spend(seller_txid, seller_vout, script_sig=seller_in.scriptSig, sequence=seller_in.nSequence),
        ]
        inputs.extend(spend(utxo.txid, utxo.vout) for utxo in selection.inputs)
        outputs = [
            pay_to(offer.inscription_output.nValue + separator.value, buyer_script),
            pay_to(seller_out.nValue, seller_out.scriptPubKey),
            pay_to(self.budget.marketplace_fee, self.marketplace_script),
            pay_to(self.budget.change_allowance, buyer_script),
            pay_to(change, buyer_script),
        ]
        tx = unsigned_transaction(inputs, outputs)

        if tx.vin[SELLER_INPUT_INDEX].serialize() != seller_in.serialize():
            raise AssemblyError("Seller input changed while building the trade transaction")
        if tx.vout[SELLER_OUTPUT_INDEX].serialize() != seller_out.serialize():
            raise AssemblyError("Seller output changed while building the trade transaction")

        previous = {
            index: self._previous_transaction(outpoint_of(txin)[0])
            for index, txin in enumerate(tx.vin)
            if index != SELLER_INPUT_INDEX
        }
        try:
            psbt = build_psbt(
                tx,
                previous,
                inputs={SELLER_INPUT_INDEX: seller_psbt.inputs[0]},
                outputs={SELLER_OUTPUT_INDEX: seller_psbt.outputs[0]},
            )
            fee = psbt_fee(psbt)
        except PSBTError as exc:
            raise AssemblyError(f"Cannot build the trade PSBT: {exc}") from exc
        if fee != self.budget.transfer_overhead:
            raise AssemblyError(
                f"Trade transaction leaves a fee of {fee} sats; expected {self.budget.transfer_overhead}"
            )

        logger.info(
            "Assembled trade %s: %d inputs, %d outputs, change %d sats, fee %d sats",
            txid_of(psbt.unsigned_tx),
            len(inputs),
            len(outputs),
            change,
            fee,
        )
        return psbt

    def sign(self, psbt: PartiallySignedTransaction) -> str:
        """Have the buyer wallet sign its inputs; the seller's input must come back untouched."""

        seller_state = signature_state(psbt.inputs[SELLER_INPUT_INDEX])
        try:
            processed = self.rpc.walletprocesspsbt(psbt.to_base64(), True)
        except RPCError as exc:
            raise AssemblyError(describe_rpc_failure("Buyer wallet failed to sign the trade", exc)) from exc

        signed_b64 = processed.get("psbt")
        if not signed_b64:
            raise AssemblyError("Buyer wallet returned no PSBT")
        try:
            signed = decode_psbt(signed_b64)
        except PSBTError as exc:
            raise AssemblyError(f"Buyer wallet returned a malformed PSBT: {exc}") from exc

        if signed.unsigned_tx.serialize() != psbt.unsigned_tx.serialize():
            raise AssemblyError("Buyer wallet altered the trade transaction")
        if signature_state(signed.inputs[SELLER_INPUT_INDEX]) != seller_state:
            raise AssemblyError("Buyer wallet modified the seller's signature")
        if not processed.get("complete"):
            logger.warning("Buyer wallet reports the trade PSBT is not fully signed")
        return signed_b64
