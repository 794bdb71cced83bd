"""Seller side of a trade: a one-in, one-out offer signed SINGLE|ANYONECANPAY."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from bitcointx.core import CTransaction, CTxOut

from .fees import TradeBudget
from .model import OutPoint
from .psbt import (
    SIGHASH_SINGLE_ANYONECANPAY,
    PartiallySignedTransaction,
    PSBTError,
    build_psbt,
    decode_psbt,
    decode_transaction,
    is_signed,
    pay_to,
    spend,
    unsigned_transaction,
)
from .rpc_client import BitcoinRPCClient, RPCError, describe_rpc_failure

logger = logging.getLogger(__name__)

SELLER_SIGHASH_RPC_NAME = "SINGLE|ANYONECANPAY"


class OfferError(RuntimeError):
    """Raised when the seller's offer cannot be built or signed."""


@dataclass
class SellerOffer:
    """A signed seller PSBT plus the inscribed output it spends."""

    psbt: str
    inscription: OutPoint
    inscription_output: CTxOut

    def decode(self) -> PartiallySignedTransaction:
        return decode_psbt(self.psbt)


class SellerOfferBuilder:
    """Build and sign the seller's half of a trade.

    The offer spends the inscribed output and pays the price back to the
    inscribed output's own script, i.e. to whoever controls the asset. The
    signature commits to that input/output pair only, so the buyer can add
    inputs and outputs around it later.
    """

    def __init__(
        self,
        node_rpc: BitcoinRPCClient,
        seller_rpc: BitcoinRPCClient,
        budget: TradeBudget,
    ) -> None:
        self.node_rpc = node_rpc
        self.seller_rpc = seller_rpc
        self.budget = budget

    def fetch_inscription_output(self, inscription: OutPoint) -> tuple[CTransaction, CTxOut]:
        """Return the transaction holding ``inscription`` and the output itself."""

        try:
            raw_hex = self.node_rpc.getrawtransaction(inscription.txid)
        except RPCError as exc:
            raise OfferError(
                describe_rpc_failure(f"Cannot locate inscription transaction {inscription.txid}", exc)
            ) from exc
        try:
            prev_tx = decode_transaction(raw_hex)
        except PSBTError as exc:
            raise OfferError(f"Node returned an undecodable transaction for {inscription.txid}") from exc
        if inscription.vout >= len(prev_tx.vout):
            raise OfferError(
                f"Transaction {inscription.txid} has {len(prev_tx.vout)} outputs; "
                f"inscription output {inscription.vout} does not exist"
            )
        return prev_tx, prev_tx.vout[inscription.vout]

    def build_unsigned(self, inscription: OutPoint) -> tuple[PartiallySignedTransaction, CTxOut]:
        prev_tx, inscription_output = self.fetch_inscription_output(inscription)
        tx = unsigned_transaction(
            [spend(inscription.txid, inscription.vout)],
            [pay_to(self.budget.price, inscription_output.scriptPubKey)],
        )
        psbt = build_psbt(tx, {0: prev_tx})
        psbt.inputs[0].sighash_type = SIGHASH_SINGLE_ANYONECANPAY
        return psbt, inscription_output

    def build_offer(self, inscription: OutPoint) -> SellerOffer:
        unsigned, inscription_output = self.build_unsigned(inscription)
        logger.info(
            "Requesting seller signature for %s at price %d sats", inscription, self.budget.price
        )
        try:
            processed = self.seller_rpc.walletprocesspsbt(
                unsigned.to_base64(), True, SELLER_SIGHASH_RPC_NAME
            )
        except RPCError as exc:
            raise OfferError(describe_rpc_failure("Seller wallet failed to sign the offer", exc)) from exc

        signed_b64 = processed.get("psbt")
        if not signed_b64:
            raise OfferError("Seller wallet returned no PSBT")
        try:
            signed = decode_psbt(signed_b64)
        except PSBTError as exc:
            raise OfferError(f"Seller wallet returned a malformed PSBT: {exc}") from exc

        if signed.unsigned_tx.serialize() != unsigned.unsigned_tx.serialize():
            raise OfferError("Seller wallet altered the offer transaction")
        if not is_signed(signed.inputs[0]):
            raise OfferError(
                f"Seller wallet did not sign input {inscription}; is the inscription owned by this wallet?"
            )

        logger.info("Seller offer for %s signed", inscription)
        return SellerOffer(
            psbt=signed_b64,
            inscription=inscription,
            inscription_output=inscription_output,
        )
