"""Buyer-side coin selection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Collection, List, Sequence

from .model import OutPoint, UnspentOutput, btc_to_sats
from .oracle import InscriptionOracle
from .rpc_client import BitcoinRPCClient

logger = logging.getLogger(__name__)


class SelectionError(RuntimeError):
    """Raised when the buyer wallet reports outputs or balances that cannot be read."""


@dataclass
class PaymentSelection:
    """Payment inputs picked for a trade, in the order they were selected."""

    inputs: List[UnspentOutput] = field(default_factory=list)
    required: int = 0

    @property
    def total(self) -> int:
        return sum(utxo.value for utxo in self.inputs)

    @property
    def change(self) -> int:
        return self.total - self.required

    @property
    def is_sufficient(self) -> bool:
        return self.total >= self.required


def select_payment_inputs(
    candidates: Sequence[UnspentOutput],
    required: int,
    *,
    exclude: Collection[OutPoint] = (),
) -> PaymentSelection:
    """Greedily take the largest candidates until ``required`` is covered.

    ``candidates`` must be sorted ascending by value (as returned by
    :meth:`BuyerCoinSelector.spendable_outputs`); they are walked from the end.
    Selection stops at the first input that brings the total to ``required``.
    When the candidates run out first, the returned selection holds all of
    them and :attr:`PaymentSelection.is_sufficient` is ``False``.
    """

    selection = PaymentSelection(required=required)
    running_total = 0
    for utxo in reversed(candidates):
        if utxo.outpoint in exclude:
            continue
        selection.inputs.append(utxo)
        running_total += utxo.value
        if running_total >= required:
            break
    return selection


def sort_by_value(utxos: Sequence[UnspentOutput]) -> List[UnspentOutput]:
    return sorted(utxos, key=lambda utxo: utxo.value)


class BuyerCoinSelector:
    """List the buyer's payable outputs, never including inscription holders."""

    def __init__(
        self,
        rpc: BitcoinRPCClient,
        oracle: InscriptionOracle,
        buyer_address: str,
        *,
        min_confirmations: int = 1,
    ) -> None:
        self.rpc = rpc
        self.oracle = oracle
        self.buyer_address = buyer_address
        self.min_confirmations = min_confirmations

    def list_outputs(self, min_confirmations: int | None = None) -> List[UnspentOutput]:
        """Spendable outputs paying to the buyer address, unclassified."""

        minconf = self.min_confirmations if min_confirmations is None else min_confirmations
        entries = self.rpc.listunspent(minconf, addresses=[self.buyer_address])
        try:
            utxos = [UnspentOutput.from_rpc(entry) for entry in entries]
        except (KeyError, TypeError, ValueError) as exc:
            raise SelectionError(f"Buyer wallet returned an unreadable listunspent entry: {exc}") from exc
        return [utxo for utxo in utxos if utxo.spendable]

    def balance(self) -> int:
        """Confirmed buyer wallet balance in sats."""

        raw = self.rpc.getbalance(self.min_confirmations)
        try:
            return btc_to_sats(raw)
        except ValueError as exc:
            raise SelectionError(f"Buyer wallet returned an unreadable balance {raw!r}") from exc

    def spendable_outputs(self) -> List[UnspentOutput]:
        """Buyer outputs without inscriptions, sorted ascending by value."""

        utxos = self.list_outputs()
        verdicts = self.oracle.classify(utxo.outpoint for utxo in utxos)
        spendable = [utxo for utxo in utxos if not verdicts[utxo.outpoint]]
        logger.info(
            "Buyer has %d spendable outputs (%d excluded as inscriptions)",
            len(spendable),
            len(utxos) - len(spendable),
        )
        return sort_by_value(spendable)
