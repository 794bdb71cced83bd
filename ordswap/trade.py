"""Drive one trade from seller offer to broadcast.

:class:`TradeCoordinator` wires the components together for a single run and
reports the result as a :class:`TradeCompleted`, :class:`TradeAbandoned` or
:class:`TradeFailed`. Abandonment means the buyer cannot afford the trade and
is not an error; failures carry the stage that broke. Whenever a separator
creation transaction was broadcast the outcome says so, because that side
effect is never undone.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Sequence, Union

from .assembler import AssemblyError, TradeAssembler
from .coin_selection import (
    BuyerCoinSelector,
    PaymentSelection,
    SelectionError,
    select_payment_inputs,
    sort_by_value,
)
from .config import TradeConfig
from .model import OutPoint, UnspentOutput
from .oracle import InscriptionOracle, OracleError
from .psbt import PSBTError, txid_of
from .rpc_client import BitcoinRPCClient, RPCError, RPCTransportError
from .seller import OfferError, SellerOffer, SellerOfferBuilder
from .separator import SeparatorError, SeparatorProvision, SeparatorProvisioner, find_separator
from .settlement import SettlementError, SettlementSubmitter

logger = logging.getLogger(__name__)

FATAL_ERRORS = (
    AssemblyError,
    OfferError,
    OracleError,
    PSBTError,
    RPCError,
    RPCTransportError,
    SelectionError,
    SeparatorError,
    SettlementError,
)


@dataclass
class TradeCompleted:
    txid: str
    psbt: str
    broadcast: bool = True
    separator_txid: Optional[str] = None

    status: ClassVar[str] = "completed"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, **dataclasses.asdict(self)}


@dataclass
class TradeAbandoned:
    reason: str
    separator_txid: Optional[str] = None

    status: ClassVar[str] = "abandoned"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, **dataclasses.asdict(self)}


@dataclass
class TradeFailed:
    stage: str
    cause: str
    separator_txid: Optional[str] = None

    status: ClassVar[str] = "failed"

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status, **dataclasses.asdict(self)}


TradeOutcome = Union[TradeCompleted, TradeAbandoned, TradeFailed]


class _Abandon(Exception):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def plan_candidates(candidates: Sequence[UnspentOutput], provision: SeparatorProvision) -> List[UnspentOutput]:
    """Payment candidates left once ``provision`` is in place, ascending by value."""

    excluded = {provision.separator.outpoint}
    if provision.consumed is not None:
        excluded.add(provision.consumed)
    pool = [utxo for utxo in candidates if utxo.outpoint not in excluded]
    if provision.change is not None and provision.change.outpoint not in excluded:
        pool.append(provision.change)
    return sort_by_value(pool)


class TradeCoordinator:
    """Run the trade flow once against three RPC endpoints and an oracle."""

    def __init__(
        self,
        config: TradeConfig,
        *,
        node_rpc: BitcoinRPCClient,
        seller_rpc: BitcoinRPCClient,
        buyer_rpc: BitcoinRPCClient,
        oracle: InscriptionOracle,
    ) -> None:
        self.config = config
        self.budget = config.budget
        self.node_rpc = node_rpc
        self.seller_rpc = seller_rpc
        self.buyer_rpc = buyer_rpc
        self.oracle = oracle
        self.submitter = SettlementSubmitter(buyer_rpc)
        self.offer_builder = SellerOfferBuilder(node_rpc, seller_rpc, config.budget)
        self.coin_selector = BuyerCoinSelector(
            buyer_rpc,
            oracle,
            config.buyer_address,
            min_confirmations=config.min_confirmations,
        )
        self.provisioner = SeparatorProvisioner(
            buyer_rpc, config.budget, config.buyer_address, submitter=self.submitter
        )

    @classmethod
    def from_config(cls, config: TradeConfig) -> "TradeCoordinator":
        return cls(
            config,
            node_rpc=BitcoinRPCClient(config.node_rpc),
            seller_rpc=BitcoinRPCClient(config.seller_rpc),
            buyer_rpc=BitcoinRPCClient(config.buyer_rpc),
            oracle=InscriptionOracle(config.oracle_url),
        )

    # Individual steps ---------------------------------------------------

    def build_offer(self, inscription: OutPoint | None = None) -> SellerOffer:
        inscription = inscription or self.config.inscription
        offer = self.offer_builder.build_offer(inscription)
        seller_script = self.node_rpc.address_script(self.config.seller_address)
        if bytes(offer.inscription_output.scriptPubKey) != seller_script:
            logger.warning(
                "Inscription %s is not held by the configured seller address %s",
                inscription,
                self.config.seller_address,
            )
        return offer

    def provision_separator(self, *, allow_create: bool = True) -> SeparatorProvision:
        return self.provisioner.provision(
            self.coin_selector.spendable_outputs(), allow_create=allow_create
        )

    def preplan(self, candidates: Sequence[UnspentOutput]) -> PaymentSelection:
        """Simulate separator provisioning and payment selection without side effects."""

        separator = find_separator(candidates, self.budget.separator_value)
        if separator is not None:
            provision = SeparatorProvision(separator=separator)
        else:
            source = max(candidates, key=lambda utxo: utxo.value)
            change_value = self.budget.separator_change_for(source.value)
            if change_value <= 0:
                raise _Abandon(
                    f"Largest buyer output holds {source.value} sats; creating a separator needs more than "
                    f"{self.budget.separator_value + self.budget.separator_creation_fee} sats"
                )
            # Stand-ins for the outputs the creation transaction would produce.
            provision = SeparatorProvision(
                separator=dataclasses.replace(source, vout=-1, value=self.budget.separator_value),
                consumed=source.outpoint,
                change=dataclasses.replace(source, vout=-2, value=change_value),
            )
        return select_payment_inputs(
            plan_candidates(candidates, provision), self.budget.required_payment_value
        )

    def _check_affordable(self, selection: PaymentSelection) -> None:
        if not selection.is_sufficient:
            raise _Abandon(
                f"Buyer payment outputs total {selection.total} sats; "
                f"{selection.required} sats are required"
            )

    # Full flow ----------------------------------------------------------

    def run(self, *, broadcast: bool = True) -> TradeOutcome:
        """Execute the trade. With ``broadcast=False`` nothing is sent to the network."""

        stage = "offer"
        separator_txid: Optional[str] = None
        try:
            offer = self.build_offer()

            stage = "balance"
            balance = self.coin_selector.balance()
            if balance < self.budget.price:
                raise _Abandon(
                    f"Buyer balance of {balance} sats is below the price of {self.budget.price} sats"
                )

            stage = "classify"
            candidates = self.coin_selector.spendable_outputs()
            if not candidates:
                raise _Abandon("Buyer has no spendable outputs without inscriptions")
            self._check_affordable(self.preplan(candidates))

            stage = "separator"
            provision = self.provisioner.provision(candidates, allow_create=broadcast)
            separator_txid = provision.created_txid

            stage = "select"
            selection = select_payment_inputs(
                plan_candidates(candidates, provision), self.budget.required_payment_value
            )
            self._check_affordable(selection)
            logger.info(
                "Selected %d payment inputs totalling %d sats (change %d sats)",
                len(selection.inputs),
                selection.total,
                selection.change,
            )

            stage = "assemble"
            assembler = TradeAssembler(
                self.buyer_rpc,
                self.budget,
                self.config.buyer_address,
                self.buyer_rpc.address_script(self.config.marketplace_address),
            )
            unsigned = assembler.assemble(offer, provision.separator, selection)
            signed = assembler.sign(unsigned)

            if not broadcast:
                dry_txid = txid_of(unsigned.unsigned_tx)
                logger.info("Dry run: trade %s assembled and signed, not broadcast", dry_txid)
                return TradeCompleted(
                    txid=dry_txid, psbt=signed, broadcast=False, separator_txid=separator_txid
                )

            stage = "settle"
            txid = self.submitter.submit(signed)
        except _Abandon as abandon:
            logger.warning("Trade abandoned: %s", abandon.reason)
            return TradeAbandoned(reason=abandon.reason, separator_txid=separator_txid)
        except FATAL_ERRORS as exc:
            separator_txid = separator_txid or getattr(exc, "created_txid", None)
            logger.error("Trade failed during %s: %s", stage, exc)
            if separator_txid:
                logger.error("Separator transaction %s was already broadcast", separator_txid)
            return TradeFailed(stage=stage, cause=str(exc), separator_txid=separator_txid)

        logger.info("Trade complete: %s", txid)
        return TradeCompleted(txid=txid, psbt=signed, separator_txid=separator_txid)
