"""Atomic two-party trades of ordinals inscriptions over PSBTs."""

from .assembler import AssemblyError, TradeAssembler
from .coin_selection import BuyerCoinSelector, PaymentSelection, SelectionError, select_payment_inputs
from .config import ConfigurationError, RPCConfig, TradeConfig, load_rpc_config, load_trade_config
from .fees import TradeBudget
from .model import OutPoint, UnspentOutput, btc_to_sats, sats_to_btc
from .oracle import InscriptionOracle, OracleError
from .psbt import PSBTError
from .rpc_client import BitcoinRPCClient, RPCError, RPCTransportError
from .seller import OfferError, SellerOffer, SellerOfferBuilder
from .separator import SeparatorError, SeparatorProvision, SeparatorProvisioner
from .settlement import SettlementError, SettlementSubmitter
from .trade import TradeAbandoned, TradeCompleted, TradeCoordinator, TradeFailed

__all__ = [
    "AssemblyError",
    "TradeAssembler",
    "BuyerCoinSelector",
    "PaymentSelection",
    "SelectionError",
    "select_payment_inputs",
    "ConfigurationError",
    "RPCConfig",
    "TradeConfig",
    "load_rpc_config",
    "load_trade_config",
    "TradeBudget",
    "OutPoint",
    "UnspentOutput",
    "btc_to_sats",
    "sats_to_btc",
    "InscriptionOracle",
    "OracleError",
    "PSBTError",
    "BitcoinRPCClient",
    "RPCError",
    "RPCTransportError",
    "OfferError",
    "SellerOffer",
    "SellerOfferBuilder",
    "SeparatorError",
    "SeparatorProvision",
    "SeparatorProvisioner",
    "SettlementError",
    "SettlementSubmitter",
    "TradeAbandoned",
    "TradeCompleted",
    "TradeCoordinator",
    "TradeFailed",
]
