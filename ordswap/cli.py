"""Command-line interface for ordswap.

``ordswap trade`` runs the whole flow: the seller signs an offer for the
configured inscription, the buyer adds a separator and payment inputs, signs,
and broadcasts. The other subcommands expose single steps for operators who
want to inspect them.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from .coin_selection import SelectionError
from .config import ConfigurationError, load_trade_config, set_default_config_path
from .model import OutPoint
from .oracle import InscriptionOracle, OracleError
from .rpc_client import RPCError, RPCTransportError
from .seller import OfferError
from .separator import SeparatorError
from .settlement import SettlementError
from .trade import TradeAbandoned, TradeCompleted, TradeCoordinator, TradeOutcome

logger = logging.getLogger(__name__)

EXIT_COMPLETED = 0
EXIT_FAILED = 1
EXIT_ABANDONED = 2


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _parse_outpoint(raw: str) -> OutPoint:
    try:
        return OutPoint.parse(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Atomic PSBT trades of ordinals inscriptions")
    parser.add_argument(
        "--config",
        help="Path to the YAML config file (default ~/.ordswap.yaml)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    trade_parser = subparsers.add_parser(
        "trade", help="sign the seller offer, fund it from the buyer wallet and broadcast"
    )
    trade_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="assemble and sign the trade without creating a separator or broadcasting",
    )
    trade_parser.add_argument(
        "--json", dest="as_json", action="store_true", help="print the outcome as JSON"
    )

    offer_parser = subparsers.add_parser("offer", help="print the seller's signed offer PSBT")
    offer_parser.add_argument(
        "--inscription",
        type=_parse_outpoint,
        help="inscribed output TXID:VOUT (defaults to SELLER_UTXO / trade.inscription)",
    )

    classify_parser = subparsers.add_parser(
        "classify", help="ask the inscription oracle whether an output holds an inscription"
    )
    classify_parser.add_argument("outpoint", type=_parse_outpoint, help="output as TXID:VOUT")

    separator_parser = subparsers.add_parser(
        "separator", help="find the buyer's separator output, creating one if needed"
    )
    separator_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="only report an existing separator; never broadcast",
    )

    return parser


def _print_outcome(outcome: TradeOutcome, as_json: bool) -> None:
    if as_json:
        print(json.dumps(outcome.to_dict(), indent=2))
        return
    if isinstance(outcome, TradeCompleted):
        if outcome.broadcast:
            print(f"Trade broadcast: {outcome.txid}")
        else:
            print(f"Trade {outcome.txid} signed (dry run, not broadcast)")
            print(outcome.psbt)
    elif isinstance(outcome, TradeAbandoned):
        print(f"Trade abandoned: {outcome.reason}")
    else:
        print(f"Trade failed during {outcome.stage}: {outcome.cause}")
    if outcome.separator_txid:
        print(f"Separator transaction broadcast: {outcome.separator_txid}")


def _exit_code(outcome: TradeOutcome) -> int:
    if isinstance(outcome, TradeCompleted):
        return EXIT_COMPLETED
    if isinstance(outcome, TradeAbandoned):
        return EXIT_ABANDONED
    return EXIT_FAILED


def cmd_trade(args: argparse.Namespace) -> int:
    coordinator = TradeCoordinator.from_config(load_trade_config())
    outcome = coordinator.run(broadcast=not args.dry_run)
    _print_outcome(outcome, args.as_json)
    return _exit_code(outcome)


def cmd_offer(args: argparse.Namespace) -> int:
    coordinator = TradeCoordinator.from_config(load_trade_config())
    offer = coordinator.build_offer(args.inscription)
    print(offer.psbt)
    return EXIT_COMPLETED


def cmd_classify(args: argparse.Namespace) -> int:
    oracle = InscriptionOracle(load_trade_config().oracle_url)
    holds = oracle.is_inscription(args.outpoint)
    print(f"{args.outpoint}: {'inscription' if holds else 'spendable'}")
    return EXIT_COMPLETED


def cmd_separator(args: argparse.Namespace) -> int:
    coordinator = TradeCoordinator.from_config(load_trade_config())
    provision = coordinator.provision_separator(allow_create=not args.dry_run)
    separator = provision.separator
    if provision.created:
        print(f"Created separator {separator.outpoint} ({separator.value} sats) in {provision.created_txid}")
    else:
        print(f"Existing separator {separator.outpoint} ({separator.value} sats)")
    return EXIT_COMPLETED


COMMANDS = {
    "trade": cmd_trade,
    "offer": cmd_offer,
    "classify": cmd_classify,
    "separator": cmd_separator,
}


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    set_default_config_path(args.config)
    try:
        handler = COMMANDS.get(args.command)
        if handler is None:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
        code = handler(args)
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
        code = EXIT_FAILED
    except (
        CLIError,
        ConfigurationError,
        OfferError,
        OracleError,
        RPCError,
        RPCTransportError,
        SelectionError,
        SeparatorError,
        SettlementError,
    ) as exc:
        parser.exit(EXIT_FAILED, f"error: {exc}\n")
    if code:
        sys.exit(code)


if __name__ == "__main__":
    main(sys.argv[1:])
