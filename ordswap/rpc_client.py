"""Typed JSON-RPC client for Bitcoin Core style nodes and wallets.

A trade talks to three endpoints (the asset owner's full node, the seller's
wallet and the buyer's wallet); each gets its own :class:`BitcoinRPCClient`
built from an :class:`~ordswap.config.RPCConfig`. No signing or consensus
logic lives here: the client forwards requests and surfaces errors clearly.
Numbers in responses are decoded as :class:`~decimal.Decimal` so BTC amounts
convert to satoshis without floating point.
"""

from __future__ import annotations

import json
import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import RPCConfig

logger = logging.getLogger(__name__)

__all__ = [
    "BitcoinRPCClient",
    "RPCError",
    "RPCTransportError",
    "describe_rpc_failure",
    "format_rpc_hint",
]


class RPCError(RuntimeError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for node errors seen during trades.

    Only well-known failure modes get a hint; callers should still log the
    structured error.
    """

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))
    lowered = message.lower()

    if code == -26 and "min relay fee not met" in lowered:
        return (
            "The node rejected the transaction because the fee is below its minrelaytxfee policy. "
            "Raise the trade fee rate (ORDSWAP_FEE_RATE_SATVB or trade.fee_rate_sat_vb)."
        )
    if code == -26 and "dust" in lowered:
        return (
            "One of the outputs is below the dust limit. The buyer's change is probably too small; "
            "fund the buyer wallet with a larger output."
        )
    if code in {-25, -27} or "missingorspent" in lowered or "missing inputs" in lowered:
        return (
            "An input is already spent or unknown to the node. Wallet state moved since the trade "
            "was assembled; rerun the trade from scratch."
        )
    if code == -5 and "no such mempool or blockchain transaction" in lowered:
        return (
            "The node cannot find that transaction. Check the inscription outpoint, or enable "
            "txindex=1 on the full node used for lookups."
        )
    if code == -22 or "tx decode failed" in lowered or "psbt decode failed" in lowered:
        return "The node could not decode the transaction or PSBT it was given."
    if code in {-4, -6} or "insufficient funds" in lowered:
        return (
            "The wallet could not fund the transaction. Fund or unlock the wallet and wait for "
            "confirmations before retrying."
        )
    if code == -13 or "walletpassphrase" in lowered or "wallet locked" in lowered:
        return "The wallet is locked. Unlock it with walletpassphrase, then retry the command."
    if code in {-18, -19} or "requested wallet does not exist" in lowered:
        return (
            "The wallet named in the RPC URL is not loaded. Load it with loadwallet or fix the "
            "/wallet/<name> part of the endpoint."
        )
    return None


def describe_rpc_failure(prefix: str, exc: RPCError) -> str:
    """Format an RPC failure for users, appending a remediation hint when known."""

    hint = format_rpc_hint(exc)
    hint_suffix = f"\nHint: {hint}" if hint else ""
    return f"{prefix}: {exc}{hint_suffix}"


class BitcoinRPCClient:
    """Typed JSON-RPC client for Bitcoin Core compatible nodes.

    Each helper maps directly to an RPC method and returns the parsed JSON
    result. Wallet RPCs are routed to ``/wallet/<name>`` when the config names
    a wallet.
    """

    def __init__(self, config: RPCConfig, *, timeout: float = 30) -> None:
        self.config = config
        self.timeout = timeout
        self._session = requests.Session()
        self._base_url = config.base_url
        self._wallet = config.wallet

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "1.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s on %s", method, self._url)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=self.timeout,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                f"RPC connection to {self._base_url} failed. Ensure the node is reachable and the "
                "*_RPC_URL settings (or ~/.ordswap.yaml) point to the right host and port."
            ) from exc
        try:
            result = response.json(parse_float=Decimal)
        except ValueError:
            result = None
        if isinstance(result, dict) and result.get("error"):
            # Bitcoin Core reports JSON-RPC errors with HTTP 500 and a JSON body.
            error = result["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        self._raise_for_status(response)
        if not isinstance(result, dict):
            logger.debug("RPC JSON parse error: %s", response.text)
            raise RPCTransportError("RPC server returned malformed JSON", status_code=response.status_code)
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
        if response.status_code == 401:
            raise RPCTransportError(
                "Unauthorized (401). Check the *_RPC_USER/*_RPC_PASS credentials for this endpoint.",
                status_code=response.status_code,
            )
        raise RPCTransportError(
            f"RPC server returned HTTP {response.status_code}; check the URL, wallet path and credentials.",
            status_code=response.status_code,
        )

    @property
    def _url(self) -> str:
        if self._wallet:
            return f"{self._base_url}/wallet/{self._wallet}"
        return self._base_url

    # Convenience wrappers -------------------------------------------------

    def getrawtransaction(self, txid: str, verbose: bool = False) -> Any:
        return self.call("getrawtransaction", [txid, int(verbose)])

    def gettransaction(self, txid: str, include_watchonly: bool = True) -> Dict[str, Any]:
        return self.call("gettransaction", [txid, include_watchonly])

    def wallet_transaction_hex(self, txid: str) -> str:
        """Raw hex of a transaction known to the wallet (works without txindex)."""

        return self.gettransaction(txid)["hex"]

    def listunspent(
        self,
        minconf: int = 1,
        maxconf: int = 9999999,
        addresses: Optional[list[str]] = None,
    ) -> list[Dict[str, Any]]:
        params: list[Any] = [minconf, maxconf]
        if addresses is not None:
            params.append(addresses)
        return self.call("listunspent", params)

    def getbalance(self, minconf: int = 1) -> Decimal:
        return self.call("getbalance", ["*", minconf])

    def validateaddress(self, address: str) -> Dict[str, Any]:
        return self.call("validateaddress", [address])

    def address_script(self, address: str) -> bytes:
        """Return the locking script for ``address`` as encoded by the node."""

        info = self.validateaddress(address)
        if not info.get("isvalid"):
            raise RPCError(-5, f"Invalid address: {address}")
        return bytes.fromhex(info["scriptPubKey"])

    def walletprocesspsbt(
        self,
        psbt: str,
        sign: bool = True,
        sighashtype: str | None = None,
    ) -> Dict[str, Any]:
        params: list[Any] = [psbt, sign]
        if sighashtype is not None:
            params.append(sighashtype)
        return self.call("walletprocesspsbt", params)

    def finalizepsbt(self, psbt: str, extract: bool = True) -> Dict[str, Any]:
        return self.call("finalizepsbt", [psbt, extract])

    def sendrawtransaction(self, raw_tx: str) -> str:
        return self.call("sendrawtransaction", [raw_tx])
