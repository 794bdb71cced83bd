"""Domain models shared by the ordswap trade components.

Amounts are always integer satoshis. Node RPC responses carry BTC amounts as
``Decimal`` values; :func:`btc_to_sats` is the only place where the two units
meet.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

SATS_PER_BTC = 100_000_000


def btc_to_sats(amount: Any) -> int:
    """Convert a BTC amount (``Decimal``, ``str`` or ``int``) to satoshis.

    Floats are converted through their ``str`` form so that JSON payloads
    parsed without ``parse_float=Decimal`` still round-trip exactly. Values
    with sub-satoshi precision are rejected.
    """

    try:
        value = Decimal(str(amount)) * SATS_PER_BTC
    except InvalidOperation as exc:
        raise ValueError(f"invalid BTC amount: {amount!r}") from exc
    if value != value.to_integral_value():
        raise ValueError(f"BTC amount has sub-satoshi precision: {amount!r}")
    return int(value)


def sats_to_btc(sats: int) -> Decimal:
    return Decimal(sats) / SATS_PER_BTC


@dataclass(frozen=True)
class OutPoint:
    """Reference to a transaction output (``txid:vout``)."""

    txid: str
    vout: int

    @classmethod
    def parse(cls, raw: str) -> "OutPoint":
        txid, sep, vout = (raw or "").strip().rpartition(":")
        if not sep or len(txid) != 64:
            raise ValueError(f"expected <txid>:<vout>, got {raw!r}")
        try:
            bytes.fromhex(txid)
            index = int(vout)
        except ValueError as exc:
            raise ValueError(f"expected <txid>:<vout>, got {raw!r}") from exc
        if index < 0:
            raise ValueError(f"output index must be non-negative: {raw!r}")
        return cls(txid=txid.lower(), vout=index)

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass(frozen=True)
class UnspentOutput:
    """Snapshot of a wallet ``listunspent`` entry."""

    txid: str
    vout: int
    address: str | None
    value: int
    spendable: bool = True
    script_pubkey: bytes = b""

    @property
    def outpoint(self) -> OutPoint:
        return OutPoint(self.txid, self.vout)

    @classmethod
    def from_rpc(cls, entry: Mapping[str, Any]) -> "UnspentOutput":
        script_hex = entry.get("scriptPubKey") or ""
        return cls(
            txid=entry["txid"],
            vout=int(entry["vout"]),
            address=entry.get("address"),
            value=btc_to_sats(entry["amount"]),
            spendable=bool(entry.get("spendable", True)),
            script_pubkey=bytes.fromhex(script_hex),
        )
