"""Transaction and PSBT helpers on top of python-bitcointx.

Node RPCs speak hex and base64 while :mod:`bitcointx` speaks byte-reversed
hashes and library objects. The helpers here translate between the two and
turn the library's decoding errors into :class:`PSBTError`.
"""

from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

from bitcointx.core import (
    CMutableTransaction,
    CMutableTxIn,
    CMutableTxOut,
    COutPoint,
    CTransaction,
    CTxIn,
    CTxOut,
    b2lx,
    lx,
    x,
)
from bitcointx.core.psbt import PartiallySignedTransaction, PSBT_Input, PSBT_Output
from bitcointx.core.script import SIGHASH_ANYONECANPAY, SIGHASH_SINGLE, CScript
from bitcointx.core.serialize import SerializationError

SIGHASH_SINGLE_ANYONECANPAY = SIGHASH_SINGLE | SIGHASH_ANYONECANPAY
TX_VERSION = 2

__all__ = [
    "PSBTError",
    "PartiallySignedTransaction",
    "SIGHASH_SINGLE_ANYONECANPAY",
    "build_psbt",
    "decode_psbt",
    "decode_transaction",
    "is_signed",
    "outpoint_of",
    "pay_to",
    "psbt_fee",
    "signature_state",
    "spend",
    "spent_output",
    "txid_of",
    "unsigned_transaction",
]


class PSBTError(ValueError):
    """Raised when a transaction or PSBT cannot be decoded or built."""


def decode_transaction(raw_hex: str) -> CTransaction:
    try:
        return CTransaction.deserialize(x(raw_hex))
    except (SerializationError, ValueError, TypeError) as exc:
        raise PSBTError(f"undecodable transaction: {exc}") from exc


def decode_psbt(psbt_b64: str) -> PartiallySignedTransaction:
    try:
        return PartiallySignedTransaction.from_base64(psbt_b64)
    except (SerializationError, ValueError, TypeError) as exc:
        raise PSBTError(f"undecodable PSBT: {exc}") from exc


def txid_of(tx: CTransaction) -> str:
    return b2lx(tx.GetTxid())


def outpoint_of(txin: CTxIn) -> Tuple[str, int]:
    """``(txid, vout)`` of the output ``txin`` spends, txid in RPC byte order."""

    return b2lx(txin.prevout.hash), txin.prevout.n


def spend(txid: str, vout: int, *, script_sig: bytes = b"", sequence: int = 0xFFFFFFFF) -> CMutableTxIn:
    return CMutableTxIn(COutPoint(lx(txid), vout), CScript(script_sig), sequence)


def pay_to(value: int, script_pubkey: bytes) -> CMutableTxOut:
    if value < 0:
        raise PSBTError(f"output value must be non-negative, got {value}")
    return CMutableTxOut(value, CScript(script_pubkey))


def unsigned_transaction(inputs: Sequence[CTxIn], outputs: Sequence[CTxOut]) -> CMutableTransaction:
    return CMutableTransaction(list(inputs), list(outputs), nVersion=TX_VERSION)


def build_psbt(
    tx: CMutableTransaction,
    previous: Dict[int, CTransaction],
    *,
    inputs: Optional[Dict[int, PSBT_Input]] = None,
    outputs: Optional[Dict[int, PSBT_Output]] = None,
) -> PartiallySignedTransaction:
    """Wrap ``tx`` in a PSBT, attaching each input's full previous transaction.

    ``inputs`` and ``outputs`` supply ready-made maps (e.g. another party's
    signed input) by position; every other input needs an entry in ``previous``.
    """

    inputs = inputs or {}
    outputs = outputs or {}
    psbt_inputs = []
    for index, txin in enumerate(tx.vin):
        existing = inputs.get(index)
        if existing is not None:
            existing.index = index
            psbt_inputs.append(existing)
            continue
        prev_tx = previous.get(index)
        if prev_tx is None:
            raise PSBTError(f"no previous transaction for input {index}")
        prev_txid, prev_vout = outpoint_of(txin)
        if txid_of(prev_tx) != prev_txid:
            raise PSBTError(f"previous transaction {txid_of(prev_tx)} does not match input {index} ({prev_txid})")
        if prev_vout >= len(prev_tx.vout):
            raise PSBTError(f"input {index} spends missing output {prev_txid}:{prev_vout}")
        psbt_inputs.append(PSBT_Input(index=index, utxo=prev_tx))
    psbt_outputs = []
    for index in range(len(tx.vout)):
        existing = outputs.get(index)
        if existing is not None:
            existing.index = index
            psbt_outputs.append(existing)
        else:
            psbt_outputs.append(PSBT_Output(index=index))
    return PartiallySignedTransaction(unsigned_tx=tx, inputs=psbt_inputs, outputs=psbt_outputs)


def spent_output(psbt: PartiallySignedTransaction, index: int) -> Optional[CTxOut]:
    """The output spent by input ``index``, or ``None`` without UTXO data."""

    utxo = psbt.inputs[index].utxo
    if utxo is None:
        return None
    if hasattr(utxo, "vout"):
        return utxo.vout[psbt.unsigned_tx.vin[index].prevout.n]
    return utxo


def signature_state(psbt_input: PSBT_Input) -> tuple:
    """Every signature-bearing field of ``psbt_input``, in comparable form."""

    witness = psbt_input.final_script_witness
    return (
        sorted((bytes(pubkey), bytes(sig)) for pubkey, sig in psbt_input.partial_sigs.items()),
        bytes(psbt_input.final_script_sig or b""),
        tuple(bytes(item) for item in witness.stack) if witness is not None else (),
        None if psbt_input.sighash_type is None else int(psbt_input.sighash_type),
    )


def is_signed(psbt_input: PSBT_Input) -> bool:
    partial_sigs, script_sig, witness, _ = signature_state(psbt_input)
    return bool(partial_sigs or script_sig or witness)


def psbt_fee(psbt: PartiallySignedTransaction) -> int:
    """Inputs minus outputs, valued from the previous outputs attached to ``psbt``."""

    total_in = 0
    for index in range(len(psbt.inputs)):
        spent = spent_output(psbt, index)
        if spent is None:
            raise PSBTError(f"input {index} carries no previous output")
        total_in += spent.nValue
    return total_in - sum(txout.nValue for txout in psbt.unsigned_tx.vout)
