"""In-memory stand-ins for Bitcoin Core wallets and the inscription oracle."""

from __future__ import annotations

import hashlib
from typing import Iterable

from bitcointx.core import CTransaction
from bitcointx.core.script import CScriptWitness

from ordswap.model import OutPoint, sats_to_btc
from ordswap.psbt import (
    decode_psbt,
    decode_transaction,
    is_signed,
    outpoint_of,
    pay_to,
    spend,
    spent_output,
    txid_of,
    unsigned_transaction,
)
from ordswap.rpc_client import RPCError

BUYER_ADDRESS = "tb1qbuyer"
SELLER_ADDRESS = "tb1qseller"
MARKET_ADDRESS = "tb1qmarket"

SCRIPTS = {
    BUYER_ADDRESS: bytes.fromhex("0014" + "11" * 20),
    SELLER_ADDRESS: bytes.fromhex("0014" + "22" * 20),
    MARKET_ADDRESS: bytes.fromhex("0014" + "33" * 20),
}

DUMMY_WITNESS = CScriptWitness([b"\x30" * 71, b"\x02" * 33])


def funding_transaction(seed: str, values: Iterable[int], script: bytes) -> CTransaction:
    tx = unsigned_transaction([spend(seed, 0)], [pay_to(value, script) for value in values])
    return CTransaction.deserialize(tx.serialize())


class StubWallet:
    """Enough of a Bitcoin Core wallet to fund, sign, finalize and broadcast."""

    def __init__(self, address: str = BUYER_ADDRESS) -> None:
        self.address = address
        self.script = SCRIPTS[address]
        self.transactions: dict[str, CTransaction] = {}
        self.utxos: list[dict] = []
        self.sent: list[str] = []
        self.sighash_requests: list[str | None] = []
        self.broadcast_error: RPCError | None = None
        self.sign_inputs = True
        self._counter = 0

    # Test helpers ---------------------------------------------------------

    def fund(self, values: Iterable[int], confirmations: int = 6) -> list[OutPoint]:
        """Create one confirmed output per value, each in its own transaction."""

        outpoints = []
        for value in values:
            self._counter += 1
            seed = hashlib.sha256(f"{self.address}-{self._counter}".encode()).hexdigest()
            tx = funding_transaction(seed, [value], self.script)
            self._register(tx, confirmations)
            outpoints.append(OutPoint(txid_of(tx), 0))
        return outpoints

    def _register(self, tx: CTransaction, confirmations: int) -> None:
        txid = txid_of(tx)
        self.transactions[txid] = tx
        for vout, txout in enumerate(tx.vout):
            if bytes(txout.scriptPubKey) != self.script:
                continue
            self.utxos.append(
                {
                    "txid": txid,
                    "vout": vout,
                    "address": self.address,
                    "amount": sats_to_btc(txout.nValue),
                    "confirmations": confirmations,
                    "spendable": True,
                    "scriptPubKey": self.script.hex(),
                }
            )

    # RPC surface ----------------------------------------------------------

    def listunspent(self, minconf=1, maxconf=9999999, addresses=None):
        return [
            dict(entry)
            for entry in self.utxos
            if minconf <= entry["confirmations"] <= maxconf
            and (addresses is None or entry["address"] in addresses)
        ]

    def getbalance(self, minconf=1):
        return sum(
            (entry["amount"] for entry in self.utxos if entry["confirmations"] >= minconf),
            sats_to_btc(0),
        )

    def getrawtransaction(self, txid, verbose=False):
        if txid not in self.transactions:
            raise RPCError(-5, "No such mempool or blockchain transaction. Use gettransaction for wallet transactions.")
        return self.transactions[txid].serialize().hex()

    def wallet_transaction_hex(self, txid):
        if txid not in self.transactions:
            raise RPCError(-5, "Invalid or non-wallet transaction id")
        return self.transactions[txid].serialize().hex()

    def address_script(self, address):
        if address not in SCRIPTS:
            raise RPCError(-5, f"Invalid address: {address}")
        return SCRIPTS[address]

    def walletprocesspsbt(self, psbt, sign=True, sighashtype=None):
        self.sighash_requests.append(sighashtype)
        decoded = decode_psbt(psbt)
        for index, psbt_input in enumerate(decoded.inputs):
            spent = spent_output(decoded, index)
            if not self.sign_inputs or spent is None or bytes(spent.scriptPubKey) != self.script:
                continue
            if is_signed(psbt_input):
                continue
            psbt_input.final_script_witness = DUMMY_WITNESS
        complete = all(is_signed(psbt_input) for psbt_input in decoded.inputs)
        return {"psbt": decoded.to_base64(), "complete": complete}

    def finalizepsbt(self, psbt, extract=True):
        decoded = decode_psbt(psbt)
        if not all(is_signed(psbt_input) for psbt_input in decoded.inputs):
            return {"psbt": psbt, "complete": False}
        return {"hex": decoded.unsigned_tx.serialize().hex(), "complete": True}

    def sendrawtransaction(self, raw_tx):
        if self.broadcast_error is not None:
            raise self.broadcast_error
        tx = decode_transaction(raw_tx)
        spent = {outpoint_of(txin) for txin in tx.vin}
        self.utxos = [entry for entry in self.utxos if (entry["txid"], entry["vout"]) not in spent]
        self._register(tx, confirmations=0)
        self.sent.append(raw_tx)
        return txid_of(tx)


class StubOracle:
    """Inscription oracle answering from a fixed set of outpoints."""

    def __init__(self, inscriptions: Iterable[OutPoint] = ()) -> None:
        self.inscriptions = set(inscriptions)
        self.queries: list[OutPoint] = []

    def is_inscription(self, outpoint: OutPoint) -> bool:
        self.queries.append(outpoint)
        return outpoint in self.inscriptions

    def classify(self, outpoints):
        return {outpoint: self.is_inscription(outpoint) for outpoint in outpoints}
