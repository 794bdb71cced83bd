from __future__ import annotations

import pytest

from ordswap.fees import TradeBudget
from ordswap.model import OutPoint
from ordswap.psbt import (
    SIGHASH_SINGLE_ANYONECANPAY,
    build_psbt,
    is_signed,
    outpoint_of,
    pay_to,
    spend,
    spent_output,
    unsigned_transaction,
)
from ordswap.rpc_client import RPCError
from ordswap.seller import OfferError, SellerOfferBuilder

from stubs import SCRIPTS, SELLER_ADDRESS, StubWallet


@pytest.fixture
def seller() -> StubWallet:
    return StubWallet(SELLER_ADDRESS)


def test_offer_pays_price_to_inscription_script(seller: StubWallet) -> None:
    (inscription,) = seller.fund([546])
    builder = SellerOfferBuilder(seller, seller, TradeBudget(price=2500))

    offer = builder.build_offer(inscription)
    psbt = offer.decode()
    tx = psbt.unsigned_tx

    assert offer.inscription == inscription
    assert offer.inscription_output.nValue == 546
    assert len(tx.vin) == 1 and len(tx.vout) == 1
    assert outpoint_of(tx.vin[0]) == (inscription.txid, inscription.vout)
    assert tx.vout[0].nValue == 2500
    assert bytes(tx.vout[0].scriptPubKey) == SCRIPTS[SELLER_ADDRESS]
    assert int(psbt.inputs[0].sighash_type) == int(SIGHASH_SINGLE_ANYONECANPAY) == 0x83
    assert is_signed(psbt.inputs[0])
    assert seller.sighash_requests == ["SINGLE|ANYONECANPAY"]


def test_unsigned_offer_carries_previous_transaction(seller: StubWallet) -> None:
    (inscription,) = seller.fund([10_000])
    unsigned, output = SellerOfferBuilder(seller, seller, TradeBudget()).build_unsigned(inscription)

    assert spent_output(unsigned, 0).serialize() == output.serialize()
    assert unsigned.unsigned_tx.vin[0].nSequence == 0xFFFFFFFF
    assert unsigned.unsigned_tx.nVersion == 2
    assert not is_signed(unsigned.inputs[0])


def test_missing_inscription_transaction(seller: StubWallet) -> None:
    builder = SellerOfferBuilder(seller, seller, TradeBudget())

    with pytest.raises(OfferError, match="txindex"):
        builder.build_offer(OutPoint("ee" * 32, 0))


def test_undecodable_inscription_transaction(seller: StubWallet, monkeypatch: pytest.MonkeyPatch) -> None:
    (inscription,) = seller.fund([546])
    monkeypatch.setattr(seller, "getrawtransaction", lambda txid, verbose=False: "zz")

    with pytest.raises(OfferError, match="undecodable"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(inscription)


def test_out_of_range_output_index(seller: StubWallet) -> None:
    (inscription,) = seller.fund([546])

    with pytest.raises(OfferError, match="does not exist"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(OutPoint(inscription.txid, 5))


def test_wallet_that_cannot_sign_is_rejected(seller: StubWallet) -> None:
    (inscription,) = seller.fund([546])
    seller.sign_inputs = False

    with pytest.raises(OfferError, match="did not sign"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(inscription)


def test_wallet_altering_the_offer_is_rejected(seller: StubWallet, monkeypatch: pytest.MonkeyPatch) -> None:
    (inscription,) = seller.fund([546])

    def tamper(psbt, sign=True, sighashtype=None):
        cheaper = unsigned_transaction(
            [spend(inscription.txid, inscription.vout)],
            [pay_to(1, SCRIPTS[SELLER_ADDRESS])],
        )
        forged = build_psbt(cheaper, {0: seller.transactions[inscription.txid]})
        return {"psbt": forged.to_base64(), "complete": True}

    monkeypatch.setattr(seller, "walletprocesspsbt", tamper)

    with pytest.raises(OfferError, match="altered"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(inscription)


@pytest.mark.parametrize("reply", [{"complete": False}, {"psbt": "not a psbt", "complete": True}])
def test_unusable_wallet_reply_is_rejected(
    seller: StubWallet, monkeypatch: pytest.MonkeyPatch, reply: dict
) -> None:
    (inscription,) = seller.fund([546])
    monkeypatch.setattr(seller, "walletprocesspsbt", lambda *_args: reply)

    with pytest.raises(OfferError, match="returned"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(inscription)


def test_signing_rpc_error_is_wrapped(seller: StubWallet, monkeypatch: pytest.MonkeyPatch) -> None:
    (inscription,) = seller.fund([546])

    def locked(*_args, **_kwargs):
        raise RPCError(-13, "Error: Please enter the wallet passphrase with walletpassphrase first.")

    monkeypatch.setattr(seller, "walletprocesspsbt", locked)

    with pytest.raises(OfferError, match="Hint: The wallet is locked"):
        SellerOfferBuilder(seller, seller, TradeBudget()).build_offer(inscription)
