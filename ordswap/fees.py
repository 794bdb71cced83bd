"""Trade sizing constants and the arithmetic built on them.

Every amount here is an integer number of satoshis. The network fee of the
combined trade transaction is not estimated; it is a fixed allowance sized
for two spent inputs and three created outputs at a flat fee rate, which
keeps the buyer's change computable before the final input set is known.
"""

from __future__ import annotations

from dataclasses import dataclass, fields

DEFAULT_PRICE_SATS = 1900
DEFAULT_MARKETPLACE_FEE_SATS = 1000

# Outputs at or below this value qualify as separators; new separators are
# minted at exactly this value.
DEFAULT_SEPARATOR_VALUE_SATS = 1000
# Extra buyer output kept so the next trade finds a separator ready.
DEFAULT_CHANGE_ALLOWANCE_SATS = 1000
DEFAULT_SEPARATOR_CREATION_FEE_SATS = 258
DEFAULT_FEE_RATE_SATVB = 1

INPUT_VBYTES_ALLOWANCE = 180
OUTPUT_VBYTES_ALLOWANCE = 34
TX_OVERHEAD_VBYTES = 10
BUDGETED_INPUTS = 2
BUDGETED_OUTPUTS = 3

DUST_LIMIT_SATS = 546


def calculate_fee_sats(fee_rate_sat_vb: int, vsize: int) -> int:
    """Return the fee in satoshis for ``vsize`` vbytes at an integer sat/vB rate."""

    return fee_rate_sat_vb * vsize


def budgeted_vsize(
    inputs: int = BUDGETED_INPUTS, outputs: int = BUDGETED_OUTPUTS
) -> int:
    return inputs * INPUT_VBYTES_ALLOWANCE + outputs * OUTPUT_VBYTES_ALLOWANCE + TX_OVERHEAD_VBYTES


@dataclass(frozen=True)
class TradeBudget:
    """Fixed amounts that size a trade.

    ``price``
        Paid to the seller (the seller's signed output value).
    ``marketplace_fee``
        Paid to the marketplace address.
    ``separator_value``
        Dust threshold for separator candidates and value of minted separators.
    ``change_allowance``
        Fixed buyer output placed after the marketplace fee.
    ``separator_creation_fee``
        Network fee of the one-in, two-out separator creation transaction.
    ``fee_rate_sat_vb``
        Flat fee rate applied to :func:`budgeted_vsize` for the trade itself.
    """

    price: int = DEFAULT_PRICE_SATS
    marketplace_fee: int = DEFAULT_MARKETPLACE_FEE_SATS
    separator_value: int = DEFAULT_SEPARATOR_VALUE_SATS
    change_allowance: int = DEFAULT_CHANGE_ALLOWANCE_SATS
    separator_creation_fee: int = DEFAULT_SEPARATOR_CREATION_FEE_SATS
    fee_rate_sat_vb: int = DEFAULT_FEE_RATE_SATVB

    def __post_init__(self) -> None:
        for item in fields(self):
            value = getattr(self, item.name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise TypeError(f"{item.name} must be an integer number of satoshis, got {value!r}")
            if value < 0:
                raise ValueError(f"{item.name} must be non-negative, got {value}")

    @property
    def transfer_overhead(self) -> int:
        """Network fee left implicit in the combined trade transaction."""

        return calculate_fee_sats(self.fee_rate_sat_vb, budgeted_vsize())

    @property
    def required_payment_value(self) -> int:
        """Minimum total of the buyer's payment inputs."""

        return self.price + self.marketplace_fee + self.change_allowance + self.transfer_overhead

    def change_for(self, payment_total: int) -> int:
        """Buyer change for a given payment input total (may be negative)."""

        return payment_total - self.required_payment_value

    def separator_change_for(self, source_value: int) -> int:
        return source_value - self.separator_value - self.separator_creation_fee

    def describe(self) -> dict[str, int]:
        return {
            "price": self.price,
            "marketplace_fee": self.marketplace_fee,
            "separator_value": self.separator_value,
            "change_allowance": self.change_allowance,
            "transfer_overhead": self.transfer_overhead,
            "required_payment_value": self.required_payment_value,
        }
