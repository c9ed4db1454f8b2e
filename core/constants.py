"""Unit conversion and fee helpers shared across the engine.


- TOKEN_DECIMALS controls the token granularity (6 on PKRSC and the reference stablecoin).
- to_units / from_units convert between human amounts and integer token units.
- split_fee computes (fee, net) so that net + fee == gross exactly.
"""

from django.conf import settings
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_UP

TOKEN_DECIMALS = getattr(settings, "TOKEN_DECIMALS", 6)
AMOUNT_QUANT = Decimal(1).scaleb(-TOKEN_DECIMALS)  # 0.000001

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def to_units(amount: str | Decimal, decimals: int = TOKEN_DECIMALS) -> int:
    """
    Convert a human-readable amount (e.g., "1000.50") to integer token units
    """
    amount = Decimal(str(amount))  # accept str, int or Decimal
    return int((amount * Decimal(10 ** decimals)).quantize(Decimal("1"), rounding=ROUND_DOWN))


def from_units(amount_units: int, decimals: int = TOKEN_DECIMALS) -> Decimal:
    """
    Convert integer token units back to a 6-decimal amount.
    """
    return (Decimal(int(amount_units)) / Decimal(10 ** decimals)).quantize(AMOUNT_QUANT, rounding=ROUND_DOWN)


def quantize_amount(amount: Decimal) -> Decimal:
    return Decimal(amount).quantize(AMOUNT_QUANT, rounding=ROUND_HALF_UP)


def split_fee(gross: Decimal, fee_percentage: Decimal) -> tuple[Decimal, Decimal]:
    """
    Fee percentages are expressed in percent (0.25 means 0.25%).
    The fee is rounded to token precision and net is derived by subtraction.
    """
    gross = quantize_amount(gross)
    fee = quantize_amount(gross * Decimal(fee_percentage) / Decimal(100))
    return fee, gross - fee
