"""
Money helpers shared by the pricing engine, order schemas and payouts.

Amounts are floats rounded to 2 decimal places once, at the point a total
is finalised. Rounding goes through Decimal on the float's shortest string
form, half-up, so 50.00 * 1.035 finalises to 51.75 rather than the binary
51.74999...
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

# Fixed processing fee added on top of the primary-currency base amount
PROCESSING_FEE_RATE = Decimal("0.035")
# Fixed deduction applied to the base amount when paying a venue out
PAYOUT_DEDUCTION_RATE = Decimal("0.0175")

CENT = Decimal("0.01")


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


def round_currency(value: float) -> float:
    """Round to 2 decimal places, half-up."""
    return float(_to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def with_processing_fee(base_amount: float) -> float:
    """round(base * 1.035, 2)"""
    total = _to_decimal(base_amount) * (Decimal("1") + PROCESSING_FEE_RATE)
    return float(total.quantize(CENT, rounding=ROUND_HALF_UP))


def without_processing_fee(total_amount: float) -> float:
    """Back the processing fee out of a fee-inclusive total (unrounded)."""
    return float(_to_decimal(total_amount) / (Decimal("1") + PROCESSING_FEE_RATE))


def after_payout_deduction(base_amount: float) -> float:
    """round(base * 0.9825, 2)"""
    payout = _to_decimal(base_amount) * (Decimal("1") - PAYOUT_DEDUCTION_RATE)
    return float(payout.quantize(CENT, rounding=ROUND_HALF_UP))


def base_amount(original_amount: Optional[float], exchange_rate: Optional[float]) -> Optional[float]:
    """Secondary-currency amount converted to the primary currency, or None."""
    if original_amount is None or exchange_rate is None or exchange_rate <= 0:
        return None
    return original_amount / exchange_rate


def fee_inclusive_total(original_amount: float, exchange_rate: float) -> float:
    """round(original / rate * 1.035, 2); the rate must be positive."""
    if exchange_rate <= 0:
        raise ValueError("exchange rate must be positive")
    return with_processing_fee(original_amount / exchange_rate)
