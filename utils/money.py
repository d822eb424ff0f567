"""
Decimal money helpers.

Every amount in the system is a Decimal with two places. Rounding is
ROUND_HALF_UP and happens after every arithmetic step, never only at the end.
"""

from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")

# ISO 4217 currencies without a minor unit (Stripe's list)
ZERO_DECIMAL_CURRENCIES = frozenset({
    "BIF", "CLP", "DJF", "GNF", "JPY", "KMF", "KRW", "MGA",
    "PYG", "RWF", "UGX", "VND", "VUV", "XAF", "XOF", "XPF",
})


def to_decimal(value) -> Decimal:
    """Coerce int/str/float/Decimal to Decimal. Floats go through str()."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value) -> Decimal:
    """Round to two decimal places, half up."""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def percent_of(amount, rate) -> Decimal:
    """round2(amount * rate / 100)."""
    return round2(to_decimal(amount) * to_decimal(rate) / Decimal(100))


def minor_unit_exponent(currency: str) -> int:
    """Number of decimal places a currency uses on the wire."""
    return 0 if currency.upper() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount, currency: str = "INR") -> int:
    """
    Convert a major-unit amount to integer minor units (paise, cents).

    Raises ValueError if the amount has more precision than the currency allows.
    """
    exponent = minor_unit_exponent(currency)
    scaled = to_decimal(amount) * (Decimal(10) ** exponent)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has sub-unit precision for {currency}")
    return int(scaled)


def from_minor_units(units: int, currency: str = "INR") -> Decimal:
    """Convert integer minor units back to a two-place Decimal."""
    exponent = minor_unit_exponent(currency)
    return round2(Decimal(int(units)) / (Decimal(10) ** exponent))
