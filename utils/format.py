from decimal import Decimal, InvalidOperation, ROUND_FLOOR, ROUND_HALF_UP, getcontext
from typing import Union

# Set precision for decimal calculations
getcontext().prec = 78  # Ethereum's uint256 max value has 78 decimal digits

DecimalLike = Union[str, int, Decimal]

USD_PLACES = 2


def to_decimal(value: DecimalLike) -> Decimal:
    """Convert a string/int/Decimal into a Decimal.

    Floats are rejected so that no binary rounding leaks into USD math.
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool) or isinstance(value, float):
        raise TypeError(f"Cannot convert {type(value).__name__} to Decimal without precision loss")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            raise ValueError("Cannot convert empty string to Decimal")
        try:
            return Decimal(text)
        except InvalidOperation:
            raise ValueError(f"Invalid decimal value: {value!r}")
    raise TypeError(f"Cannot convert {type(value)} to Decimal")


def round_decimal(value: DecimalLike, places: int, rounding: str = ROUND_HALF_UP) -> Decimal:
    """Round to a fixed number of decimal places. Non-finite values pass through."""
    value = to_decimal(value)
    if not value.is_finite():
        return value
    return value.quantize(Decimal(1).scaleb(-places), rounding=rounding)


def format_decimal(value: DecimalLike, places: int, rounding: str = ROUND_HALF_UP) -> str:
    """Round and render without trailing zeros, e.g. 0.6290 -> "0.629"."""
    rounded = round_decimal(value, places, rounding)
    if not rounded.is_finite():
        return "Infinity" if rounded.is_infinite() and rounded > 0 else str(rounded)
    return strip_zeros(rounded)


def floor_decimal(value: DecimalLike, places: int) -> str:
    return format_decimal(value, places, ROUND_FLOOR)


def format_usd(value: DecimalLike) -> str:
    return format_decimal(value, USD_PLACES)


def strip_zeros(value: Decimal) -> str:
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    if text in ("-0", ""):
        return "0"
    return text
