from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Union

from utils.format import strip_zeros, to_decimal

MAX_UINT256 = 2**256 - 1
MAX_DECIMALS = 77  # one less than the Decimal precision


@dataclass(frozen=True)
class TokenAmount:
    """An amount held as a raw integer in the token's smallest unit (wei).

    Chain reads return raw integers, the routing API speaks in unit strings
    ("171.00092"); this type converts between the two without floats.
    """
    raw: int
    decimals: int

    def __post_init__(self):
        if not isinstance(self.raw, int) or isinstance(self.raw, bool):
            raise TypeError("Raw amount must be an integer")
        if not isinstance(self.decimals, int) or isinstance(self.decimals, bool):
            raise TypeError("Decimals must be an integer")
        if self.raw < 0:
            raise ValueError("Raw amount cannot be negative")
        if self.raw > MAX_UINT256:
            raise ValueError(f"Raw amount exceeds uint256 ({self.raw})")
        if not 0 <= self.decimals <= MAX_DECIMALS:
            raise ValueError(f"Decimals must be between 0 and {MAX_DECIMALS}, got {self.decimals}")

    @classmethod
    def from_wei(cls, wei_amount: Union[int, str], decimals: int) -> 'TokenAmount':
        """Wrap a raw on-chain integer (decoded results may come as strings)"""
        if isinstance(wei_amount, float):
            raise TypeError("Float wei amounts are not supported")
        try:
            return cls(raw=int(wei_amount), decimals=decimals)
        except ValueError as e:
            raise ValueError(f"Invalid wei amount {wei_amount!r}: {e}")

    @classmethod
    def from_units(cls, amount: Union[int, str, Decimal], decimals: int, truncate: bool = False) -> 'TokenAmount':
        """Parse a unit amount such as "1.5".

        Digits beyond the token's precision are rejected, or floored away
        with ``truncate=True`` (swap outputs are quoted at full precision).
        """
        try:
            value = to_decimal(amount)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Cannot convert {amount!r} to a token amount: {e}")
        if not value.is_finite():
            raise ValueError(f"Token amount must be finite, got {amount!r}")

        scaled = value.scaleb(decimals)
        whole = scaled.to_integral_value(rounding=ROUND_FLOOR)
        if whole != scaled and not truncate:
            raise ValueError(f"{amount} has more than {decimals} decimal places")
        return cls(raw=int(whole), decimals=decimals)

    def sub_wei(self, wei: int) -> 'TokenAmount':
        """Take off a few wei of rounding slack, stopping at zero"""
        return TokenAmount(raw=max(self.raw - wei, 0), decimals=self.decimals)

    def is_zero(self) -> bool:
        return self.raw == 0

    def to_decimal(self) -> Decimal:
        return Decimal(self.raw).scaleb(-self.decimals)

    @property
    def amount(self) -> str:
        """Unit string without trailing zeros, as used in routing API payloads"""
        return strip_zeros(self.to_decimal())
