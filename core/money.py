"""
Money Module

Fixed-point amounts for everything that crosses the PayPal wire:
- Exact decimal arithmetic (floats are refused)
- Currency-checked add/subtract/compare
- Rounding to the precision PayPal accepts per currency
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Union

# PayPal rejects decimals for these currencies.
ZERO_DECIMAL_CURRENCIES = {"HUF", "JPY", "TWD"}

Number = Union[Decimal, int, str]


class CurrencyMismatch(ValueError):
    pass


def _to_decimal(value: Number) -> Decimal:
    if isinstance(value, float):
        raise TypeError("Amounts must not be built from floats")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid amount: {value!r}") from e


@dataclass(frozen=True)
class Amount:
    """An exact decimal number paired with an ISO 4217 currency code."""

    number: Decimal
    currency_code: str

    def __post_init__(self):
        object.__setattr__(self, "number", _to_decimal(self.number))
        object.__setattr__(self, "currency_code", self.currency_code.upper())

    @classmethod
    def zero(cls, currency_code: str) -> "Amount":
        return cls(Decimal("0"), currency_code)

    def _check(self, other: "Amount") -> None:
        if not isinstance(other, Amount):
            raise TypeError(f"Expected Amount, got {type(other).__name__}")
        if other.currency_code != self.currency_code:
            raise CurrencyMismatch(
                f"Cannot combine {self.currency_code} with {other.currency_code}"
            )

    def __add__(self, other: "Amount") -> "Amount":
        self._check(other)
        return Amount(self.number + other.number, self.currency_code)

    def __sub__(self, other: "Amount") -> "Amount":
        self._check(other)
        return Amount(self.number - other.number, self.currency_code)

    def __mul__(self, quantity: Number) -> "Amount":
        return Amount(self.number * _to_decimal(quantity), self.currency_code)

    def __neg__(self) -> "Amount":
        return Amount(-self.number, self.currency_code)

    def __abs__(self) -> "Amount":
        return Amount(abs(self.number), self.currency_code)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Amount):
            return NotImplemented
        self._check(other)
        return self.number == other.number

    def __hash__(self) -> int:
        return hash((self.number.normalize(), self.currency_code))

    def __lt__(self, other: "Amount") -> bool:
        self._check(other)
        return self.number < other.number

    def __le__(self, other: "Amount") -> bool:
        self._check(other)
        return self.number <= other.number

    def __gt__(self, other: "Amount") -> bool:
        self._check(other)
        return self.number > other.number

    def __ge__(self, other: "Amount") -> bool:
        self._check(other)
        return self.number >= other.number

    def is_zero(self) -> bool:
        return self.number == 0

    def is_positive(self) -> bool:
        return self.number > 0

    def to_wire(self) -> str:
        """Fixed-point string as PayPal expects it, e.g. ``"89.50"``."""
        return format(Rounder().round(self).number, "f")

    def __str__(self) -> str:
        return f"{format(self.number, 'f')} {self.currency_code}"


class Rounder:
    """Rounds amounts half-up to the currency's minor unit."""

    def __init__(self, default_precision: int = 2):
        self.default_precision = default_precision

    def precision(self, currency_code: str) -> int:
        if currency_code.upper() in ZERO_DECIMAL_CURRENCIES:
            return 0
        return self.default_precision

    def round(self, amount: Amount) -> Amount:
        quantum = Decimal(1).scaleb(-self.precision(amount.currency_code))
        return Amount(
            amount.number.quantize(quantum, rounding=ROUND_HALF_UP),
            amount.currency_code,
        )
