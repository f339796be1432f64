"""
rational.py - Exact Rational Arithmetic

Interest rates, collateral rates and outstanding balances are exact
fractions of arbitrary-precision integers. There is no floating point
anywhere in the validator: rounding direction is a protocol invariant
(requirements round up, releases round down, both in the lender's favour),
so every rounding step is explicit through floor()/ceiling() or the
integer helpers below.

A Rational is normalised on construction: the fraction is reduced and the
denominator is positive, so equal values have equal fields and equal
hashes.
"""

from __future__ import annotations
from dataclasses import dataclass
from fractions import Fraction
import math
from typing import Union

from .core import LoanArithmeticError


def _require_int(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise LoanArithmeticError(f"{what} must be an integer, got {type(value).__name__}")
    return value


def floor_div(numerator: int, denominator: int) -> int:
    """Integer division rounded toward negative infinity."""
    _require_int(numerator, "numerator")
    if _require_int(denominator, "denominator") == 0:
        raise LoanArithmeticError("Division by zero")
    return numerator // denominator


def ceil_div(numerator: int, denominator: int) -> int:
    """Integer division rounded toward positive infinity."""
    _require_int(numerator, "numerator")
    if _require_int(denominator, "denominator") == 0:
        raise LoanArithmeticError("Division by zero")
    return -((-numerator) // denominator)


@dataclass(frozen=True, slots=True)
class Rational:
    """
    Exact fraction numerator/denominator.

    Raises:
        LoanArithmeticError: on a zero denominator or non-integer components.

    Example:
        interest = Rational(1, 20)
        balance = 10_000_000 + 10_000_000 * interest   # Rational(10500000, 1)
    """
    numerator: int
    denominator: int = 1

    def __post_init__(self):
        num = _require_int(self.numerator, "Rational numerator")
        den = _require_int(self.denominator, "Rational denominator")
        if den == 0:
            raise LoanArithmeticError(f"Rational {num}/0 has a zero denominator")
        if den < 0:
            num, den = -num, -den
        g = math.gcd(num, den)
        object.__setattr__(self, 'numerator', num // g)
        object.__setattr__(self, 'denominator', den // g)

    @classmethod
    def of(cls, value: RationalLike) -> Rational:
        """Coerce an int or Rational to a Rational."""
        if isinstance(value, Rational):
            return value
        return cls(_require_int(value, "Rational operand"))

    # --- arithmetic ---------------------------------------------------------

    def __add__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return Rational(
            self.numerator * o.denominator + o.numerator * self.denominator,
            self.denominator * o.denominator,
        )

    __radd__ = __add__

    def __sub__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return Rational(
            self.numerator * o.denominator - o.numerator * self.denominator,
            self.denominator * o.denominator,
        )

    def __rsub__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return o - self

    def __mul__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return Rational(self.numerator * o.numerator, self.denominator * o.denominator)

    __rmul__ = __mul__

    def __truediv__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        if o.numerator == 0:
            raise LoanArithmeticError(f"Division of {self} by zero")
        return Rational(self.numerator * o.denominator, self.denominator * o.numerator)

    def __rtruediv__(self, other: RationalLike) -> Rational:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        return o / self

    def __neg__(self) -> Rational:
        return Rational(-self.numerator, self.denominator)

    # --- comparison ---------------------------------------------------------

    def _cmp(self, other) -> int:
        o = _coerce(other)
        if o is NotImplemented:
            return NotImplemented
        left = self.numerator * o.denominator
        right = o.numerator * self.denominator
        return (left > right) - (left < right)

    def __eq__(self, other) -> bool:
        c = self._cmp(other)
        return c if c is NotImplemented else c == 0

    def __lt__(self, other) -> bool:
        c = self._cmp(other)
        return c if c is NotImplemented else c < 0

    def __le__(self, other) -> bool:
        c = self._cmp(other)
        return c if c is NotImplemented else c <= 0

    def __gt__(self, other) -> bool:
        c = self._cmp(other)
        return c if c is NotImplemented else c > 0

    def __ge__(self, other) -> bool:
        c = self._cmp(other)
        return c if c is NotImplemented else c >= 0

    def __hash__(self) -> int:
        return hash(Fraction(self.numerator, self.denominator))

    # --- rounding -----------------------------------------------------------

    def floor(self) -> int:
        return self.numerator // self.denominator

    def ceiling(self) -> int:
        return -((-self.numerator) // self.denominator)

    def is_zero(self) -> bool:
        return self.numerator == 0

    def is_integral(self) -> bool:
        return self.denominator == 1

    def to_fraction(self) -> Fraction:
        """Return the equivalent fractions.Fraction (for interop only)."""
        return Fraction(self.numerator, self.denominator)

    def __str__(self) -> str:
        return f"{self.numerator}/{self.denominator}"

    def __repr__(self) -> str:
        return f"Rational({self.numerator}, {self.denominator})"


RationalLike = Union[Rational, int]


def _coerce(value) -> Rational:
    if isinstance(value, Rational):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        return Rational(value)
    return NotImplemented


ZERO = Rational(0)
ONE = Rational(1)
