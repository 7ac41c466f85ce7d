"""
Unit-carrying quantities with a symmetric, independent uncertainty.

Units, conversion factors and dimension checks come from one shared pint
registry (`ureg`); a `PhysicalQuantity` keeps a bare value plus a 1-sigma
uncertainty and a pint unit, and does its own error propagation:

    add/sub:  u = sqrt(u1^2 + u2^2)
    mul/div:  u/|v| = sqrt((u1/v1)^2 + (u2/v2)^2)
    power n:  u/|v| = |n| * u1/|v1|

A term whose value is exactly zero contributes nothing to the relative
uncertainty of a product.  This avoids the division by zero but is not
statistically rigorous for values close to zero.
"""
import operator
import re
import tokenize
from dataclasses import dataclass
from fractions import Fraction
from functools import lru_cache
from numbers import Real

import numpy as np
import pint

from .errors import DomainError, NonPhysicalParameter, UnitMismatch, UnknownUnit

ureg = pint.UnitRegistry()
DIMENSIONLESS = ureg.dimensionless

# spellings pint's parser does not take as written
_SUBSTITUTIONS = (
    ("Ω", "Ω"),   # ohm sign -> Greek capital omega
    ("µ", "u"),        # micro sign
    ("μ", "u"),        # Greek mu
    ("·", "*"),
    ("^", "**"),
)
_SQRT = re.compile(r"sqrt\(([^()]*)\)")


def _normalise(text):
    for old, new in _SUBSTITUTIONS:
        text = text.replace(old, new)
    return _SQRT.sub(r"(\1)**0.5", text)


@lru_cache(maxsize=256)
def _parse_cached(text):
    try:
        return ureg.parse_units(_normalise(text))
    except (pint.UndefinedUnitError, pint.DefinitionSyntaxError,
            SyntaxError, tokenize.TokenError, ValueError) as e:
        raise UnknownUnit(f"cannot parse unit {text!r}: {e}") from None


def parse_unit(unit):
    """Return a pint unit for a unit expression such as 'nV/sqrt(Hz)' (units pass through)."""
    if unit is None:
        return DIMENSIONLESS
    if not isinstance(unit, str):
        return unit
    if unit.strip() in ("", "1"):
        return DIMENSIONLESS
    return _parse_cached(unit.strip())


def unit_symbol(unit):
    """Short display form, e.g. 'V/nT'."""
    if unit == DIMENSIONLESS:
        return "1"
    return format(unit, "~C")


def commensurable(a, b):
    return parse_unit(a).dimensionality == parse_unit(b).dimensionality


def conversion_factor(source, target):
    """Scale factor taking a value in `source` units to `target` units."""
    source, target = parse_unit(source), parse_unit(target)
    try:
        return float(ureg.Quantity(1.0, source).to(target).magnitude)
    except pint.DimensionalityError:
        raise UnitMismatch(f"cannot convert {unit_symbol(source)} to {unit_symbol(target)}") from None


def _as_number(x):
    if np.ndim(x) == 0:
        return float(x)
    arr = np.array(x, dtype=float)
    arr.setflags(write=False)
    return arr


def _relative(u, v):
    v = np.asarray(v, dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        rel = np.where(v != 0, np.abs(u) / np.abs(v), 0.0)
    return rel


@dataclass(frozen=True, eq=False)
class PhysicalQuantity:
    """
    A value (scalar or 1D array) tagged with a unit and a 1-sigma uncertainty.

    Instances never change after construction; every operation returns a
    new quantity.  Plain Python/numpy numbers take part in arithmetic as
    exact dimensionless quantities.
    """

    value: object
    unit: object = DIMENSIONLESS
    uncertainty: object = 0.0

    # numpy defers binary operators to us instead of building object arrays
    __array_ufunc__ = None
    # equality is element-wise, like numpy
    __hash__ = None

    def __post_init__(self):
        value = _as_number(self.value)
        uncertainty = self.uncertainty
        if np.ndim(value) > 0 and np.ndim(uncertainty) == 0:
            uncertainty = np.full(np.shape(value), float(uncertainty))
        uncertainty = _as_number(uncertainty)
        if np.any(np.asarray(uncertainty) < 0):
            raise NonPhysicalParameter("uncertainty must be non-negative")
        object.__setattr__(self, "value", value)
        object.__setattr__(self, "uncertainty", uncertainty)
        object.__setattr__(self, "unit", parse_unit(self.unit))

    # ---- conversion -------------------------------------------------
    def to(self, unit):
        """Express this quantity in a commensurable unit (pure rescale)."""
        target = parse_unit(unit)
        factor = conversion_factor(self.unit, target)
        return PhysicalQuantity(self.value * factor, target, self.uncertainty * factor)

    def magnitude(self, unit=None):
        """Bare value in `unit` (default: own unit)."""
        return self.value if unit is None else self.to(unit).value

    def error(self, unit=None):
        """Bare uncertainty in `unit` (default: own unit)."""
        return self.uncertainty if unit is None else self.to(unit).uncertainty

    @property
    def relative_uncertainty(self):
        return _as_number(_relative(self.uncertainty, self.value))

    @property
    def dimensionless(self):
        return commensurable(self.unit, DIMENSIONLESS)

    def commensurable(self, unit):
        return commensurable(self.unit, unit)

    def is_finite(self):
        return bool(np.all(np.isfinite(self.value)) and np.all(np.isfinite(self.uncertainty)))

    def __float__(self):
        if not self.dimensionless:
            raise UnitMismatch(f"cannot convert {unit_symbol(self.unit)} to a plain number")
        return float(self.value * conversion_factor(self.unit, DIMENSIONLESS))

    # ---- array protocol ---------------------------------------------
    @property
    def shape(self):
        return np.shape(self.value)

    def __len__(self):
        if np.ndim(self.value) == 0:
            raise TypeError("scalar quantity has no len()")
        return len(self.value)

    def __getitem__(self, index):
        return PhysicalQuantity(self.value[index], self.unit, self.uncertainty[index])

    def __iter__(self):
        for i in range(len(self)):
            yield self[i]

    @classmethod
    def stack(cls, quantities, unit=None):
        """Combine scalar quantities into one array quantity."""
        quantities = list(quantities)
        target = parse_unit(unit) if unit is not None else quantities[0].unit
        converted = [q.to(target) for q in quantities]
        return cls([q.value for q in converted], target, [q.uncertainty for q in converted])

    # ---- arithmetic -------------------------------------------------
    def __add__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        factor = conversion_factor(other.unit, self.unit)
        return PhysicalQuantity(
            self.value + other.value * factor,
            self.unit,
            np.hypot(self.uncertainty, other.uncertainty * factor),
        )

    def __radd__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return other + self

    def __sub__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return self + (-other)

    def __rsub__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return other + (-self)

    def __mul__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        value = self.value * other.value
        rel = np.hypot(_relative(self.uncertainty, self.value), _relative(other.uncertainty, other.value))
        return PhysicalQuantity(value, self.unit * other.unit, np.abs(value) * rel)

    def __rmul__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return other * self

    def __truediv__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        if np.any(np.asarray(other.value) == 0):
            raise DomainError(f"division by zero {unit_symbol(other.unit)}")
        value = self.value / other.value
        rel = np.hypot(_relative(self.uncertainty, self.value), _relative(other.uncertainty, other.value))
        return PhysicalQuantity(value, self.unit / other.unit, np.abs(value) * rel)

    def __rtruediv__(self, other):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        return other / self

    def __pow__(self, exponent):
        if isinstance(exponent, PhysicalQuantity):
            exponent = float(exponent)
        if not isinstance(exponent, (Real, Fraction)):
            return NotImplemented
        n = Fraction(exponent).limit_denominator(1000)
        values = np.asarray(self.value)
        if n.denominator != 1 and np.any(values < 0):
            raise DomainError(f"non-integer power of a negative {unit_symbol(self.unit)} value")
        if n < 0 and np.any(values == 0):
            raise DomainError(f"negative power of a zero {unit_symbol(self.unit)} value")
        value = np.power(self.value, float(n))
        rel = abs(float(n)) * _relative(self.uncertainty, self.value)
        return PhysicalQuantity(value, self.unit ** float(n), np.abs(value) * rel)

    def sqrt(self):
        return self ** Fraction(1, 2)

    def __neg__(self):
        return PhysicalQuantity(-np.asarray(self.value), self.unit, self.uncertainty)

    def __pos__(self):
        return self

    def __abs__(self):
        return PhysicalQuantity(np.abs(self.value), self.unit, self.uncertainty)

    # ---- comparison (nominal values only) ---------------------------
    def _compare(self, other, op):
        other = _coerce(other)
        if other is NotImplemented:
            return NotImplemented
        factor = conversion_factor(other.unit, self.unit)
        return op(self.value, other.value * factor)

    def __eq__(self, other):
        if isinstance(other, PhysicalQuantity) and not self.commensurable(other.unit):
            return False
        return self._compare(other, operator.eq)

    def __ne__(self, other):
        if isinstance(other, PhysicalQuantity) and not self.commensurable(other.unit):
            return True
        return self._compare(other, operator.ne)

    def __lt__(self, other):
        return self._compare(other, operator.lt)

    def __le__(self, other):
        return self._compare(other, operator.le)

    def __gt__(self, other):
        return self._compare(other, operator.gt)

    def __ge__(self, other):
        return self._compare(other, operator.ge)

    # ---- display ----------------------------------------------------
    def __format__(self, spec):
        spec = spec or ".4g"
        symbol = unit_symbol(self.unit)
        if np.ndim(self.value) == 0:
            if self.uncertainty:
                return f"{self.value:{spec}} ± {self.uncertainty:.2g} {symbol}"
            return f"{self.value:{spec}} {symbol}"
        return f"<{len(self)} values in {symbol}>"

    def __str__(self):
        return format(self)

    def __repr__(self):
        return f"PhysicalQuantity({self.value!r}, {unit_symbol(self.unit)!r}, {self.uncertainty!r})"


def _coerce(other):
    if isinstance(other, PhysicalQuantity):
        return other
    if isinstance(other, (Real, np.ndarray, Fraction)):
        return PhysicalQuantity(other, DIMENSIONLESS)
    return NotImplemented


def sqrt(q):
    return q.sqrt()


Q = PhysicalQuantity
