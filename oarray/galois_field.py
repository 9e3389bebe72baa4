import itertools
import numbers
from collections.abc import Iterable, Sequence
from typing import TypeAlias

import equinox as eqx
import galois
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Int32

from oarray.errors import DivisionByZeroError, FieldMismatchError, InvalidFieldOrderError

# a 0-dimensional `galois.FieldArray`; its integer value is the canonical
# representation in [0, order)
FieldElement: TypeAlias = galois.FieldArray


def prime_power_decomposition(n: int) -> tuple[int, int] | None:
    """Returns `(p, m)` with `n = p^m` for a prime `p`, or None if `n` is not a
    prime power."""
    if n < 2 or not galois.is_prime_power(n):
        return None
    primes, exponents = galois.factors(n)
    return int(primes[0]), int(exponents[0])


def is_prime_power(n: int) -> bool:
    return prime_power_decomposition(n) is not None


class FiniteField(eqx.Module):
    """The finite field GF(p^m).

    Elements are represented canonically by the integers in [0, p^m); for m > 1 an
    integer is read as the coefficient vector (in base p) of a polynomial in the
    generator, reduced modulo the irreducible polynomial of the field. The heavy
    lifting is delegated to `galois`, this class pins the field down, validates
    inputs and keeps elements of different fields from being mixed.

    Instances are immutable and can be shared freely.
    """

    characteristic: int = eqx.field(static=True)
    degree: int = eqx.field(static=True)
    _gf: type = eqx.field(static=True)

    def __init__(self, characteristic: int, degree: int = 1):
        if not isinstance(characteristic, numbers.Integral) or not isinstance(
            degree, numbers.Integral
        ):
            raise InvalidFieldOrderError(
                f"characteristic and degree must be integers, got {characteristic!r} and {degree!r}"
            )
        if characteristic < 2 or not galois.is_prime(int(characteristic)):
            raise InvalidFieldOrderError(
                f"characteristic must be prime but is {characteristic}."
            )
        if degree < 1:
            raise InvalidFieldOrderError(f"degree must be at least 1 but is {degree}.")
        self.characteristic = int(characteristic)
        self.degree = int(degree)
        self._gf = galois.GF(self.characteristic**self.degree)

    @classmethod
    def of_order(cls, order: int) -> "FiniteField":
        """The field with `order` elements; `order` must be a prime power."""
        decomposition = prime_power_decomposition(order)
        if decomposition is None:
            raise InvalidFieldOrderError(f"{order} is not a prime power.")
        return cls(*decomposition)

    @property
    def order(self) -> int:
        return self.characteristic**self.degree

    @property
    def irreducible_poly(self) -> galois.Poly:
        return self._gf.irreducible_poly

    @property
    def zero(self) -> FieldElement:
        return self._gf(0)

    @property
    def one(self) -> FieldElement:
        return self._gf(1)

    @property
    def primitive_element(self) -> FieldElement:
        return self._gf.primitive_element

    def __repr__(self) -> str:
        if self.degree == 1:
            return f"GF({self.characteristic})"
        return f"GF({self.characteristic}^{self.degree})"

    def element(self, value: "int | FieldElement") -> FieldElement:
        """Returns `value` as an element of this field.

        Integers must lie in [0, order). Elements of this field are passed through;
        elements of any other field raise a FieldMismatchError.
        """
        if isinstance(value, galois.FieldArray):
            other = type(value)
            if (
                other.characteristic != self.characteristic
                or other.degree != self.degree
                or other.irreducible_poly != self._gf.irreducible_poly
            ):
                raise FieldMismatchError(
                    f"element {value} of {other.name} used in {self!r}."
                )
            if value.ndim != 0:
                raise TypeError(f"expected a single field element, got shape {value.shape}.")
            return value
        if isinstance(value, (bool, np.bool_)) or not isinstance(value, numbers.Integral):
            raise TypeError(f"field elements are integers, got {value!r}.")
        if not 0 <= value < self.order:
            raise ValueError(f"{value} is not an element of {self!r}.")
        return self._gf(int(value))

    def add(self, a, b) -> FieldElement:
        return self.element(a) + self.element(b)

    def sub(self, a, b) -> FieldElement:
        return self.element(a) - self.element(b)

    def neg(self, a) -> FieldElement:
        return -self.element(a)

    def mul(self, a, b) -> FieldElement:
        return self.element(a) * self.element(b)

    def inv(self, a) -> FieldElement:
        """Multiplicative inverse of `a`.

        Raises:
            DivisionByZeroError: if `a` is the zero element.
        """
        a = self.element(a)
        if a == 0:
            raise DivisionByZeroError(f"zero has no inverse in {self!r}.")
        return self.one / a

    def div(self, a, b) -> FieldElement:
        return self.mul(a, self.inv(b))

    def pow(self, a, e: int) -> FieldElement:
        """`a` raised to the integer power `e`; negative exponents need a non-zero `a`."""
        a = self.element(a)
        if not isinstance(e, numbers.Integral):
            raise TypeError(f"exponent must be an integer, got {e!r}.")
        if e < 0:
            return self.inv(a) ** int(-e)
        return a ** int(e)

    def poly_eval(self, coefficients: Iterable, x) -> FieldElement:
        """Evaluates c_0 + c_1 x + ... + c_d x^d with Horner's rule, where
        `coefficients` = (c_0, ..., c_d)."""
        x = self.element(x)
        result = self.zero
        for c in reversed([self.element(c) for c in coefficients]):
            result = result * x + c
        return result

    def elements(self) -> Sequence[FieldElement]:
        """All elements of the field in canonical order. The returned sequence is
        lazy and can be iterated any number of times."""
        return _ElementSequence(self._gf, 0, self.order)

    def nonzero_elements(self) -> Sequence[FieldElement]:
        """All non-zero elements of the field in canonical order (lazy, restartable)."""
        return _ElementSequence(self._gf, 1, self.order)

    def primitive_elements(self) -> tuple[FieldElement, ...]:
        """All generators of the multiplicative group, in canonical order."""
        return tuple(self._gf(int(x)) for x in self._gf.primitive_elements)

    def addition_table(self) -> Int32[Array, "order order"]:
        """table[a, b] = a + b, with elements given by their canonical integers."""
        x = self._gf.elements
        return _as_table(x[:, None] + x[None, :])

    def multiplication_table(self) -> Int32[Array, "order order"]:
        """table[a, b] = a * b, with elements given by their canonical integers."""
        x = self._gf.elements
        return _as_table(x[:, None] * x[None, :])


def _as_table(values: galois.FieldArray) -> Int32[Array, "order order"]:
    return jnp.asarray(np.asarray(values.view(np.ndarray), dtype=np.int32))


class _ElementSequence(Sequence):
    __slots__ = ("_gf", "_start", "_stop")

    def __init__(self, gf: type, start: int, stop: int):
        self._gf = gf
        self._start = start
        self._stop = stop

    def __len__(self):
        return self._stop - self._start

    def __getitem__(self, i):
        if isinstance(i, slice):
            return [self[j] for j in range(*i.indices(len(self)))]
        if i < -len(self) or i >= len(self):
            raise IndexError(f"Index {i} out of bounds [{-len(self)},{len(self)})")
        return self._gf(self._start + i % len(self))

    def __iter__(self):
        return map(self._gf, range(self._start, self._stop))


def powers(field: FiniteField, a, n: int) -> list[FieldElement]:
    """Returns [1, a, a^2, ..., a^(n-1)] in `field`."""
    repeated_a = itertools.chain([field.one], itertools.repeat(field.element(a), n - 1))
    return list(itertools.accumulate(repeated_a, field.mul))[:n]
