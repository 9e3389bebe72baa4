"""Algebraic constructions of orthogonal arrays over finite fields.

Both constructions follow chapter 10.4 of Art Owen's Monte Carlo book and evaluate
polynomials over GF(s) at every (row, column generator) pair; the shared skeleton is
`construct_polynomial_oa`.

```bibtex
@article{bush1952,
    title = {Orthogonal Arrays of Index Unity},
    author = {K. A. Bush},
    journal = {The Annals of Mathematical Statistics},
    volume = {23},
    number = {3},
    pages = {426-434},
    year = {1952},
    doi = {https://doi.org/10.1214/aoms/1177729387},
}
```
"""

import itertools
from collections.abc import Callable, Sequence
from typing import Literal

import equinox as eqx
import numpy as np

from oarray.errors import InfeasibleParametersError
from oarray.galois_field import FieldElement, FiniteField, powers, prime_power_decomposition
from oarray.oa import MAX_LEVELS, PolynomialOrthogonalArray

Method = Literal["bose", "bush"]


class ConstructionParams(eqx.Module):
    """Requested parameters of an orthogonal array: `levels` (s), `factors` (k) and
    `strength` (t). Whether they are feasible depends on the construction method."""

    levels: int = eqx.field(static=True)
    factors: int = eqx.field(static=True)
    strength: int = eqx.field(static=True, default=2)

    def __check_init__(self):
        if self.levels < 2:
            raise InfeasibleParametersError(
                f"Number of levels must be at least 2 but is {self.levels}."
            )
        if self.factors < 1:
            raise InfeasibleParametersError(
                f"Number of factors must be positive but is {self.factors}."
            )
        if self.strength < 1:
            raise InfeasibleParametersError(
                f"Strength must be positive but is {self.strength}."
            )


def construct_polynomial_oa(
    field: FiniteField,
    row_degree: int,
    strength: int,
    generators: Sequence[FieldElement | None],
    column_polynomial: Callable[[FieldElement | None], Sequence[FieldElement]],
) -> PolynomialOrthogonalArray:
    """Assembles the orthogonal array whose rows are all `row_degree`-tuples x over
    `field` and whose column for generator g holds sum_j x_j * c_j, where
    (c_0, ..., c_{row_degree-1}) = column_polynomial(g).

    `None` is a valid generator; constructions use it for their special column (the
    infinite slope of Bose, the boundary column of Bush).
    """
    columns = []
    for generator in generators:
        coefficients = column_polynomial(generator)
        assert len(coefficients) == row_degree
        columns.append([int(field.element(c)) for c in coefficients])
    coefficient_matrix = np.asarray(np.column_stack(columns), dtype=np.int32)
    return PolynomialOrthogonalArray(
        field=field, coefficients=coefficient_matrix, strength=strength
    )


def _field_of_order(levels: int) -> FiniteField:
    if levels > MAX_LEVELS:
        raise InfeasibleParametersError(
            f"Levels are stored as int8, so at most {MAX_LEVELS} levels are supported but levels = {levels}."
        )
    decomposition = prime_power_decomposition(levels)
    if decomposition is None:
        raise InfeasibleParametersError(
            f"Number of levels must be a prime power but is {levels}."
        )
    return FiniteField(*decomposition)


def validate_bose_params(params: ConstructionParams) -> FiniteField:
    """Checks that Bose construction applies to `params` and returns the field
    GF(levels) it works over.

    Raises:
        InfeasibleParametersError: unless strength = 2, levels is a prime power of at most
            MAX_LEVELS and 2 <= factors <= levels + 1.
    """
    if params.strength != 2:
        raise InfeasibleParametersError(
            f"Bose construction has strength 2, but strength {params.strength} was requested."
        )
    if not 2 <= params.factors <= params.levels + 1:
        raise InfeasibleParametersError(
            f"Bose construction supports 2 <= factors <= levels + 1 = {params.levels + 1}, "
            f"but factors = {params.factors}."
        )
    return _field_of_order(params.levels)


def construct_oa_bose(params: ConstructionParams) -> PolynomialOrthogonalArray:
    """Returns an OA(s^2, k, s, 2) of index 1 for a prime power s and 2 <= k <= s+1.

    Rows are the pairs (x, y) of elements of GF(s). Column 0 is x (the line of
    infinite slope), and the remaining columns hold y + a*x for the slopes
    a = 0, 1, 2, ... in canonical order. Two columns with distinct slopes a != b
    determine (x, y) uniquely since a - b is invertible, so every pair of levels
    appears exactly once.
    """
    field = validate_bose_params(params)

    def column_polynomial(slope: FieldElement | None) -> list[FieldElement]:
        if slope is None:
            return [field.one, field.zero]
        return [slope, field.one]

    slopes = itertools.islice(field.elements(), params.factors - 1)
    return construct_polynomial_oa(
        field,
        row_degree=2,
        strength=2,
        generators=[None, *slopes],
        column_polynomial=column_polynomial,
    )


def validate_bush_params(params: ConstructionParams) -> FiniteField:
    """Checks that Bush construction applies to `params` and returns the field
    GF(levels) it works over.

    The boundary column (leading coefficient) is only used for strength < levels, so
    the bound on factors is levels + 1 for strength < levels and levels for
    strength = levels.

    Raises:
        InfeasibleParametersError: if levels is not a prime power of at most MAX_LEVELS,
            the strength is not in [2, levels] or factors is not in [strength, bound].
    """
    s, t, k = params.levels, params.strength, params.factors
    if t < 2:
        raise InfeasibleParametersError(
            f"Bush construction needs strength at least 2 but strength = {t}."
        )
    if t > s:
        raise InfeasibleParametersError(
            f"Bush construction needs strength <= levels, but strength = {t} > {s}."
        )
    max_factors = s + 1 if t < s else s
    if not t <= k <= max_factors:
        raise InfeasibleParametersError(
            f"Bush construction with levels = {s} and strength = {t} supports "
            f"{t} <= factors <= {max_factors}, but factors = {k}."
        )
    return _field_of_order(s)


def construct_oa_bush(params: ConstructionParams) -> PolynomialOrthogonalArray:
    """Returns an OA(s^t, k, s, t) of index 1 for a prime power s and 2 <= t <= s.

    Rows are the coefficient vectors (x_0, ..., x_{t-1}) of all polynomials of degree
    less than t over GF(s); the column for a field element a holds the evaluation
    x_0 + x_1 a + ... + x_{t-1} a^(t-1). A polynomial of degree < t is determined by
    its values at t distinct points, hence any t such columns are balanced. If
    k = s + 1, the last column is the leading coefficient x_{t-1} (the evaluation
    "at infinity").
    """
    field = validate_bush_params(params)
    s, t, k = params.levels, params.strength, params.factors

    def column_polynomial(a: FieldElement | None) -> list[FieldElement]:
        if a is None:
            return [field.zero] * (t - 1) + [field.one]
        return powers(field, a, t)

    points = list(itertools.islice(field.elements(), min(k, s)))
    boundary = [None] if k == s + 1 else []
    return construct_polynomial_oa(
        field,
        row_degree=t,
        strength=t,
        generators=points + boundary,
        column_polynomial=column_polynomial,
    )


### master method for constructing orthogonal arrays
def construct_oa(
    params: ConstructionParams,
    method: Method | None = None,
    *,
    verbose: bool = False,
) -> PolynomialOrthogonalArray:
    """Constructs an orthogonal array with the requested parameters.

    If `method` is None, Bose construction is used for strength 2 and Bush
    construction otherwise.

    Raises:
        InfeasibleParametersError: if the parameters are outside the bounds of the
            selected method.
    """
    if method is None:
        method = "bose" if params.strength == 2 else "bush"

    match method:
        case "bose":
            if verbose:
                print("OA(Construction): Bose")
            return construct_oa_bose(params)
        case "bush":
            if verbose:
                print("OA(Construction): Bush")
            return construct_oa_bush(params)
        case _:
            raise ValueError(f"Unknown construction method {method!r}.")
