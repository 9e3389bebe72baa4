"""Exact verification of the orthogonality property.

For every set of `strength` columns, in lexicographic order, the rows of the
projection are encoded as mixed-radix integers and counted in a single pass; every
one of the possible level combinations must then appear exactly `index` times. No
sampling is involved, so a successful verification is a proof.
"""

import itertools
import math
from functools import partial
from typing import TYPE_CHECKING, Sequence

import equinox as eqx
import jax
import jax.numpy as jnp
import numpy as np
from jaxtyping import Array, Int, Int32

from oarray.errors import OrthogonalityViolatedError, VerificationError

if TYPE_CHECKING:
    from oarray.oa import OrthogonalArray


class DeclaredParams(eqx.Module):
    """The parameters (n, k, s, t, λ) a matrix claims to satisfy as an orthogonal array."""

    runs: int = eqx.field(static=True)
    factors: int = eqx.field(static=True)
    levels: int = eqx.field(static=True)
    strength: int = eqx.field(static=True)
    index: int = eqx.field(static=True, default=1)

    def __check_init__(self):
        if self.runs <= 0 or self.factors <= 0:
            raise VerificationError("runs and factors must be positive.")
        if self.levels < 2:
            raise VerificationError("Number of levels must be at least 2.")
        if self.strength < 1:
            raise VerificationError("Strength must be at least 1.")
        if self.strength > self.factors:
            raise VerificationError(
                f"Strength {self.strength} exceeds the number of factors {self.factors}."
            )
        if self.index < 1:
            raise VerificationError("Index must be at least 1.")


@partial(jax.jit, static_argnames="radices")
def _count_level_combinations(
    projection: Int32[Array, "num_rows num_cols"], radices: tuple[int, ...]
) -> Int32[Array, " num_combinations"]:
    """Counts how often each level combination appears in the rows of `projection`,
    where column j takes values in {0, ..., radices[j] - 1}. Combinations are indexed
    by their mixed-radix encoding, most significant column first."""
    weights = jnp.asarray(
        [math.prod(radices[j + 1 :]) for j in range(len(radices))], dtype=jnp.int32
    )
    codes = jnp.tensordot(projection, weights, axes=([1], [0]))
    return jnp.bincount(codes, length=math.prod(radices))


def _decode(code: int, radices: Sequence[int]) -> tuple[int, ...]:
    digits = []
    for radix in reversed(radices):
        code, digit = divmod(code, radix)
        digits.append(digit)
    return tuple(reversed(digits))


def check_projection(
    matrix: Int[Array, "num_rows num_cols"],
    columns: Sequence[int],
    radices: Sequence[int],
    expected: int | float,
) -> None:
    """Checks that every level combination appears `expected` times in the given columns.

    Args:
        matrix: the full matrix; only `columns` are read.
        columns: the column subset to project onto.
        radices: the number of levels of every column in `columns`.
        expected: the required number of occurrences of each combination. A
            non-integral value can never be met and always fails.

    Raises:
        OrthogonalityViolatedError: for the lexicographically smallest combination
            whose count differs from `expected`.
    """
    columns = tuple(int(c) for c in columns)
    radices = tuple(int(r) for r in radices)
    projection = jnp.asarray(matrix)[:, jnp.asarray(columns)].astype(jnp.int32)
    counts = np.asarray(_count_level_combinations(projection, radices))
    mismatches = np.flatnonzero(counts != expected)
    if mismatches.size > 0:
        code = int(mismatches[0])
        raise OrthogonalityViolatedError(
            columns=columns,
            combination=_decode(code, radices),
            expected=expected,
            observed=int(counts[code]),
        )


def verify(matrix: Int[Array, "num_rows num_cols"], declared: DeclaredParams) -> None:
    """Proves or disproves that `matrix` is an orthogonal array with the declared
    parameters.

    Returns None on success.

    Raises:
        VerificationError: if the matrix does not have shape (runs, factors) or has
            entries outside [0, levels).
        OrthogonalityViolatedError: for the first column subset (in lexicographic
            order) whose projection is not balanced.
    """
    # compare in int32, int8 wraps around at 128
    matrix = jnp.asarray(matrix).astype(jnp.int32)
    if matrix.ndim != 2:
        raise VerificationError(f"Expected a matrix but got shape {matrix.shape}.")
    if matrix.shape != (declared.runs, declared.factors):
        raise VerificationError(
            f"Matrix has shape {matrix.shape} but {(declared.runs, declared.factors)} was declared."
        )
    if jnp.any(matrix < 0) or jnp.any(matrix >= declared.levels):
        raise VerificationError(f"All entries must lie in [0, {declared.levels}).")

    radices = (declared.levels,) * declared.strength
    for columns in itertools.combinations(range(declared.factors), declared.strength):
        check_projection(matrix, columns, radices, declared.index)


def verify_oa(orthogonal_array: "OrthogonalArray") -> None:
    """Verifies an OrthogonalArray against its own declared parameters."""
    verify(orthogonal_array.materialize(), orthogonal_array.declared_params)


def is_orthogonal(orthogonal_array: "OrthogonalArray") -> bool:
    try:
        verify_oa(orthogonal_array)
    except OrthogonalityViolatedError:
        return False
    return True
