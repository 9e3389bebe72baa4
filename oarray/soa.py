"""Strong orthogonal arrays.

A strong orthogonal array here is an orthogonal array together with a partition of
its columns into groups, such that every projection onto at most `strength` columns
taken from pairwise different groups is balanced. With singleton groups this is just
orthogonality of the given strength; coarser groups relax the requirement to
cross-group projections only.

`verify_stratification` additionally checks the stratification property of the
strong orthogonal arrays of He and Tang, whose `base^strength` levels are read as
nested strata, and `construct_soa_liu_liu` builds such arrays from an ordinary
orthogonal array.

```bibtex
@article{he2013,
    title = {Strong orthogonal arrays and associated Latin hypercubes for computer experiments},
    author = {Yuanzhen He and Boxin Tang},
    journal = {Biometrika},
    volume = {100},
    number = {1},
    pages = {254-260},
    year = {2013},
    doi = {https://doi.org/10.1093/biomet/ass065},
}
```
"""

import itertools
from collections.abc import Iterator, Sequence

import equinox as eqx
import jax.numpy as jnp
from jaxtyping import Array, Int, Int8, Int32

from oarray.constructions import ConstructionParams, Method, construct_oa
from oarray.errors import (
    InfeasibleParametersError,
    OrthogonalityViolatedError,
    PartitionMismatchError,
    StrongPropertyViolatedError,
    VerificationError,
)
from oarray.oa import OrthogonalArray
from oarray.verify import check_projection

GroupPartition = Sequence[Sequence[int]]


def _normalise_groups(groups: GroupPartition, num_cols: int) -> tuple[tuple[int, ...], ...]:
    groups = tuple(tuple(int(c) for c in group) for group in groups)
    if any(len(group) == 0 for group in groups):
        raise PartitionMismatchError("Column groups must not be empty.")
    columns = sorted(itertools.chain.from_iterable(groups))
    if columns != list(range(num_cols)):
        raise PartitionMismatchError(
            f"Column groups {groups} do not cover the columns 0, ..., {num_cols - 1} exactly once."
        )
    return groups


def _check_strength(strength: int, num_groups: int):
    if not 1 <= strength <= num_groups:
        raise InfeasibleParametersError(
            f"Strong strength must lie in [1, {num_groups}] (the number of groups) but is {strength}."
        )


class StrongOrthogonalArray(eqx.Module):
    """An orthogonal array whose columns are partitioned into groups such that any
    `strength` columns from distinct groups form a balanced projection.

    Use `build_soa` to obtain one; the constructor only checks the partition, not the
    projection property.
    """

    oa: OrthogonalArray
    groups: tuple[tuple[int, ...], ...] = eqx.field(static=True)
    strength: int = eqx.field(static=True)

    def __init__(self, oa: OrthogonalArray, groups: GroupPartition, strength: int):
        self.oa = oa
        self.groups = _normalise_groups(groups, oa.num_cols)
        self.strength = strength

    def __check_init__(self):
        _check_strength(self.strength, len(self.groups))

    @property
    def num_groups(self) -> int:
        return len(self.groups)

    @property
    def shape(self) -> tuple[int, int]:
        return self.oa.shape

    def group_of(self, column: int) -> int:
        for i, group in enumerate(self.groups):
            if column in group:
                return i
        raise IndexError(f"Column {column} out of bounds [0,{self.oa.num_cols})")

    def materialize(self) -> Int8[Array, "num_rows num_cols"]:
        return self.oa.materialize()


def cross_group_subsets(groups: GroupPartition, size: int) -> Iterator[tuple[int, ...]]:
    """Yields, in lexicographic order, all sets of `size` columns that contain at most
    one column from every group."""
    group_of = {c: i for i, group in enumerate(groups) for c in group}
    for columns in itertools.combinations(sorted(group_of), size):
        if len({group_of[c] for c in columns}) == size:
            yield columns


def build_soa(
    oa: OrthogonalArray,
    groups: GroupPartition,
    strength: int,
    *,
    verbose: bool = False,
) -> StrongOrthogonalArray:
    """Checks that `oa` has the strong projection property for the given column groups
    and returns the corresponding StrongOrthogonalArray.

    Every cross-group column subset of size u = 1, ..., strength is verified to
    contain each of the s^u level combinations exactly n / s^u times.

    Raises:
        PartitionMismatchError: if the groups do not tile the columns of `oa`.
        InfeasibleParametersError: if strength is not in [1, number of groups].
        StrongPropertyViolatedError: for the first unbalanced cross-group projection.
    """
    groups = _normalise_groups(groups, oa.num_cols)
    _check_strength(strength, len(groups))

    matrix = oa.materialize()
    n, s = oa.num_rows, oa.num_levels
    num_checked = 0
    for size in range(1, strength + 1):
        expected = n // s**size if n % s**size == 0 else n / s**size
        for columns in cross_group_subsets(groups, size):
            try:
                check_projection(matrix, columns, (s,) * size, expected)
            except OrthogonalityViolatedError as e:
                raise StrongPropertyViolatedError(
                    columns=e.columns,
                    combination=e.combination,
                    expected=e.expected,
                    observed=e.observed,
                ) from e
            num_checked += 1
    if verbose:
        print(f"SOA(Verification): {num_checked} cross-group projections balanced")
    return StrongOrthogonalArray(oa=oa, groups=groups, strength=strength)


def construct_soa(
    params: ConstructionParams,
    groups: GroupPartition,
    strength: int,
    method: Method | None = None,
    *,
    verbose: bool = False,
) -> StrongOrthogonalArray:
    """Constructs an orthogonal array for `params` and layers it into a strong
    orthogonal array with the given column groups and strong strength."""
    oa = construct_oa(params, method, verbose=verbose)
    return build_soa(oa, groups, strength, verbose=verbose)


def _integer_partitions(n: int, smallest: int = 1) -> Iterator[tuple[int, ...]]:
    """Partitions of n into non-decreasing parts that are all >= `smallest`."""
    if n == 0:
        yield ()
        return
    for first in range(smallest, n + 1):
        for rest in _integer_partitions(n - first, first):
            yield (first, *rest)


def stratification_exponents(strength: int) -> Iterator[tuple[int, ...]]:
    """All ordered tuples of positive integers summing to `strength`, grouped by the
    partition they permute."""
    for partition in _integer_partitions(strength):
        yield from sorted(set(itertools.permutations(partition)))


def verify_stratification(
    points: Int[Array, "num_rows num_cols"], strength: int, base: int
) -> None:
    """Verifies that `points` (with levels 0, ..., base^strength - 1) is a strong
    orthogonal array of the given strength in the sense of He and Tang.

    For every tuple of positive exponents (e_1, ..., e_g) summing to `strength` and
    every g columns, the columns collapsed to base^e_i strata (integer division by
    base^(strength - e_i)) must contain every combination of strata equally often.

    Raises:
        VerificationError: if `points` is not a matrix with entries in
            [0, base^strength).
        StrongPropertyViolatedError: for the first unbalanced collapsed projection.
    """
    points = jnp.asarray(points).astype(jnp.int32)
    if points.ndim != 2:
        raise VerificationError(f"Expected a matrix but got shape {points.shape}.")
    if strength < 1 or base < 2:
        raise VerificationError("Need strength >= 1 and base >= 2.")
    num_levels = base**strength
    if jnp.any(points < 0) or jnp.any(points >= num_levels):
        raise VerificationError(f"All entries must lie in [0, {num_levels}).")

    num_rows, num_cols = points.shape
    expected = num_rows // num_levels if num_rows % num_levels == 0 else num_rows / num_levels
    for exponents in stratification_exponents(strength):
        if len(exponents) > num_cols:
            continue
        divisors = jnp.asarray(
            [base ** (strength - e) for e in exponents], dtype=jnp.int32
        )
        radices = tuple(base**e for e in exponents)
        for columns in itertools.combinations(range(num_cols), len(exponents)):
            strata = points[:, jnp.asarray(columns)] // divisors[None, :]
            try:
                check_projection(strata, range(len(columns)), radices, expected)
            except OrthogonalityViolatedError as e:
                raise StrongPropertyViolatedError(
                    columns=columns,
                    combination=e.combination,
                    expected=e.expected,
                    observed=e.observed,
                ) from e


class StratifiedSOA(eqx.Module):
    """A strong orthogonal array in the sense of He and Tang: every column takes
    `base^strength` levels, read as nested strata of sizes base, base^2, ..."""

    points: Int32[Array, "num_rows num_cols"]
    strength: int = eqx.field(static=True)
    base: int = eqx.field(static=True)

    @property
    def num_levels(self) -> int:
        return self.base**self.strength

    @property
    def shape(self) -> tuple[int, int]:
        return self.points.shape

    def verify(self) -> None:
        verify_stratification(self.points, self.strength, self.base)


def construct_soa_liu_liu(oa: OrthogonalArray) -> StratifiedSOA:
    """Turns an OA(n, m, s, t) into an SOA(n, 2 * (m // t), s^t, t).

    This is the block part of the construction of Liu and Liu (2015, p. 1716). The
    columns are cut into m // t blocks of t columns (a_0, ..., a_{t-1}), and every
    block yields the two columns

        a_0 + a_1 s + ... + a_{t-1} s^(t-1)  and  a_{t-1} + ... + a_0 s^(t-1).

    The top e digits of the first column are a_{t-1}, ..., a_{t-e} and those of the
    second are a_0, ..., a_{e-1}, so two strata with e_1 + e_2 <= t read disjoint OA
    columns and every stratified projection is a projection of the OA onto t
    distinct columns. Leftover columns (m mod t of them) are dropped.

    Raises:
        InfeasibleParametersError: if the strength is below 2, there are fewer than
            `strength` columns or s^t does not fit into int32.
    """
    t, s, m = oa.strength, oa.num_levels, oa.num_cols
    if t < 2:
        raise InfeasibleParametersError(
            f"Liu and Liu construction needs strength at least 2 but strength = {t}."
        )
    if m < t:
        raise InfeasibleParametersError(
            f"Liu and Liu construction needs at least strength = {t} columns but has {m}."
        )
    if s**t > jnp.iinfo(jnp.int32).max:
        raise InfeasibleParametersError(f"{s}^{t} levels do not fit into int32.")

    digits = oa.materialize().astype(jnp.int32)
    ascending = jnp.asarray([s**i for i in range(t)], dtype=jnp.int32)
    descending = ascending[::-1]
    columns = []
    for b in range(m // t):
        block = digits[:, b * t : (b + 1) * t]
        columns.append(block @ ascending)
        columns.append(block @ descending)
    return StratifiedSOA(points=jnp.stack(columns, axis=1), strength=t, base=s)
