import abc
import math
import numbers
from typing import TYPE_CHECKING, Sequence, overload, Literal

import jax
import jax.numpy as jnp
import equinox as eqx
from jaxtyping import Int8, Int32, Bool, Float32, Array, PRNGKeyArray

from oarray.verify import DeclaredParams

if TYPE_CHECKING:
    from oarray.galois_field import FiniteField

# levels are stored as int8
MAX_LEVELS = int(jnp.iinfo(jnp.int8).max) + 1


class OrthogonalArray(eqx.Module, abc.ABC, Sequence[Int8[Array, " num_cols"]]):
    """
    An abstract base class for all orthogonal array implementations.

    An orthogonal array of strength `t` and index `λ` with `k` factors on `s` levels
    is an `n x k` matrix over {0, ..., s-1} in which every `t` columns contain each of
    the `s^t` level combinations exactly `λ` times. The metadata below is what the
    producer of the array *claims*; use `oarray.verify` to check it.

    This class defines the public API and shared functionality, while delegating
    the core data generation logic to its subclasses.
    """

    num_rows: int = eqx.field(static=True)
    num_cols: int = eqx.field(static=True)
    num_levels: int = eqx.field(static=True)
    strength: int = eqx.field(static=True)
    index: int = eqx.field(static=True)

    def __check_init__(self):
        if self.num_rows <= 0 or self.num_cols <= 0:
            raise ValueError("Dimensions must be positive.")
        if self.num_levels < 2:
            raise ValueError("Number of levels must be at least 2.")
        if self.num_levels > MAX_LEVELS:
            raise ValueError(
                f"Levels are stored as int8, so at most {MAX_LEVELS} levels are supported but num_levels = {self.num_levels}."
            )
        if self.strength < 1:
            raise ValueError("Strength must be at least 1.")
        if self.index < 1:
            raise ValueError("Index must be at least 1.")

    @property
    def runs(self) -> int:
        """Alias for self.num_rows."""
        return self.num_rows

    @property
    def factors(self) -> int:
        """Alias for self.num_cols."""
        return self.num_cols

    @property
    def levels(self) -> int:
        """Alias for self.num_levels."""
        return self.num_levels

    @property
    def shape(self) -> tuple[int, int]:
        return (self.num_rows, self.num_cols)

    @property
    def declared_params(self) -> DeclaredParams:
        return DeclaredParams(
            runs=self.num_rows,
            factors=self.num_cols,
            levels=self.num_levels,
            strength=self.strength,
            index=self.index,
        )

    @property
    def matrix(self) -> Int8[Array, "num_rows num_cols"]:
        """Alias for self.materialize()."""
        return self.materialize()

    def __len__(self):
        return self.num_rows

    def __getitem__(self, i) -> Int8[Array, " num_cols"]:
        # traced indices wrap around
        if isinstance(i, numbers.Integral) and not -self.num_rows <= i < self.num_rows:
            raise IndexError(f"Row {i} out of bounds [{-self.num_rows},{self.num_rows})")
        return self._get_batch(batch_idx=i % self.num_rows, batch_size=1)[0, ...]

    @abc.abstractmethod
    def _get_batch(
        self, batch_idx: Int32[Array, ""], batch_size: int, device: jax.Device | None = None
    ) -> Int8[Array, "batch_size num_cols"]:
        """Get a batch of rows from the orthogonal array.

        Args:
            batch_idx: The index of the batch to retrieve. Guaranteed to be in range [0, num_batches).
            batch_size: The number of rows to return. Guaranteed to be in [1, num_rows].
            device: Optional JAX device where the batch should be created. If provided,
                the batch must be computed directly on this device to minimize data transfer.

        Returns:
            A JAX int8 array with shape (batch_size, num_cols) containing the requested
            batch of orthogonal array rows.

        Notes:
            - For batch_idx < num_batches - 1: Returns the corresponding rows of the
              orthogonal array
            - For batch_idx == num_batches - 1: Returns the remaining rows. If fewer
              than batch_size rows remain, pads to shape (batch_size, num_cols) with
              arbitrary values.
            - Must be `jax.jit` compatible (with static `batch_size` and `device`, and traced `batch_idx`)
        """
        raise NotImplementedError

    def materialize(
        self, device: jax.Device | None = None
    ) -> Int8[Array, "num_rows num_cols"]:
        """Materializes the entire orthogonal array into a single jax array.
        Only use for small arrays!

        The rows are generated in disjoint batches, so the result is only exposed
        once every batch has been written.

        Args:
            device: Optional target device on which to create/return the array.

        Raises:
            MemoryError: If the orthogonal array is too large to fit into memory.
        """
        try:
            full_array = jnp.empty(self.shape, dtype=jnp.int8, device=device)
        except MemoryError as e:
            total_num_mib = self.num_rows * self.num_cols / (1024**2)
            raise MemoryError(
                f"Failed to allocate memory for orthogonal array with shape {self.shape}, which would require {total_num_mib:.2f} MiB:\n{e}"
            ) from e

        batch_size = min(self.num_rows, 8192)
        num_batches = math.ceil(self.num_rows / batch_size)

        for i in range(num_batches):
            start = i * batch_size
            end = min(start + batch_size, self.num_rows)
            generated_batch = self._get_batch(i, batch_size, device=device)
            full_array = full_array.at[start:end, :].set(generated_batch[: end - start, :])
        return full_array

    def permute_columns(self, permutation: Sequence[int]) -> "MaterializedOrthogonalArray":
        """Returns a new array whose column `j` is column `permutation[j]` of this one.
        Reordering columns preserves all declared parameters."""
        permutation = tuple(int(j) for j in permutation)
        if sorted(permutation) != list(range(self.num_cols)):
            raise ValueError(
                f"{permutation} is not a permutation of the {self.num_cols} columns."
            )
        return MaterializedOrthogonalArray(
            num_levels=self.num_levels,
            strength=self.strength,
            orthogonal_array=self.materialize()[:, jnp.asarray(permutation)],
            index=self.index,
        )

    @overload
    def batches(
        self,
        batch_size: int,
        jit_compatible: Literal[False] = ...,
        *,
        device: jax.Device | None = ...,
    ) -> Sequence[Int8[Array, "batch_size num_cols"]]: ...

    @overload
    def batches(
        self,
        batch_size: int,
        jit_compatible: Literal[True],
        *,
        device: jax.Device | None = ...,
    ) -> Sequence[
        tuple[Int8[Array, "batch_size num_cols"], Bool[Array, "batch_size"]]
    ]: ...

    def batches(
        self,
        batch_size: int,
        jit_compatible: bool = False,
        *,
        device: jax.Device | None = None,
    ):
        """Returns a Sequence over batches of rows (runs) of the orthogonal arrays.

        Batches are disjoint and independent of each other, so they can be generated
        concurrently and written into disjoint row ranges of the full array.

        If `jit_compatible` is False (default), each item is a batch array of shape
        (<= batch_size, num_cols); the last batch is truncated to the remaining rows.

        If `jit_compatible` is True, each item is a tuple (batch, mask) where `batch`
        has shape (batch_size, num_cols) and `mask` has shape (batch_size,) marking
        which rows are valid (always all True except potentially on the last batch);
        this enables JIT-friendly static shapes.

        Args:
            batch_size: Number of rows per batch (must be marked static in a JIT context!)
                Must be in [1, num_rows]
            jit_compatible: Whether to return (batch, mask) with static shapes.
            device: Optional target device on which to generate batches.
        """
        if batch_size <= 0:
            raise ValueError(f"batch_size must be positive but is {batch_size}.")
        if batch_size > self.num_rows:
            raise ValueError(
                f"batch_size must be in [1, num_rows] = [1, {self.num_rows}] but is {batch_size}."
            )

        class _BatchSequence:
            __slots__ = ("_parent", "_batch_size", "_num_batches", "_jit", "_device")

            def __init__(
                self,
                p: "OrthogonalArray",
                bs: int,
                jit_flag: bool,
                dev: jax.Device | None,
            ):
                self._parent = p
                self._batch_size = bs
                self._num_batches = math.ceil(p.num_rows / bs)
                self._jit = jit_flag
                self._device = dev

            def __len__(self):
                return self._num_batches

            def __getitem__(self, i: int):
                if self._jit:
                    i = jnp.mod(i, self._num_batches)
                    valid_count = self._parent.num_rows - i * self._batch_size
                    mask = jnp.arange(self._batch_size, device=self._device) < valid_count
                    batch = self._parent._get_batch(
                        i, self._batch_size, device=self._device
                    )
                    return batch, mask
                else:
                    if i < -self._num_batches or i >= self._num_batches:
                        raise IndexError(
                            f"Index {i} out of bounds [{-self._num_batches},{self._num_batches})"
                        )
                    i = i % self._num_batches
                    batch = self._parent._get_batch(
                        i, self._batch_size, device=self._device
                    )
                    if i == len(self) - 1:
                        last_size = self._parent.num_rows % self._batch_size
                        if last_size > 0:
                            return batch[:last_size]
                    return batch

        return _BatchSequence(self, batch_size, jit_compatible, device)


class MaterializedOrthogonalArray(OrthogonalArray):
    """An OrthogonalArray class that just stores the full
    orthogonal array in memory. Only works for small arrays.
    """

    _oa: Int8[Array, "num_rows num_cols"]

    def __init__(
        self,
        num_levels: int,
        strength: int,
        orthogonal_array: Int8[Array, "num_rows num_cols"],
        index: int = 1,
    ):
        orthogonal_array = jnp.asarray(orthogonal_array)
        if orthogonal_array.ndim != 2:
            raise ValueError(
                f"orthogonal_array must be a matrix but has shape {orthogonal_array.shape}."
            )
        entries = orthogonal_array.astype(jnp.int32)
        if entries.size and (jnp.any(entries < 0) or jnp.any(entries >= num_levels)):
            raise ValueError(f"All entries must lie in [0, {num_levels}).")

        self.num_rows, self.num_cols = orthogonal_array.shape
        self.num_levels = num_levels
        self.strength = strength
        self.index = index

        orthogonal_array = orthogonal_array.astype(jnp.int8)

        # this ensures that the final batch is correctly padded
        # regardless of the batch_size (which is <= num_rows)
        self._oa = jnp.concatenate(
            [orthogonal_array, jnp.zeros_like(orthogonal_array)], axis=0
        )

    def _get_batch(
        self, batch_idx: Int32[Array, ""], batch_size: int, device: jax.Device | None = None
    ) -> Int8[Array, "batch_size num_cols"]:
        start = batch_idx * batch_size

        # don't truncate at num_rows since self._oa is already padded
        result = jax.lax.dynamic_slice_in_dim(self._oa, start, batch_size, axis=0)

        if device is not None:
            result = jax.device_put(result, device)

        return result


class PolynomialOrthogonalArray(OrthogonalArray):
    """
    Constructs orthogonal arrays by evaluating linear forms over a finite field GF(s).

    The rows are indexed by all `row_degree`-tuples (x_0, ..., x_{row_degree-1}) of
    field elements, in lexicographic order of their canonical integers. Column `j` is
    given by the coefficient vector `coefficients[:, j]` and the entry in row x is

        x_0 * c_0j + x_1 * c_1j + ... + x_{row_degree-1} * c_{row_degree-1,j}

    computed in GF(s). Evaluating a polynomial p(a) = x_0 + x_1 a + ... at a field
    element `a` is the linear form with coefficients (1, a, a^2, ...), which is how
    the Bose and Bush constructions are expressed on top of this class.

    Field arithmetic is done with lookup tables so that batches are generated with
    plain (jit-compatible) jax indexing, also for extension fields.
    """

    _coefficients: Int32[Array, "row_degree num_cols"]
    _add_table: Int32[Array, "num_levels num_levels"]
    _mul_table: Int32[Array, "num_levels num_levels"]

    def __init__(
        self,
        field: "FiniteField",
        coefficients: Int32[Array, "row_degree num_cols"],
        strength: int,
    ):
        coefficients = jnp.asarray(coefficients, dtype=jnp.int32)
        row_degree, self.num_cols = coefficients.shape
        if row_degree < strength:
            raise ValueError(
                f"{row_degree} row coordinates cannot support strength {strength}."
            )
        self.num_levels = field.order
        self.strength = strength
        self.num_rows = field.order**row_degree
        self.index = field.order ** (row_degree - strength)

        self._coefficients = coefficients
        self._add_table = field.addition_table()
        self._mul_table = field.multiplication_table()

    @property
    def row_degree(self) -> int:
        return self._coefficients.shape[0]

    def _get_batch(
        self, batch_idx: Int32[Array, ""], batch_size: int, device: jax.Device | None = None
    ) -> Int8[Array, "batch_size num_cols"]:
        coefficients = self._coefficients
        add_table = self._add_table
        mul_table = self._mul_table
        if device is not None:
            coefficients = jax.device_put(coefficients, device)
            add_table = jax.device_put(add_table, device)
            mul_table = jax.device_put(mul_table, device)

        rows = get_row_batch_of_full_factorial(
            i0=batch_idx * batch_size,
            num_digits=self.row_degree,
            base=self.num_levels,
            batch_size=batch_size,
            device=device,
        )
        # shape (batch_size, row_degree, num_cols)
        products = mul_table[rows[:, :, None], coefficients[None, :, :]]
        result = products[:, 0, :]
        for j in range(1, self.row_degree):
            result = add_table[result, products[:, j, :]]
        return result.astype(jnp.int8)


def get_row_batch_of_full_factorial(
    i0: Int32[Array, ""],
    num_digits: int,
    base: int,
    batch_size: int,
    device: jax.Device | None = None,
) -> Int32[Array, "batch_size num_digits"]:
    """Rows i0, ..., i0 + batch_size - 1 of the full factorial design with `num_digits`
    columns on `base` levels, i.e. row i is the base-`base` expansion of i with the
    most significant digit first. Indices past the last row wrap around."""
    num_rows = base**num_digits
    indices = jnp.mod(i0 + jnp.arange(batch_size, device=device), num_rows)
    periods = base ** jnp.arange(num_digits - 1, -1, -1, device=device)
    return jnp.mod(indices[:, None] // periods[None, :], base)


def randomise_oa(
    orthogonal_array: OrthogonalArray,
    rng: PRNGKeyArray,
) -> MaterializedOrthogonalArray:
    """Make columns uniform random while preserving orthogonality of 'orthogonal_array'.

    Samples one uniform random number in {0,...,s-1} for each column, and adds these
    numbers to the elements of the respective columns modulo s. This relabels the
    levels of every column bijectively, so it preserves the orthogonality of the
    array, but guarantees that every individual row is, marginally, a sequence of
    independent uniform random numbers in {0,...,s-1}.

    Args:
        orthogonal_array: the orthogonal array to randomise
        rng: the jax PRNG key

    Returns:
        modified orthogonal array whose columns are uniform randomly distributed.
    """
    levels = orthogonal_array.num_levels
    oa = orthogonal_array.materialize().astype(jnp.int32)
    random_numbers = jax.random.randint(
        rng, shape=(1, orthogonal_array.num_cols), minval=0, maxval=levels, dtype=jnp.int32
    )
    return MaterializedOrthogonalArray(
        num_levels=levels,
        strength=orthogonal_array.strength,
        orthogonal_array=jnp.mod(oa + random_numbers, levels),
        index=orthogonal_array.index,
    )


def normalize(
    orthogonal_array: OrthogonalArray,
    rng: PRNGKeyArray,
    jitter: float = 0.0,
    randomize: bool = True,
) -> Float32[Array, "num_rows num_cols"]:
    """Converts an orthogonal array into a point set in [0, 1)^num_cols, usable for
    (quasi-)Monte Carlo integration.

    Level `a` of a column is mapped to the stratum [a/s, (a+1)/s). Within its stratum
    every point is placed at offset `jitter * U / s` with U uniform in [0, 1), so
    `jitter=0` puts points on the lower stratum boundaries. If `randomize` is set the
    rows of every column are permuted independently, which keeps the stratification
    of each column but decorrelates the columns. This is the randomisation from
    chapter 10.4 of Art Owen's Monte Carlo book.

    Args:
        orthogonal_array: the array to convert
        rng: the jax PRNG key
        jitter: amount of uniform jitter within each stratum, in [0, 1]
        randomize: whether to independently shuffle every column
    """
    if not 0.0 <= jitter <= 1.0:
        raise ValueError(f"jitter must lie in [0, 1] but is {jitter}.")

    points = orthogonal_array.materialize().astype(jnp.float32)
    num_rows, num_cols = points.shape
    permutation_rng, jitter_rng = jax.random.split(rng)

    if jitter > 0.0:
        points = points + jitter * jax.random.uniform(
            jitter_rng, shape=points.shape, dtype=jnp.float32
        )
    if randomize:
        keys = jax.random.split(permutation_rng, num_cols)
        # shape (num_cols, num_rows), one permutation per column
        permutations = jax.vmap(lambda key: jax.random.permutation(key, num_rows))(keys)
        points = jnp.take_along_axis(points, permutations.T, axis=0)
    return points / orthogonal_array.num_levels
