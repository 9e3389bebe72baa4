import pytest
import jax
import jax.numpy as jnp

from oarray.oa import (
	MaterializedOrthogonalArray,
	OrthogonalArray,
	get_row_batch_of_full_factorial,
	normalize,
	randomise_oa,
)
from oarray.verify import is_orthogonal
from .helpers import (
	check_batches_match_materialized,
	check_jit_compatible,
	check_device_placement,
	check_return_type,
	check_exceptions,
	check_valid,
)


@pytest.fixture
def small_oa() -> MaterializedOrthogonalArray:
	# 4x3 array with int8 dtype
	arr = (jnp.arange(12, dtype=jnp.int8) % 3).reshape(4, 3)
	return MaterializedOrthogonalArray(num_levels=3, strength=1, orthogonal_array=arr)


def test_return_types_small_oa(small_oa: MaterializedOrthogonalArray):
	check_return_type(small_oa, batch_size=2)
	check_return_type(small_oa, batch_size=2, jit_compatible=True)


def test_jit_compat_small_oa(small_oa: MaterializedOrthogonalArray):
	check_jit_compatible(small_oa, batch_size=2)


def test_device_placement_small_oa(small_oa: MaterializedOrthogonalArray):
	dev = jax.devices()[0]
	check_device_placement(small_oa, batch_size=2, device=dev)


def test_batches_invalid_sizes(small_oa: MaterializedOrthogonalArray):
	# generic invalids
	check_exceptions(small_oa)
	# too large also errors
	with pytest.raises(ValueError):
		_ = small_oa.batches(small_oa.num_rows + 1)


def test_batches_length_and_last_batch_shape(small_oa: MaterializedOrthogonalArray):
	bs = 3
	seq = small_oa.batches(bs)
	expected_len = (small_oa.num_rows + bs - 1) // bs
	assert len(seq) == expected_len
	# check last batch shape truncation in non-jit mode
	last = seq[len(seq) - 1]
	expected_last = small_oa.num_rows % bs or bs
	assert last.shape == (expected_last, small_oa.num_cols)

	# jit mode should always be full batch_size with a mask
	jseq = small_oa.batches(bs, jit_compatible=True)
	jb, jm = jseq[len(jseq) - 1]
	assert jb.shape == (bs, small_oa.num_cols)
	assert jm.shape == (bs,)
	assert jm.tolist() == [True, False, False]


def test_rows_and_metadata(small_oa: MaterializedOrthogonalArray):
	assert small_oa.shape == (4, 3)
	assert (small_oa.runs, small_oa.factors, small_oa.levels) == (4, 3, 3)
	assert small_oa.index == 1
	assert small_oa[1].tolist() == [0, 1, 2]
	assert small_oa[-1].tolist() == [0, 1, 2]
	assert [row.tolist() for row in small_oa] == [[0, 1, 2], [0, 1, 2], [0, 1, 2], [0, 1, 2]]
	with pytest.raises(IndexError):
		_ = small_oa[4]


def test_materialized_rejects_out_of_range_entries():
	with pytest.raises(ValueError):
		MaterializedOrthogonalArray(
			num_levels=2, strength=1, orthogonal_array=jnp.asarray([[0, 2], [1, 0]])
		)
	with pytest.raises(ValueError):
		MaterializedOrthogonalArray(
			num_levels=2, strength=1, orthogonal_array=jnp.asarray([0, 1])
		)


def test_metadata_is_validated():
	with pytest.raises(ValueError):
		MaterializedOrthogonalArray(
			num_levels=1, strength=1, orthogonal_array=jnp.zeros((2, 2), dtype=jnp.int8)
		)
	with pytest.raises(ValueError):
		MaterializedOrthogonalArray(
			num_levels=2, strength=0, orthogonal_array=jnp.zeros((2, 2), dtype=jnp.int8)
		)


def test_full_factorial_rows():
	rows = get_row_batch_of_full_factorial(i0=0, num_digits=2, base=3, batch_size=9)
	assert rows.tolist() == [[x, y] for x in range(3) for y in range(3)]
	# indices past the last row wrap around
	rows = get_row_batch_of_full_factorial(i0=7, num_digits=2, base=3, batch_size=4)
	assert rows.tolist() == [[2, 1], [2, 2], [0, 0], [0, 1]]


def test_constructed_oa_is_valid(oa: OrthogonalArray):
	check_valid(oa)


def test_constructed_oa_return_types(oa: OrthogonalArray):
	check_return_type(oa, batch_size=4)
	check_return_type(oa, batch_size=4, jit_compatible=True)
	check_exceptions(oa)


def test_constructed_oa_jit_compatible(oa: OrthogonalArray):
	check_jit_compatible(oa, batch_size=3)


def test_constructed_oa_device_placement(oa: OrthogonalArray):
	check_device_placement(oa, batch_size=3, device=jax.devices()[0])


def test_constructed_oa_batches(oa: OrthogonalArray):
	check_batches_match_materialized(oa, batch_size=3)
	check_batches_match_materialized(oa, batch_size=oa.num_rows)


def test_permute_columns(oa: OrthogonalArray):
	permutation = list(reversed(range(oa.num_cols)))
	permuted = oa.permute_columns(permutation)
	assert isinstance(permuted, MaterializedOrthogonalArray)
	assert permuted.declared_params == oa.declared_params
	assert jnp.array_equal(permuted.materialize(), oa.materialize()[:, ::-1])
	check_valid(permuted)
	with pytest.raises(ValueError):
		oa.permute_columns([0] * oa.num_cols)


def test_randomise_oa_preserves_orthogonality(oa: OrthogonalArray):
	randomised = randomise_oa(oa, jax.random.PRNGKey(0))
	assert randomised.shape == oa.shape
	assert randomised.declared_params == oa.declared_params
	check_valid(randomised)


def test_randomise_oa_relabels_columns(oa: OrthogonalArray):
	randomised = randomise_oa(oa, jax.random.PRNGKey(1)).materialize().astype(jnp.int32)
	original = oa.materialize().astype(jnp.int32)
	# every column is shifted by a constant modulo the number of levels
	shift = jnp.mod(randomised - original, oa.num_levels)
	assert jnp.all(shift == shift[0:1, :])


@pytest.mark.parametrize("jitter", [0.0, 0.5, 1.0])
@pytest.mark.parametrize("randomize", [False, True])
def test_normalize(oa: OrthogonalArray, jitter: float, randomize: bool):
	points = normalize(oa, jax.random.PRNGKey(2), jitter=jitter, randomize=randomize)
	assert points.shape == oa.shape
	assert points.dtype == jnp.float32
	assert jnp.all(points >= 0.0)
	assert jnp.all(points <= 1.0)
	# every column still has exactly num_rows / num_levels points in each stratum, so
	# the i-th smallest point of a column lies in stratum i // (num_rows / num_levels)
	per_stratum = oa.num_rows // oa.num_levels
	lower = (jnp.arange(oa.num_rows) // per_stratum).astype(jnp.float32) / oa.num_levels
	sorted_points = jnp.sort(points, axis=0)
	assert jnp.all(sorted_points >= lower[:, None] - 1e-6)
	assert jnp.all(sorted_points <= lower[:, None] + 1.0 / oa.num_levels + 1e-6)


def test_normalize_without_randomness_is_level_over_levels(oa: OrthogonalArray):
	points = normalize(oa, jax.random.PRNGKey(3), jitter=0.0, randomize=False)
	expected = oa.materialize().astype(jnp.float32) / oa.num_levels
	assert jnp.allclose(points, expected)


def test_normalize_rejects_bad_jitter(small_oa: MaterializedOrthogonalArray):
	with pytest.raises(ValueError):
		normalize(small_oa, jax.random.PRNGKey(0), jitter=1.5)
	with pytest.raises(ValueError):
		normalize(small_oa, jax.random.PRNGKey(0), jitter=-0.1)


def test_is_orthogonal(small_oa: MaterializedOrthogonalArray):
	assert is_orthogonal(small_oa) is False


def test_row_access_with_traced_index(small_oa: MaterializedOrthogonalArray):
	get_row = jax.jit(lambda i: small_oa[i])
	assert jnp.array_equal(get_row(jnp.asarray(1)), small_oa[1])
	# traced indices wrap around instead of raising
	assert jnp.array_equal(get_row(jnp.asarray(-1)), small_oa[3])


def test_constructed_oa_row_access_with_traced_index(oa: OrthogonalArray):
	get_row = jax.jit(lambda i: oa[i])
	assert jnp.array_equal(get_row(jnp.asarray(oa.num_rows - 1)), oa[-1])
	assert jnp.array_equal(get_row(jnp.asarray(0)), oa.materialize()[0])


def test_materialized_accepts_largest_level_count():
	column = jnp.arange(128, dtype=jnp.int8)[:, None]
	oa = MaterializedOrthogonalArray(num_levels=128, strength=1, orthogonal_array=column)
	assert oa.materialize().tolist() == [[i] for i in range(128)]
	check_valid(oa)
	permuted = oa.permute_columns([0])
	assert permuted.num_levels == 128
	with pytest.raises(ValueError):
		MaterializedOrthogonalArray(num_levels=129, strength=1, orthogonal_array=column)
