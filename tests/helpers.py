"""Reusable test helpers for OrthogonalArray implementations.

These helpers are written to be pytest-friendly: they raise AssertionError on
failure and return None on success. You can call them directly in tests.
"""

from __future__ import annotations

import jax
import jax.numpy as jnp
import pytest

from oarray.oa import OrthogonalArray
from oarray.verify import verify_oa

__all__ = [
    "check_valid",
    "check_jit_compatible",
    "check_device_placement",
    "check_return_type",
    "check_exceptions",
    "check_batches_match_materialized",
]


def _devices_of(x) -> tuple[jax.Device, ...]:
    return tuple(x.devices()) if hasattr(x, "devices") else ()


def check_jit_compatible(
    oa: OrthogonalArray, batch_size: int, *, device: jax.Device | None = None
) -> None:
    """Assert that `batches(jit_compatible=True)` can be indexed with traced indices.

    All batches are generated inside a single `jax.lax.map`; the valid rows, as
    given by the masks, must reproduce the materialized array.
    """
    seq = oa.batches(batch_size, jit_compatible=True, device=device)

    @jax.jit
    def generate_all(indices):
        return jax.lax.map(lambda i: seq[i], indices)

    batches, masks = generate_all(jnp.arange(len(seq)))
    assert batches.shape == (len(seq), batch_size, oa.num_cols)
    assert masks.shape == (len(seq), batch_size)

    rows = batches.reshape(-1, oa.num_cols)[masks.reshape(-1)]
    assert jnp.array_equal(rows, oa.materialize()), "jitted batches differ from materialize()"


def check_device_placement(
    oa: OrthogonalArray, batch_size: int, device: jax.Device
) -> None:
    """Assert that the first and last jit-compatible batches (and their masks) are
    created on `device`."""
    seq = oa.batches(batch_size, jit_compatible=True, device=device)
    for i in (0, len(seq) - 1):
        batch, mask = seq[i]
        assert device in _devices_of(batch), (
            f"Batch {i} not on device {device}; got {_devices_of(batch)}"
        )
        assert device in _devices_of(mask), (
            f"Mask {i} not on device {device}; got {_devices_of(mask)}"
        )


def check_return_type(
    oa: OrthogonalArray, batch_size: int, *, jit_compatible: bool = False
) -> None:
    """Assert that the first batch is an int8 array of shape (batch_size, num_cols),
    accompanied by a boolean mask of shape (batch_size,) in jit-compatible mode."""
    item = oa.batches(batch_size, jit_compatible=jit_compatible)[0]
    if jit_compatible:
        batch, mask = item
        assert mask.dtype == jnp.bool_, f"Expected a boolean mask, got {mask.dtype}"
        assert mask.shape == (batch_size,), f"Expected mask shape {(batch_size,)}, got {mask.shape}"
    else:
        batch = item
    assert batch.dtype == jnp.int8, f"Expected dtype int8, got {batch.dtype}"
    assert batch.shape == (batch_size, oa.num_cols), (
        f"Expected shape {(batch_size, oa.num_cols)}, got {batch.shape}"
    )


def check_exceptions(
    oa: OrthogonalArray,
    *,
    invalid_batch_sizes: tuple[int, ...] = (0, -1),
) -> None:
    """Assert that invalid batch sizes and out-of-range rows are rejected."""
    for bs in invalid_batch_sizes:
        with pytest.raises(ValueError):
            oa.batches(bs)
    with pytest.raises(IndexError):
        oa[oa.num_rows]
    with pytest.raises(IndexError):
        oa.batches(1)[oa.num_rows]


def check_batches_match_materialized(oa: OrthogonalArray, batch_size: int) -> None:
    """Assert that concatenating the (non-jit) batches gives the materialized array."""
    full = oa.materialize()
    stacked = jnp.concatenate(list(oa.batches(batch_size)), axis=0)
    assert stacked.shape == full.shape, f"Expected shape {full.shape}, got {stacked.shape}"
    assert jnp.array_equal(stacked, full), "Batches differ from the materialized array"


def check_valid(oa: OrthogonalArray) -> None:
    """tests that a given orthogonal array has consistent metadata
    (n = λ s^t) and passes exact verification
    """
    assert oa.num_rows == oa.index * oa.num_levels**oa.strength
    assert oa.materialize().shape == oa.shape
    verify_oa(oa)
