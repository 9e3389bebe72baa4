import jax
import pytest

import oarray.constructions as constructions
from oarray.constructions import ConstructionParams


jax.config.update("jax_numpy_dtype_promotion", "strict")
jax.config.update("jax_numpy_rank_promotion", "raise")

orthogonal_arrays = {
    "bose(s=2, k=3)": constructions.construct_oa_bose(ConstructionParams(levels=2, factors=3)),
    "bose(s=5, k=6)": constructions.construct_oa_bose(ConstructionParams(levels=5, factors=6)),
    "bose(s=8, k=9)": constructions.construct_oa_bose(ConstructionParams(levels=8, factors=9)),
    "bose(s=9, k=4)": constructions.construct_oa_bose(ConstructionParams(levels=9, factors=4)),
    "bush(s=3, t=3, k=3)": constructions.construct_oa_bush(
        ConstructionParams(levels=3, factors=3, strength=3)
    ),
    "bush(s=4, t=3, k=5)": constructions.construct_oa_bush(
        ConstructionParams(levels=4, factors=5, strength=3)
    ),
    "bush(s=5, t=4, k=6)": constructions.construct_oa_bush(
        ConstructionParams(levels=5, factors=6, strength=4)
    ),
}


@pytest.fixture(params=orthogonal_arrays.values(), ids=orthogonal_arrays.keys())
def oa(request):
    return request.param
