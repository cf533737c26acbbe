from typing import Dict, Iterable

import arviz as az
import numpy as np


def flatten_draws(
    idata: az.InferenceData, var_names: Iterable[str]
) -> Dict[str, np.ndarray]:
    """
    Split posterior variables into scalar series of shape (chain, draw).

    Vector parameters are labelled with their coordinate values, e.g.
    ``province_effects[Quebec]``.
    """
    out: Dict[str, np.ndarray] = {}
    for name in var_names:
        da = idata.posterior[name]
        extra_dims = [d for d in da.dims if d not in ("chain", "draw")]
        values = da.transpose("chain", "draw", *extra_dims).values
        if not extra_dims:
            out[name] = values
            continue
        for index in np.ndindex(*values.shape[2:]):
            label = ",".join(
                str(da[d].values[i]) for d, i in zip(extra_dims, index)
            )
            out[f"{name}[{label}]"] = values[(slice(None), slice(None), *index)]
    return out
