"""Run NUTS chains and pool them into a FittedModel.

Chains are sampled by numpyro's own multi-chain MCMC (`FitConfig.chain_method`).
With "sequential" every chain gets its own MCMC object and runs to completion
before the next starts; "parallel" and "vectorized" sample all chains together.
After warmup the chains advance in blocks of `FitConfig.block_size` draws and
cancellation is checked between blocks; the draws of a cancelled chain are
thrown away.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional, Sequence

import arviz as az
import jax
import jax.numpy as jnp
import numpy as np
from numpyro.infer import HMC, MCMC, NUTS, log_likelihood
from numpyro.infer.util import initialize_model

from ..analysis_state import ChainReport, FittedModel, ModelAnalysisState
from ..errors import (
    DivergentTransition,
    LowEffectiveSampleSize,
    SamplerInitializationFailure,
    SamplingCancelled,
    WarningRecord,
    emit,
)
from ..ui import ModellingDisplay
from ..utils import flatten_draws, init_logger
from .models import BaseModel, FitConfig

logger = init_logger()

# numpyro HMC state field -> arviz sample_stats name
SAMPLE_STATS = {
    "diverging": "diverging",
    "potential_energy": "lp",
    "energy": "energy",
    "num_steps": "n_steps",
    "accept_prob": "acceptance_rate",
}

# per-respondent deterministic sites, recomputed by Predictive when needed
PER_ROW_SITES = ("ownership_prob",)


@dataclass(frozen=True)
class ChainResult:
    chain: int
    status: Literal["completed", "cancelled"]
    samples: Dict[str, np.ndarray] = field(default_factory=dict)  # (draw, ...)
    stats: Dict[str, np.ndarray] = field(default_factory=dict)
    elapsed: float = 0.0


def chain_keys(seed: int, chains: int) -> List[jax.Array]:
    """Independent, reproducible PRNG keys, one per chain."""
    return list(jax.random.split(jax.random.PRNGKey(seed), chains))


def _make_kernel(model: Callable, cfg: FitConfig):
    if cfg.method == "NUTS":
        return NUTS(
            model,
            target_accept_prob=cfg.target_accept,
            max_tree_depth=cfg.max_tree_depth,
        )
    if cfg.method == "HMC":
        return HMC(model, target_accept_prob=cfg.target_accept)
    raise ValueError(f"Unsupported inference method: {cfg.method}")


def _check_initialisable(
    chains: Sequence[int],
    rng_keys: Sequence[jax.Array],
    model: Callable,
    features: Dict[str, Any],
) -> None:
    for chain, key in zip(chains, rng_keys):
        try:
            initialize_model(key, model, model_kwargs=dict(features))
        except RuntimeError as e:
            raise SamplerInitializationFailure(
                f"Chain {chain} could not initialise: {e}"
            ) from e


def sample_chains(
    chains: Sequence[int],
    rng_keys: Sequence[jax.Array],
    model: Callable,
    features: Dict[str, Any],
    cfg: FitConfig,
    should_stop: Callable[[], bool],
    on_block: Optional[Callable[[int, int], None]] = None,
) -> List[ChainResult]:
    """
    Warm up and sample a group of chains with one numpyro MCMC object.

    Raises:
        SamplerInitializationFailure: no valid starting point was found.
    """
    start = time.monotonic()

    def cancelled(collected: int) -> List[ChainResult]:
        logger.warning(
            f"Chains {list(chains)} cancelled after {collected} draws; discarding them."
        )
        elapsed = time.monotonic() - start
        return [ChainResult(chain=c, status="cancelled", elapsed=elapsed) for c in chains]

    if should_stop():
        return cancelled(0)

    _check_initialisable(chains, rng_keys, model, features)

    block = min(cfg.block_size, cfg.samples)
    mcmc = MCMC(
        _make_kernel(model, cfg),
        num_warmup=cfg.warmup,
        num_samples=block,
        num_chains=len(chains),
        chain_method=cfg.chain_method,
        progress_bar=cfg.progress_bar,
    )
    rng_key = rng_keys[0] if len(chains) == 1 else jnp.stack(list(rng_keys))

    try:
        mcmc.warmup(rng_key, **features)
    except RuntimeError as e:
        raise SamplerInitializationFailure(
            f"Chains {list(chains)} could not initialise: {e}"
        ) from e
    logger.debug(f"Chains {list(chains)} finished warmup in {time.monotonic() - start:.1f}s")

    sample_blocks: List[Dict[str, np.ndarray]] = []
    stat_blocks: List[Dict[str, np.ndarray]] = []
    collected = 0
    while collected < cfg.samples:
        if should_stop():
            return cancelled(collected)

        mcmc.run(
            mcmc.post_warmup_state.rng_key,
            extra_fields=tuple(SAMPLE_STATS),
            **features,
        )
        samples = mcmc.get_samples(group_by_chain=True)
        sample_blocks.append(
            {k: jax.device_get(v) for k, v in samples.items() if k not in PER_ROW_SITES}
        )
        stat_blocks.append(jax.device_get(mcmc.get_extra_fields(group_by_chain=True)))
        mcmc.post_warmup_state = mcmc.last_state

        collected += block
        if on_block is not None:
            for chain in chains:
                on_block(chain, block)

    # blocks are (chain, draw, ...)
    def _concat(blocks: Sequence[Dict[str, np.ndarray]], i: int) -> Dict[str, np.ndarray]:
        return {
            k: np.concatenate([np.asarray(b[k])[i] for b in blocks])[: cfg.samples]
            for k in blocks[0]
        }

    elapsed = time.monotonic() - start
    return [
        ChainResult(
            chain=chain,
            status="completed",
            samples=_concat(sample_blocks, i),
            stats=_concat(stat_blocks, i),
            elapsed=elapsed,
        )
        for i, chain in enumerate(chains)
    ]


def _sampler_warnings(
    idata: az.InferenceData,
    reports: Sequence[ChainReport],
    coefficient_names: Sequence[str],
    min_ess: float,
) -> List[WarningRecord]:
    records = []
    for report in reports:
        if report.divergences:
            records.append(
                emit(
                    logger,
                    DivergentTransition,
                    f"{report.divergences} divergent transitions in chain {report.chain}",
                    chain=report.chain,
                    value=float(report.divergences),
                )
            )

    # too few draws for a meaningful ESS
    if idata.posterior.sizes["draw"] < 4:
        return records
    for label, series in flatten_draws(idata, coefficient_names).items():
        for kind in ("bulk", "tail"):
            value = float(az.ess(series, method=kind))
            if value < min_ess:
                records.append(
                    emit(
                        logger,
                        LowEffectiveSampleSize,
                        f"{kind} ESS of {label} is {value:.0f} (< {min_ess:.0f})",
                        parameter=label,
                        value=value,
                    )
                )
    return records


def pool_chains(
    model_name: str,
    model_builder: BaseModel,
    observations,
    features: Dict[str, Any],
    coords: Dict[str, list],
    dims: Dict[str, list],
    results: Sequence[ChainResult],
    cfg: FitConfig,
    prior: az.InferenceData | None = None,
) -> FittedModel:
    """
    Combine completed chains into a FittedModel. Cancelled chains are reported
    but contribute no draws. Groups of `prior` (e.g. prior_predictive) are
    carried over.

    Raises:
        SamplingCancelled: no chain completed.
    """
    results = sorted(results, key=lambda r: r.chain)
    completed = [r for r in results if r.status == "completed"]
    if not completed:
        raise SamplingCancelled(f"All {len(results)} chains of {model_name} were cancelled.")

    reports = []
    for r in results:
        divergences = int(np.sum(r.stats["diverging"])) if r.stats else 0
        draws = len(r.stats["diverging"]) if r.stats else 0
        reports.append(ChainReport(r.chain, r.status, draws, divergences, r.elapsed))

    posterior = {k: np.stack([r.samples[k] for r in completed]) for k in completed[0].samples}
    sample_stats = {
        SAMPLE_STATS[k]: np.stack([r.stats[k] for r in completed])
        for k in completed[0].stats
        if k in SAMPLE_STATS
    }
    if "lp" in sample_stats:
        sample_stats["lp"] = -sample_stats["lp"]

    loglik = log_likelihood(
        model_builder.build_model(),
        {k: posterior[k] for k in model_builder.latent_sites},
        batch_ndims=2,
        **features,
    )

    idata = az.from_dict(
        posterior=posterior,
        sample_stats=sample_stats,
        log_likelihood={"obs": np.asarray(loglik["obs"])},
        observed_data={"obs": np.asarray(features["obs"])},
        coords=coords,
        dims=dims,
    )
    if prior is not None:
        idata.extend(prior)

    fitted = FittedModel(
        model_name=model_name,
        model=model_builder,
        observations=observations.copy(),
        features=features,
        coords=coords,
        dims=dims,
        inference_data=idata,
        chains=tuple(reports),
        seed=cfg.seed,
    )
    return fitted.with_warnings(
        *_sampler_warnings(idata, reports, model_builder.coefficient_names, cfg.min_ess)
    )


def fit(
    model_analysis_state: ModelAnalysisState,
    display: ModellingDisplay | None = None,
    cancel_event: threading.Event | None = None,
) -> FittedModel:
    """
    Sample the posterior of one model, store the FittedModel on the state and
    return it.

    Args:
        model_analysis_state: built model and encoded observations.
        display: optional live display for per-chain progress.
        cancel_event: set it from another thread to cancel unfinished chains.
    """
    state = model_analysis_state
    cfg = state.model_config.fit
    cancel_event = cancel_event or threading.Event()
    deadline = time.monotonic() + cfg.timeout if cfg.timeout is not None else None

    def should_stop() -> bool:
        if deadline is not None and time.monotonic() > deadline:
            cancel_event.set()
        return cancel_event.is_set()

    on_block = None
    if display is not None:
        display.update_header(f"Fitting {state.model_name}")
        display.update_stats(
            {
                "Statistical Models": state.model_name,
                "Chains": cfg.chains,
                "Samples": cfg.samples,
                "Method": cfg.method,
                "Status": "Running",
            }
        )
        for chain in range(cfg.chains):
            display.add_task(f"{state.model_name} chain {chain}", chain=chain, total=cfg.samples)

        def on_block(chain: int, advance: int) -> None:
            display.update_task(f"{state.model_name} chain {chain}", advance=advance)

    model = state.model
    keys = chain_keys(cfg.seed, cfg.chains)
    logger.info(
        f"Fitting {state.model_name}: {cfg.chains} chains x {cfg.samples} draws "
        f"({cfg.warmup} warmup, target_accept={cfg.target_accept})"
    )

    if cfg.chain_method == "sequential":
        groups = [[chain] for chain in range(cfg.chains)]
    else:
        groups = [list(range(cfg.chains))]

    results: List[ChainResult] = []
    try:
        for group in groups:
            results.extend(
                sample_chains(
                    group,
                    [keys[chain] for chain in group],
                    model,
                    state.features,
                    cfg,
                    should_stop,
                    on_block,
                )
            )
    except BaseException as e:
        if display is not None:
            display.update_stat("Status", "Failed")
            display.update_stat("Errors encountered", str(e))
        raise

    fitted = pool_chains(
        model_name=state.model_name,
        model_builder=state.model_builder,
        observations=state.observations,
        features=state.features,
        coords=state.coords,
        dims=state.dims,
        results=results,
        cfg=cfg,
        prior=state.prior_data,
    )
    if display is not None:
        display.update_stat("Status", "Completed")
        display.update_stat(
            "Num divergents", sum(report.divergences for report in fitted.chains)
        )

    state.fitted = fitted
    return fitted
