"""
PSIS-LOO scoring and model selection.

Models are ranked by expected log pointwise predictive density (ELPD). The
selection rule prefers the highest ELPD unless a simpler model is within
``se_multiplier`` standard errors of the difference, in which case the
simplest such model wins.

LOO scores are only comparable when every model was scored on the same
observations; :func:`compare_models` refuses otherwise.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union

import arviz as az
import numpy as np
import pandas as pd
from numpy.typing import NDArray

logger = logging.getLogger(__name__)

PARETO_K_THRESHOLD = 0.7


@dataclass
class LooSummary:
    name: str
    elpd: float
    se: float
    p_loo: float
    n_obs: int
    pointwise: NDArray[np.floating]
    pareto_k: NDArray[np.floating]
    influential: pd.DataFrame

    @property
    def n_influential(self) -> int:
        return len(self.influential)


@dataclass
class ModelSelection:
    selected: str
    best: str
    elpd_diff: float
    dse: float
    reason: str


def observation_count(idata: az.InferenceData) -> int:
    if "log_likelihood" not in idata.groups():
        raise ValueError("Trace has no log_likelihood group; refit with log_likelihood=True")
    var = next(iter(idata.log_likelihood.data_vars))
    sizes = idata.log_likelihood[var].sizes
    return int(np.prod([n for dim, n in sizes.items() if dim not in ("chain", "draw")]))


def compute_loo(
    fit_or_idata,
    frame: Optional[pd.DataFrame] = None,
    name: Optional[str] = None,
    pareto_k_threshold: float = PARETO_K_THRESHOLD,
) -> LooSummary:
    """
    Pareto-smoothed importance-sampling LOO for one fit.

    Observations whose Pareto k exceeds the threshold are listed in
    ``influential``, with their county and date when ``frame`` is given.
    They are reported, never dropped.

    ``fit_or_idata`` is an ``InferenceData`` or a
    :class:`casecurve.models.sampling.FitResult`, whose frame and
    specification name are used when not given.
    """
    idata = getattr(fit_or_idata, "idata", fit_or_idata)
    if frame is None:
        frame = getattr(fit_or_idata, "frame", None)
    if name is None and hasattr(fit_or_idata, "spec"):
        name = fit_or_idata.spec.name

    loo = az.loo(idata, pointwise=True)
    pointwise = np.asarray(loo.loo_i).ravel()
    pareto_k = np.asarray(loo.pareto_k).ravel()
    flagged = np.flatnonzero(pareto_k > pareto_k_threshold)

    if frame is not None:
        if len(frame) != len(pointwise):
            raise ValueError(f"Frame has {len(frame)} rows, trace has {len(pointwise)}")
        cols = [c for c in ("fips", "date", "new_cases") if c in frame.columns]
        influential = frame.iloc[flagged][cols].reset_index(drop=True)
        influential.insert(0, "obs_id", flagged)
    else:
        influential = pd.DataFrame({"obs_id": flagged})
    influential["pareto_k"] = pareto_k[flagged]

    if name is None and "posterior" in idata.groups():
        name = str(idata.posterior.attrs.get("specification", "model"))
    if len(flagged):
        logger.warning(
            "%s: %d observations with Pareto k > %.1f", name, len(flagged), pareto_k_threshold
        )

    return LooSummary(
        name=name or "model",
        elpd=float(loo.elpd_loo),
        se=float(loo.se),
        p_loo=float(loo.p_loo),
        n_obs=len(pointwise),
        pointwise=pointwise,
        pareto_k=pareto_k,
        influential=influential,
    )


def _pointwise(x: Union[LooSummary, NDArray[np.floating]]) -> NDArray[np.floating]:
    return x.pointwise if isinstance(x, LooSummary) else np.asarray(x, dtype=np.float64)


def elpd_difference(
    a: Union[LooSummary, NDArray[np.floating]],
    b: Union[LooSummary, NDArray[np.floating]],
) -> tuple[float, float]:
    """
    ELPD of ``a`` minus ELPD of ``b`` and the standard error of that difference.

    ``elpd_difference(a, b)[0] == -elpd_difference(b, a)[0]``; the standard
    error is the same both ways.
    """
    a_i, b_i = _pointwise(a), _pointwise(b)
    if a_i.shape != b_i.shape:
        raise ValueError(
            f"Pointwise ELPD over different observations ({a_i.size} vs {b_i.size})"
        )
    diff = a_i - b_i
    return float(diff.sum()), float(np.sqrt(diff.size * np.var(diff)))


def pairwise_differences(loos: dict[str, LooSummary]) -> pd.DataFrame:
    """Matrix of ``elpd(row) - elpd(column)``."""
    names = list(loos)
    out = pd.DataFrame(0.0, index=names, columns=names)
    for a in names:
        for b in names:
            if a != b:
                out.loc[a, b] = elpd_difference(loos[a], loos[b])[0]
    return out


def compare_models(idatas: dict[str, az.InferenceData]) -> pd.DataFrame:
    """
    Rank fitted models by LOO ELPD (ArviZ ``compare`` table, best first).

    Raises
    ------
    ValueError
        With fewer than two models, or when the models were scored on
        different numbers of observations.
    """
    if len(idatas) < 2:
        raise ValueError("Need at least two models to compare")

    counts = {name: observation_count(idata) for name, idata in idatas.items()}
    if len(set(counts.values())) > 1:
        raise ValueError(
            f"Models were fitted to different observations and are not comparable: {counts}"
        )

    return az.compare(idatas, ic="loo", scale="log")


def select_model(
    comparison: pd.DataFrame,
    order: list[str],
    se_multiplier: float = 2.0,
) -> ModelSelection:
    """
    Apply the selection rule to an :func:`compare_models` table.

    ``order`` lists model names from simplest to richest. Walking it in that
    order, the first model whose ELPD deficit to the best model is no larger
    than ``se_multiplier`` times its standard error is selected.
    """
    best = str(comparison.index[0])
    ranked = [m for m in order if m in comparison.index]
    ranked += [str(m) for m in comparison.index if m not in ranked]

    for name in ranked:
        diff = float(comparison.at[name, "elpd_diff"])
        dse = float(comparison.at[name, "dse"])
        if diff <= se_multiplier * dse:
            if name == best:
                reason = "highest ELPD"
            else:
                reason = (
                    f"within {se_multiplier:g} SE of {best} "
                    f"(diff {diff:.1f}, SE {dse:.1f}); simpler model preferred"
                )
            return ModelSelection(selected=name, best=best, elpd_diff=diff, dse=dse, reason=reason)

    return ModelSelection(selected=best, best=best, elpd_diff=0.0, dse=0.0, reason="highest ELPD")
