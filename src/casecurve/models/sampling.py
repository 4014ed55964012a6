import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import arviz as az
import pandas as pd
import pymc as pm

from casecurve.config import SamplerSettings
from casecurve.models.negbinom import build_negbinom_model
from casecurve.models.specification import ModelSpecification

logger = logging.getLogger(__name__)


@dataclass
class FitResult:
    """
    Everything produced by fitting one specification.

    ``frame`` is the exact set of rows the model saw, so pointwise LOO
    values and predictive draws line up with it by position.
    """

    spec: ModelSpecification
    frame: pd.DataFrame
    model: pm.Model
    idata: az.InferenceData

    @property
    def n_obs(self) -> int:
        return len(self.frame)

    def save(self, output_dir: Path, prefix: Optional[str] = None) -> Path:
        output_dir = Path(output_dir)
        output_dir.mkdir(exist_ok=True, parents=True)
        path = output_dir / f"{prefix or self.spec.name}_trace.nc"
        self.idata.to_netcdf(path)
        return path


def _tag(idata: az.InferenceData, spec: ModelSpecification) -> None:
    for group in idata.groups():
        attrs = getattr(idata, group).attrs
        attrs["specification"] = spec.name
        attrs["formula"] = spec.formula()


def fit_model(
    spec: ModelSpecification,
    frame: pd.DataFrame,
    settings: Optional[SamplerSettings] = None,
) -> FitResult:
    """
    Draw posterior samples for ``spec`` with NUTS.

    The log-likelihood is always stored so the result can be scored with
    PSIS-LOO. Divergences and R-hat problems are not handled here; they
    show up in :func:`casecurve.evaluation.run_mcmc_diagnostics`.
    """
    if settings is None:
        settings = SamplerSettings()

    model = build_negbinom_model(frame, spec)
    logger.info(
        "Sampling %s: %d obs, %d draws x %d chains, target_accept=%.2f",
        spec.name,
        len(frame),
        settings.draws,
        settings.chains,
        settings.target_accept,
    )

    with model:
        idata = pm.sample(
            draws=settings.draws,
            tune=settings.tune,
            chains=settings.chains,
            cores=settings.cores,
            target_accept=settings.target_accept,
            random_seed=settings.random_seed,
            return_inferencedata=True,
            idata_kwargs={"log_likelihood": True},
            progressbar=settings.progressbar,
        )

        if settings.posterior_predictive:
            idata.extend(
                pm.sample_posterior_predictive(
                    idata,
                    random_seed=settings.random_seed,
                    progressbar=settings.progressbar,
                )
            )

    _tag(idata, spec)
    return FitResult(spec=spec, frame=frame.reset_index(drop=True), model=model, idata=idata)


def sample_prior_only(
    spec: ModelSpecification,
    frame: pd.DataFrame,
    draws: int = 500,
    random_seed: int = 42,
) -> az.InferenceData:
    """Prior and prior-predictive draws for ``spec``, without conditioning on cases."""
    model = build_negbinom_model(frame, spec)
    with model:
        idata = pm.sample_prior_predictive(draws=draws, random_seed=random_seed)
    _tag(idata, spec)
    return idata


def sample_posterior_predictive(fit: FitResult, random_seed: int = 42) -> FitResult:
    if "posterior_predictive" not in fit.idata.groups():
        with fit.model:
            fit.idata.extend(
                pm.sample_posterior_predictive(fit.idata, random_seed=random_seed)
            )
        _tag(fit.idata, fit.spec)
    return fit
