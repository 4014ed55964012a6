import numpy as np
import pandas as pd
import pymc as pm
import pytensor.tensor as pt

from casecurve.models.specification import ModelSpecification


def design_matrices(
    frame: pd.DataFrame, spec: ModelSpecification
) -> tuple[np.ndarray, np.ndarray]:
    """
    Fixed-effect matrix ``X`` (obs x fixed) and county-effect matrix ``Z``
    (obs x effect, first column all ones for the random intercept).
    """
    cols = list(spec.fixed_effects)
    if frame[cols].isna().any().any():
        raise ValueError(
            f"{spec.name}: covariates contain missing values; "
            "run select_complete_cases first"
        )
    X = frame[cols].to_numpy(dtype=np.float64) if cols else np.zeros((len(frame), 0))
    Z = np.column_stack(
        [np.ones(len(frame))] + [frame[c].to_numpy(dtype=np.float64) for c in spec.random_slopes]
    )
    return X, Z


def build_negbinom_model(
    frame: pd.DataFrame,
    spec: ModelSpecification,
    name: str = "",
) -> pm.Model:
    """
    Hierarchical negative-binomial regression for one specification.

        log(mu_i) = intercept + X_i beta + Z_i u[county_i] + log_population_i
        new_cases_i ~ NegativeBinomial(mu_i, alpha)

    County effects ``u`` are non-centred. With more than one county-varying
    term they share an LKJ-Cholesky covariance whose standard deviations
    carry half-normal priors; a lone random intercept just gets a
    half-normal scale.

    Parameters
    ----------
    frame : pd.DataFrame
        Complete-case model frame for ``spec``.
    spec : ModelSpecification
        Covariates, offset and priors.
    name : str
        PyMC model name; variable names are prefixed with it when non-empty.

    Returns
    -------
    pm.Model
        PyMC model ready for sampling.
    """
    if frame.empty:
        raise ValueError(f"{spec.name}: empty model frame")

    counties = sorted(frame[spec.group].unique().tolist())
    county_to_idx = {c: i for i, c in enumerate(counties)}
    county_idx = frame[spec.group].map(county_to_idx).to_numpy()

    X, Z = design_matrices(frame, spec)
    y = frame[spec.target].to_numpy(dtype=np.int64)
    offset = frame[spec.offset].to_numpy(dtype=np.float64)

    priors = spec.priors
    fixed_priors = [priors.fixed_prior(c) for c in spec.fixed_effects]
    effects = list(spec.random_effects)
    sd_sigmas = np.array([priors.sd_prior(e).sigma for e in effects])

    coords = {
        "county": counties,
        "fixed": list(spec.fixed_effects),
        "effect": effects,
        "effect_bis": effects,
        "obs_id": np.arange(len(frame)),
    }

    with pm.Model(name=name, coords=coords) as model:
        Z_data = pm.Data("Z", Z, dims=("obs_id", "effect"))
        county_idx_data = pm.Data("county_idx", county_idx, dims="obs_id")
        offset_data = pm.Data("offset", offset, dims="obs_id")
        pm.Data("population", np.exp(offset), dims="obs_id")

        intercept = pm.Normal(
            "intercept", mu=priors.intercept.mu, sigma=priors.intercept.sigma
        )

        eta = intercept + offset_data
        if fixed_priors:
            X_data = pm.Data("X", X, dims=("obs_id", "fixed"))
            beta = pm.Normal(
                "beta",
                mu=np.array([p.mu for p in fixed_priors]),
                sigma=np.array([p.sigma for p in fixed_priors]),
                dims="fixed",
            )
            eta = eta + pm.math.dot(X_data, beta)

        county_z = pm.Normal("county_z", mu=0, sigma=1, dims=("county", "effect"))
        if len(effects) == 1:
            county_sd = pm.HalfNormal("county_sd", sigma=sd_sigmas, dims="effect")
            county_effect = pm.Deterministic(
                "county_effect", county_z * county_sd, dims=("county", "effect")
            )
        else:
            chol, corr, sd = pm.LKJCholeskyCov(
                "county_chol",
                n=len(effects),
                eta=priors.lkj_eta,
                sd_dist=pm.HalfNormal.dist(sigma=sd_sigmas, shape=len(effects)),
                compute_corr=True,
            )
            pm.Deterministic("county_sd", sd, dims="effect")
            pm.Deterministic("county_corr", corr, dims=("effect", "effect_bis"))
            county_effect = pm.Deterministic(
                "county_effect", pt.dot(county_z, chol.T), dims=("county", "effect")
            )

        eta = eta + (Z_data * county_effect[county_idx_data]).sum(axis=1)
        mu = pm.Deterministic("mu", pm.math.exp(eta), dims="obs_id")

        alpha = pm.Gamma(
            "alpha", alpha=priors.dispersion.alpha, beta=priors.dispersion.beta
        )

        pm.NegativeBinomial(
            spec.target,
            mu=mu,
            alpha=alpha,
            observed=y,
            dims="obs_id",
        )

    return model
