"""
Specifications and PyMC models for county case growth.

All candidates share one architecture, a hierarchical negative-binomial
regression with a log-population offset:

- **Fixed effects**: quadratic epidemic time, then census covariates,
  then population-level mobility.
- **County effects**: a random intercept always, then county-varying
  mobility slopes with an LKJ-correlated covariance.

The specification table is ordered from simplest to richest and every
entry contains its predecessor, so LOO comparisons move along one axis.
"""

from casecurve.models.specification import (
    SPECIFICATION_ORDER,
    GammaPrior,
    HalfNormalPrior,
    ModelSpecification,
    NormalPrior,
    PriorTable,
    SpecificationError,
    build_specification_sequence,
    check_nested,
    default_prior_table,
    get_specification,
)

__all__ = [
    "SPECIFICATION_ORDER",
    "GammaPrior",
    "HalfNormalPrior",
    "ModelSpecification",
    "NormalPrior",
    "PriorTable",
    "SpecificationError",
    "build_specification_sequence",
    "check_nested",
    "default_prior_table",
    "get_specification",
]
