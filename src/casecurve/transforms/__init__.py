"""
Feature derivation for the county case-growth models.

The joined source table is reduced to metropolitan counties of one state
with at least one confirmed case, and enriched with:

- daily new cases from the cumulative count (negative revisions clamped to 0)
- elapsed epidemic ``day``, its share of the modelled window ``t`` and ``t2``
- ``log_population`` (the model offset) and ``log_density``
- ``near_city`` for the seven counties around the major urban center
- ``high_risk`` for counties with a large elderly share

Complete-case filtering happens per model specification, not here.
"""

from casecurve.transforms.features import (
    MODEL_FRAME_COLUMNS,
    build_model_frame,
    clamp_new_cases,
    covariates_of,
    derive_new_cases,
    flag_high_risk,
    flag_near_city,
    harmonize_samples,
    scale_time,
    select_complete_cases,
)

__all__ = [
    "MODEL_FRAME_COLUMNS",
    "build_model_frame",
    "clamp_new_cases",
    "covariates_of",
    "derive_new_cases",
    "flag_high_risk",
    "flag_near_city",
    "harmonize_samples",
    "scale_time",
    "select_complete_cases",
]
