"""Input schemas, table loaders and synthetic data generation."""

from casecurve.data.loading import (
    coerce_fips,
    load_cases,
    load_census,
    load_metro,
    load_mobility,
    load_population,
    load_sources,
    merge_sources,
)
from casecurve.data.schemas import (
    CaseCountsFrame,
    CensusFrame,
    County,
    MetroFrame,
    MobilityFrame,
    ModelFrameSchema,
    PopulationFrame,
    counties_from_frame,
)
from casecurve.data.synthetic import (
    SyntheticCounty,
    SyntheticDataConfig,
    SyntheticTables,
    TrueParameters,
    generate_model_frame,
    generate_synthetic_tables,
    generate_true_parameters,
    load_ground_truth,
    save_synthetic_data,
)

__all__ = [
    "CaseCountsFrame",
    "CensusFrame",
    "County",
    "MetroFrame",
    "MobilityFrame",
    "ModelFrameSchema",
    "PopulationFrame",
    "SyntheticCounty",
    "SyntheticDataConfig",
    "SyntheticTables",
    "TrueParameters",
    "coerce_fips",
    "counties_from_frame",
    "generate_model_frame",
    "generate_synthetic_tables",
    "generate_true_parameters",
    "load_cases",
    "load_census",
    "load_metro",
    "load_mobility",
    "load_population",
    "load_ground_truth",
    "load_sources",
    "merge_sources",
]
