"""
Model specifications for the county case-growth regressions.

Every specification is a negative-binomial regression of daily new cases on
a quadratic epidemic-time curve, with a ``log_population`` offset and a
county random intercept. The sequence adds covariates one block at a time:

1. ``time_only``            t, t2
2. ``census``               + log_density, elderly_pct, near_city
3. ``mobility``             + retail_recreation, workplaces, residential
4. ``county_mobility_one``  + county-varying slope on residential
5. ``county_mobility_all``  + county-varying slopes on all three mobility terms

Each specification contains every covariate of the one before it.
"""

from dataclasses import dataclass, field, replace
from typing import Literal, Optional


CENSUS_COVARIATES = ("log_density", "elderly_pct", "near_city")
MODEL_MOBILITY_COVARIATES = ("retail_recreation", "workplaces", "residential")
TIME_COVARIATES = ("t", "t2")


class SpecificationError(ValueError):
    """Raised when a specification or a sequence of them is malformed."""


@dataclass(frozen=True)
class NormalPrior:
    mu: float = 0.0
    sigma: float = 1.0

    def __str__(self) -> str:
        return f"Normal({self.mu:g}, {self.sigma:g})"


@dataclass(frozen=True)
class HalfNormalPrior:
    sigma: float = 1.0

    def __str__(self) -> str:
        return f"HalfNormal({self.sigma:g})"


@dataclass(frozen=True)
class GammaPrior:
    alpha: float = 2.0
    beta: float = 0.2

    def __str__(self) -> str:
        return f"Gamma({self.alpha:g}, {self.beta:g})"


@dataclass(frozen=True)
class PriorTable:
    """
    Priors for every coefficient class of a specification.

    Attributes
    ----------
    fixed : dict[str, NormalPrior]
        One normal prior per fixed-effect covariate.
    intercept : NormalPrior
        Population-level intercept (log daily cases per resident).
    random_sd : dict[str, HalfNormalPrior]
        Standard deviation of each county effect, keyed by ``"intercept"``
        or slope covariate. Missing keys fall back to ``default_sd``.
    lkj_eta : float
        Shape of the LKJ prior on the county-effect correlation matrix.
    dispersion : GammaPrior
        Negative-binomial dispersion (PyMC ``alpha``).
    """

    fixed: dict[str, NormalPrior] = field(default_factory=dict)
    intercept: NormalPrior = NormalPrior(-9.0, 2.0)
    random_sd: dict[str, HalfNormalPrior] = field(default_factory=dict)
    default_sd: HalfNormalPrior = HalfNormalPrior(1.0)
    lkj_eta: float = 2.0
    dispersion: GammaPrior = GammaPrior(2.0, 0.2)

    def fixed_prior(self, name: str) -> NormalPrior:
        try:
            return self.fixed[name]
        except KeyError:
            raise SpecificationError(f"No prior for fixed effect {name!r}") from None

    def sd_prior(self, name: str) -> HalfNormalPrior:
        return self.random_sd.get(name, self.default_sd)


def default_prior_table() -> PriorTable:
    """
    Priors used for the Michigan analysis.

    ``t`` is the elapsed share of the modelled window, so the ``t``/``t2``
    priors describe the curve over the whole window: most mass is on curves
    that rise and then turn over, with the prior-mean vertex half way. With
    flat priors the prior predictive routinely implies more cases than
    residents.
    Mobility covariates are percent changes, so their coefficients are small.
    """
    return PriorTable(
        fixed={
            "t": NormalPrior(3.0, 1.5),
            "t2": NormalPrior(-3.0, 1.5),
            "log_density": NormalPrior(0.0, 0.5),
            "elderly_pct": NormalPrior(0.0, 0.1),
            "near_city": NormalPrior(0.0, 1.0),
            "retail_recreation": NormalPrior(0.0, 0.02),
            "grocery_pharmacy": NormalPrior(0.0, 0.02),
            "parks": NormalPrior(0.0, 0.02),
            "transit": NormalPrior(0.0, 0.02),
            "workplaces": NormalPrior(0.0, 0.02),
            "residential": NormalPrior(0.0, 0.05),
        },
        intercept=NormalPrior(-9.0, 2.0),
        random_sd={
            "intercept": HalfNormalPrior(1.0),
            "retail_recreation": HalfNormalPrior(0.01),
            "workplaces": HalfNormalPrior(0.01),
            "residential": HalfNormalPrior(0.02),
        },
        default_sd=HalfNormalPrior(0.5),
        lkj_eta=2.0,
        dispersion=GammaPrior(2.0, 0.2),
    )


@dataclass(frozen=True)
class ModelSpecification:
    """
    One candidate regression.

    ``random_slopes`` lists the covariates whose coefficient varies by
    county; each must also be a fixed effect (the county slope is a
    deviation from the population-level slope). A county random intercept
    is always included.
    """

    name: str
    fixed_effects: tuple[str, ...]
    random_slopes: tuple[str, ...] = ()
    priors: PriorTable = field(default_factory=default_prior_table)
    offset: str = "log_population"
    family: Literal["negative_binomial"] = "negative_binomial"
    group: str = "fips"
    target: str = "new_cases"
    description: str = ""

    def __post_init__(self) -> None:
        if len(set(self.fixed_effects)) != len(self.fixed_effects):
            raise SpecificationError(f"{self.name}: duplicate fixed effects")
        if len(set(self.random_slopes)) != len(self.random_slopes):
            raise SpecificationError(f"{self.name}: duplicate random slopes")
        stray = [s for s in self.random_slopes if s not in self.fixed_effects]
        if stray:
            raise SpecificationError(
                f"{self.name}: random slopes {stray} are not fixed effects"
            )
        for name in self.fixed_effects:
            self.priors.fixed_prior(name)

    @property
    def covariates(self) -> tuple[str, ...]:
        return self.fixed_effects

    @property
    def random_effects(self) -> tuple[str, ...]:
        """County-varying terms, intercept first."""
        return ("intercept",) + self.random_slopes

    @property
    def n_parameters(self) -> int:
        k = len(self.random_effects)
        return 1 + len(self.fixed_effects) + k + k * (k - 1) // 2 + 1

    def formula(self) -> str:
        """Mixed-model formula, e.g. ``new_cases ~ t + t2 + (1 + residential | fips)``."""
        rhs = " + ".join(self.fixed_effects) if self.fixed_effects else "1"
        group_terms = " + ".join(("1",) + self.random_slopes)
        return (
            f"{self.target} ~ {rhs} + ({group_terms} | {self.group})"
            f" + offset({self.offset})"
        )

    def with_priors(self, priors: PriorTable) -> "ModelSpecification":
        return replace(self, priors=priors)


def is_nested(smaller: ModelSpecification, larger: ModelSpecification) -> bool:
    return set(smaller.fixed_effects) <= set(larger.fixed_effects) and set(
        smaller.random_slopes
    ) <= set(larger.random_slopes)


def check_nested(specs: list[ModelSpecification]) -> None:
    """Raise unless each specification contains everything the previous one has."""
    names = [s.name for s in specs]
    if len(set(names)) != len(names):
        raise SpecificationError(f"Duplicate specification names: {names}")
    for prev, nxt in zip(specs, specs[1:]):
        if not is_nested(prev, nxt):
            raise SpecificationError(f"{nxt.name!r} does not contain {prev.name!r}")
        if (prev.fixed_effects, prev.random_slopes) == (nxt.fixed_effects, nxt.random_slopes):
            raise SpecificationError(f"{nxt.name!r} adds nothing to {prev.name!r}")


def build_specification_sequence(
    priors: Optional[PriorTable] = None,
    mobility: tuple[str, ...] = MODEL_MOBILITY_COVARIATES,
    county_slope: str = "residential",
) -> list[ModelSpecification]:
    """
    The ordered, strictly nested list of candidate specifications.

    Parameters
    ----------
    priors : PriorTable, optional
        Shared prior table; :func:`default_prior_table` if None.
    mobility : tuple[str, ...]
        Mobility covariates entering as population-level effects.
    county_slope : str
        The mobility covariate given a county-varying slope in the
        single-slope variant.
    """
    if priors is None:
        priors = default_prior_table()
    if county_slope not in mobility:
        raise SpecificationError(f"{county_slope!r} is not one of {mobility}")

    census = TIME_COVARIATES + CENSUS_COVARIATES
    with_mobility = census + tuple(mobility)

    specs = [
        ModelSpecification(
            name="time_only",
            fixed_effects=TIME_COVARIATES,
            priors=priors,
            description="Quadratic epidemic curve",
        ),
        ModelSpecification(
            name="census",
            fixed_effects=census,
            priors=priors,
            description="+ density, elderly share, near-city flag",
        ),
        ModelSpecification(
            name="mobility",
            fixed_effects=with_mobility,
            priors=priors,
            description="+ population-level mobility",
        ),
        ModelSpecification(
            name="county_mobility_one",
            fixed_effects=with_mobility,
            random_slopes=(county_slope,),
            priors=priors,
            description=f"+ county-varying {county_slope} slope",
        ),
        ModelSpecification(
            name="county_mobility_all",
            fixed_effects=with_mobility,
            random_slopes=tuple(mobility),
            priors=priors,
            description="+ county-varying slopes on all mobility terms",
        ),
    ]
    check_nested(specs)
    return specs


SPECIFICATION_ORDER = [s.name for s in build_specification_sequence()]


def get_specification(
    name: str, specs: Optional[list[ModelSpecification]] = None
) -> ModelSpecification:
    for spec in specs or build_specification_sequence():
        if spec.name == name:
            return spec
    raise KeyError(f"Unknown specification {name!r}; choose from {SPECIFICATION_ORDER}")
