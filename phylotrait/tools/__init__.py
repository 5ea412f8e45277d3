"""Top level for tools."""

from .continuous_models import (
    ContinuousModelFit,
    ContinuousModelFitter,
    continuous_log_likelihood,
    fit_continuous_models,
)
from .contrasts import (
    ancestral_state_estimates,
    compute_independent_contrasts,
    compute_independent_contrasts_for_trait,
    contrast_regression,
)
from .covariance import (
    ContinuousModel,
    CovarianceBuilder,
    compute_covariance_matrix,
)
from .discrete_models import (
    DiscreteModel,
    DiscreteModelFit,
    DiscreteModelFitter,
    RateMatrix,
    discrete_log_likelihood,
    fitch_parsimony_score,
)
from .optimization import (
    OptimizationResult,
    bounded_scalar_optimizer,
    multistart_minimize,
    scipy_optimizer,
)
from .regression import PhylogeneticRegression, RegressionResult
from .stochastic_mapping import (
    StochasticCharacterHistory,
    StochasticCharacterMapper,
    StochasticMapSample,
)


__all__ = [
    "ancestral_state_estimates",
    "bounded_scalar_optimizer",
    "compute_covariance_matrix",
    "compute_independent_contrasts",
    "compute_independent_contrasts_for_trait",
    "continuous_log_likelihood",
    "contrast_regression",
    "ContinuousModel",
    "ContinuousModelFit",
    "ContinuousModelFitter",
    "CovarianceBuilder",
    "discrete_log_likelihood",
    "DiscreteModel",
    "DiscreteModelFit",
    "DiscreteModelFitter",
    "fit_continuous_models",
    "fitch_parsimony_score",
    "multistart_minimize",
    "OptimizationResult",
    "PhylogeneticRegression",
    "RateMatrix",
    "RegressionResult",
    "scipy_optimizer",
    "StochasticCharacterHistory",
    "StochasticCharacterMapper",
    "StochasticMapSample",
]
