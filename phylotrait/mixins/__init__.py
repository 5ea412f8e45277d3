"""Top level for mixins."""

from .errors import (
    ConfigError,
    DataSimulatorError,
    DegenerateInputError,
    EmptyIntersectionError,
    InvalidParameterError,
    MalformedTreeError,
    MissingTraitDataError,
    OptimizationFailedError,
    PhyloTraitError,
    PolytomyUnsupportedError,
    RateMatrixSingularError,
    SingularDesignError,
    TraitTableError,
    TreeSimulatorError,
    UnknownTipError,
)
from .logging import log_kwargs, log_runtime, logger
from .utilities import is_missing, spawn_generators
from .warnings import (
    ConvergenceWarning,
    ParameterEstimateWarning,
    PhyloTreeWarning,
    TraitTableWarning,
)
