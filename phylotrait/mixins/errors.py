from typing import Optional


class PhyloTraitError(Exception):
    """Base exception for phylotrait.

    Args:
        message: Description of the failure.
        component: Name of the component that raised the error (e.g.
            "CovarianceBuilder").
        parameter: Name of the offending parameter, if any.
    """

    def __init__(
        self,
        message: str = "",
        component: Optional[str] = None,
        parameter: Optional[str] = None,
    ):
        self.component = component
        self.parameter = parameter
        prefix = f"[{component}] " if component else ""
        super().__init__(prefix + message)


class MalformedTreeError(PhyloTraitError):
    """An Exception class for trees failing validation."""

    pass


class UnknownTipError(PhyloTraitError):
    """An Exception class for references to tips absent from a tree."""

    pass


class EmptyIntersectionError(PhyloTraitError):
    """An Exception class for trees and tables sharing no taxa."""

    pass


class InvalidParameterError(PhyloTraitError):
    """An Exception class for model parameters outside of their domain."""

    pass


class PolytomyUnsupportedError(PhyloTraitError):
    """An Exception class for multifurcations that will not be resolved."""

    pass


class OptimizationFailedError(PhyloTraitError):
    """An Exception class for likelihood searches that produced nothing."""

    pass


class DegenerateInputError(PhyloTraitError):
    """An Exception class for data on which a likelihood is undefined."""

    pass


class RateMatrixSingularError(PhyloTraitError):
    """An Exception class for reducible (absorbing) rate matrices."""

    pass


class SingularDesignError(PhyloTraitError):
    """An Exception class for rank-deficient regression designs."""

    pass


class TraitTableError(PhyloTraitError):
    """An Exception class for the TraitTable class."""

    pass


class MissingTraitDataError(PhyloTraitError):
    """An Exception class for missing values where complete data is needed."""

    pass


class ConfigError(PhyloTraitError):
    """An Exception class for malformed analysis configurations."""

    pass


class DataSimulatorError(PhyloTraitError):
    """An Exception class for all DataSimulator subclasses."""

    pass


class TreeSimulatorError(PhyloTraitError):
    """An Exception class for all TreeSimulator subclasses."""

    pass
