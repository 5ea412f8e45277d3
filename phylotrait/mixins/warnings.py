class PhyloTreeWarning(UserWarning):
    """A Warning for the PhyloTree class."""

    pass


class TraitTableWarning(UserWarning):
    """A Warning for the TraitTable class."""

    pass


class ConvergenceWarning(UserWarning):
    """A warning class for optimizers stopping before convergence."""

    pass


class ParameterEstimateWarning(UserWarning):
    """An warning class for estimates sitting on a parameter bound."""

    pass
