"""
Maximum-likelihood fitting of continuous-trait evolution models.

Tip values are modelled as y ~ N(root_state * 1, sigma2 * V(theta)), where
V(theta) is the CovarianceBuilder matrix of the model (BM, OU, EB or
Pagel's lambda) at shape parameter theta. For fixed theta the rate sigma2
and the root state have closed-form maximum-likelihood estimates, so only
theta is searched numerically, on the profile log-likelihood.
"""
import multiprocessing
import threading
import warnings
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from phylotrait.data import MatchedData
from phylotrait.mixins import (
    DegenerateInputError,
    InvalidParameterError,
    ParameterEstimateWarning,
    SingularDesignError,
    log_kwargs,
    log_runtime,
    logger,
)
from phylotrait.tools.covariance import ContinuousModel, CovarianceBuilder
from phylotrait.tools.gls import gaussian_log_likelihood, gls_profile
from phylotrait.tools.optimization import (
    OptimizationResult,
    check_optimization_result,
    multistart_minimize,
)

# log(1e-5): by default the EB rate may decay to 1e-5 of its initial value
DEFAULT_RATE_CHANGE_LOWER_SCALE = float(np.log(1e-5))


def information_criteria(
    log_likelihood: float, k: int, n: int
) -> Dict[str, float]:
    """AIC and small-sample corrected AICc."""
    aic = 2 * k - 2 * log_likelihood
    aicc = aic + 2 * k * (k + 1) / (n - k - 1) if n - k - 1 > 0 else np.inf
    return {"aic": float(aic), "aicc": float(aicc)}


def shape_parameter_bounds(
    model: ContinuousModel,
    tree_height: float,
    alpha_upper_scale: float = 100.0,
    rate_change_lower_scale: float = DEFAULT_RATE_CHANGE_LOWER_SCALE,
) -> Optional[tuple]:
    """Search domain of a model's shape parameter.

    alpha lies in [0, alpha_upper_scale / T], the rate change r in
    [rate_change_lower_scale / T, 0] and lambda in [0, 1], where T is the
    height of the tree. BM has no shape parameter.
    """
    if model is ContinuousModel.BM:
        return None
    if model is ContinuousModel.OU:
        return (0.0, alpha_upper_scale / tree_height)
    if model is ContinuousModel.EB:
        return (rate_change_lower_scale / tree_height, 0.0)
    return (0.0, 1.0)


def starting_points(
    model: ContinuousModel, bounds: tuple, n_starts: int
) -> List[List[float]]:
    """Neutral value of the shape parameter followed by `n_starts` points
    spread over its search domain (geometrically for alpha)."""
    lower, upper = bounds
    starts = [model.neutral_value]
    if model is ContinuousModel.OU:
        starts += list(np.geomspace(upper / 1000, upper / 2, n_starts))
    else:
        starts += list(np.linspace(lower, upper, n_starts + 2)[1:-1])
    return [[float(s)] for s in starts]


class ContinuousModelFit:
    """Result of a continuous-model fit.

    Attributes:
        model: The fitted ContinuousModel.
        parameters: `sigma2`, `root_state` and, except for BM, the shape
            parameter (`alpha`, `rate_change` or `lambda`).
        log_likelihood: Maximized log-likelihood.
        k: Number of free parameters.
        n: Number of tips.
        aic: Akaike information criterion, 2k - 2 logL.
        aicc: Small-sample corrected AIC.
        converged: Whether the optimizer reported convergence.
        n_iterations: Optimizer iterations summed over starts.
        message: Optimizer message.
    """

    def __init__(
        self,
        model: ContinuousModel,
        parameters: Dict[str, float],
        log_likelihood: float,
        k: int,
        n: int,
        converged: bool = True,
        n_iterations: int = 0,
        message: str = "",
    ):
        self.model = model
        self.parameters = parameters
        self.log_likelihood = log_likelihood
        self.k = k
        self.n = n
        criteria = information_criteria(log_likelihood, k, n)
        self.aic = criteria["aic"]
        self.aicc = criteria["aicc"]
        self.converged = converged
        self.n_iterations = n_iterations
        self.message = message

    def __repr__(self) -> str:
        parameters = ", ".join(
            f"{key}={value:.4g}" for key, value in self.parameters.items()
        )
        return (
            f"ContinuousModelFit(model={self.model.value}, {parameters}, "
            f"logL={self.log_likelihood:.4f}, AIC={self.aic:.4f}, "
            f"converged={self.converged})"
        )

    def to_series(self) -> pd.Series:
        """Flattens the fit into a Series, one entry per statistic."""
        record = {
            "log_likelihood": self.log_likelihood,
            "k": self.k,
            "n": self.n,
            "aic": self.aic,
            "aicc": self.aicc,
            "converged": self.converged,
        }
        record.update(self.parameters)
        return pd.Series(record, name=self.model.value)


class ContinuousModelFitter:
    """Fits one continuous-trait model by maximum likelihood.

    Args:
        model: A ContinuousModel or its name ("BM", "OU", "EB", "lambda").
        optimizer: Optimizer following the contract of
            `phylotrait.tools.optimization`. Defaults to L-BFGS-B.
        n_starts: Starting points besides the neutral value of the shape
            parameter.
        max_iterations: Iteration budget of each optimizer run.
        alpha_upper_scale: Upper bound of alpha, in units of 1 / tree height.
        rate_change_lower_scale: Lower bound of the EB rate change, in units
            of 1 / tree height.
        stationary_root: Use the stationary-root OU covariance.
        strict: Raise OptimizationFailedError when the optimizer does not
            converge instead of returning a flagged result.
        cancel_event: When set, a running search stops and returns its best
            point so far, flagged as not converged.
    """

    def __init__(
        self,
        model: Union[str, ContinuousModel] = "BM",
        optimizer: Optional[Callable[..., OptimizationResult]] = None,
        n_starts: int = 3,
        max_iterations: int = 500,
        alpha_upper_scale: float = 100.0,
        rate_change_lower_scale: float = DEFAULT_RATE_CHANGE_LOWER_SCALE,
        stationary_root: bool = False,
        strict: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.model = ContinuousModel.parse(model)
        self.optimizer = optimizer
        self.n_starts = n_starts
        self.max_iterations = max_iterations
        self.alpha_upper_scale = alpha_upper_scale
        self.rate_change_lower_scale = rate_change_lower_scale
        self.stationary_root = stationary_root
        self.strict = strict
        self.cancel_event = cancel_event

    @classmethod
    def from_config(
        cls, parameters: Dict[str, Dict[str, Any]], model=None, **overrides
    ) -> "ContinuousModelFitter":
        """Builds a fitter from a parsed analysis configuration."""
        continuous = parameters["continuous"]
        optimizer = parameters["optimizer"]
        kwargs = {
            "model": model or continuous["models"][0],
            "n_starts": optimizer["n_starts"],
            "max_iterations": optimizer["max_iterations"],
            "strict": optimizer["strict"],
            "alpha_upper_scale": continuous["alpha_upper_scale"],
            "rate_change_lower_scale": float(
                np.log(continuous["eb_min_rate_ratio"])
            ),
            "stationary_root": continuous["stationary_root"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def _covariance_parameters(self, value: float) -> Dict[str, Any]:
        parameters = {self.model.shape_parameter: value}
        if self.model is ContinuousModel.OU and self.stationary_root:
            parameters["stationary_root"] = True
        return parameters

    @log_runtime
    def fit(self, matched: MatchedData, trait: str) -> ContinuousModelFit:
        """Fits the model to a trait.

        Args:
            matched: A MatchedData object.
            trait: Name of a continuous trait without missing values.

        Returns:
            A ContinuousModelFit.

        Raises:
            DegenerateInputError if there are fewer than three tips, the
                trait does not vary, the tree has zero height, or the BM
                covariance is singular.
            OptimizationFailedError if no trial parameter yields a finite
                likelihood, or `strict` is set and the search did not
                converge.
        """
        y = matched.continuous_vector(trait)
        n = len(y)
        if n < 3:
            raise DegenerateInputError(
                f"At least three tips are needed, got {n}.",
                component="ContinuousModelFitter",
            )
        if np.ptp(y) == 0:
            raise DegenerateInputError(
                f"Trait {trait} does not vary across tips.",
                component="ContinuousModelFitter",
                parameter=trait,
            )

        builder = CovarianceBuilder(matched.tree)
        if builder.tree_height <= 0:
            raise DegenerateInputError(
                "Tree has zero height.", component="ContinuousModelFitter"
            )
        design = np.ones((n, 1))

        if self.model is ContinuousModel.BM:
            profile = gls_profile(builder.brownian_motion(), design, y)
            fit = ContinuousModelFit(
                self.model,
                {
                    "sigma2": profile.sigma2,
                    "root_state": float(profile.coefficients[0]),
                },
                profile.log_likelihood,
                k=2,
                n=n,
            )
            logger.info(f"Fitted {fit}")
            return fit

        # a singular BM covariance (e.g. zero-length tip branches) is a
        # property of the data, not of the shape parameter
        gls_profile(builder.brownian_motion(), design, y)

        def negative_log_likelihood(x: np.ndarray) -> float:
            try:
                covariance = builder.build(
                    self.model, **self._covariance_parameters(x[0])
                )
                return -gls_profile(covariance, design, y).log_likelihood
            except (
                DegenerateInputError,
                InvalidParameterError,
                SingularDesignError,
            ):
                return np.inf

        bounds = shape_parameter_bounds(
            self.model,
            builder.tree_height,
            self.alpha_upper_scale,
            self.rate_change_lower_scale,
        )
        starts = starting_points(self.model, bounds, self.n_starts)
        if self.model is ContinuousModel.OU and self.stationary_root:
            # the stationary covariance is undefined at alpha = 0
            starts = starts[1:]
        result = multistart_minimize(
            negative_log_likelihood,
            starts,
            [bounds],
            optimizer=self.optimizer,
            max_iterations=self.max_iterations,
            cancel_event=self.cancel_event,
        )
        check_optimization_result(
            result,
            "ContinuousModelFitter",
            self.model.shape_parameter,
            self.strict,
        )

        value = float(result.x[0])
        profile = gls_profile(
            builder.build(self.model, **self._covariance_parameters(value)),
            design,
            y,
        )
        parameter = self.model.shape_parameter
        if value != self.model.neutral_value and np.any(
            np.isclose(value, bounds, rtol=1e-6, atol=1e-12)
        ):
            warnings.warn(
                f"Estimate of {parameter} ({value:.4g}) lies on the bound of "
                f"its search domain {bounds}.",
                ParameterEstimateWarning,
            )

        fit = ContinuousModelFit(
            self.model,
            {
                "sigma2": profile.sigma2,
                "root_state": float(profile.coefficients[0]),
                parameter: value,
            },
            profile.log_likelihood,
            k=3,
            n=n,
            converged=result.converged,
            n_iterations=result.n_iterations,
            message=result.message,
        )
        logger.info(f"Fitted {fit}")
        return fit


def continuous_log_likelihood(
    matched: MatchedData,
    trait: str,
    model: Union[str, ContinuousModel] = "BM",
    sigma2: Optional[float] = None,
    root_state: Optional[float] = None,
    **shape_parameters,
) -> float:
    """Log-likelihood of a trait at given model parameters.

    Args:
        matched: A MatchedData object.
        trait: Name of a continuous trait without missing values.
        model: A ContinuousModel or its name.
        sigma2: Evolutionary rate. Profiled out if None.
        root_state: Root state. Profiled out if None.
        **shape_parameters: Shape parameter of the model, e.g. `alpha=0.5`.

    Returns:
        The log-likelihood.
    """
    y = matched.continuous_vector(trait)
    covariance = CovarianceBuilder(matched.tree).build(
        model, **shape_parameters
    )
    if sigma2 is None or root_state is None:
        profile = gls_profile(covariance, np.ones((len(y), 1)), y)
        sigma2 = profile.sigma2 if sigma2 is None else sigma2
        root_state = (
            float(profile.coefficients[0]) if root_state is None else root_state
        )
    return gaussian_log_likelihood(
        sigma2 * covariance, np.full(len(y), root_state), y
    )


def _fit_single(
    model: str, matched: MatchedData, trait: str, kwargs: Dict[str, Any]
) -> ContinuousModelFit:
    return ContinuousModelFitter(model, **kwargs).fit(matched, trait)


@log_kwargs
def fit_continuous_models(
    matched: MatchedData,
    trait: str,
    models: Iterable[Union[str, ContinuousModel]] = ("BM", "OU", "EB"),
    threads: int = 1,
    **fitter_kwargs,
) -> pd.DataFrame:
    """Fits several models to one trait and compares them by AIC.

    Args:
        matched: A MatchedData object.
        trait: Name of a continuous trait without missing values.
        models: Models to fit.
        threads: Number of processes. With more than one, the fits run in a
            multiprocessing Pool and every argument must be picklable.
        **fitter_kwargs: Passed on to every ContinuousModelFitter.

    Returns:
        A DataFrame indexed by model name with log-likelihood, k, AIC, AICc,
        delta AIC, Akaike weight, convergence flag and the fitted parameters,
        sorted by AIC.
    """
    models = [ContinuousModel.parse(m).value for m in models]
    if threads > 1:
        with multiprocessing.Pool(processes=threads) as pool:
            fits = pool.starmap(
                _fit_single,
                [(m, matched, trait, fitter_kwargs) for m in models],
            )
    else:
        fits = [_fit_single(m, matched, trait, fitter_kwargs) for m in models]

    table = pd.DataFrame([fit.to_series() for fit in fits]).infer_objects()
    table.index.name = "model"
    table["delta_aic"] = table["aic"] - table["aic"].min()
    relative = np.exp(-0.5 * table["delta_aic"])
    table["aic_weight"] = relative / relative.sum()
    return table.sort_values("aic")
