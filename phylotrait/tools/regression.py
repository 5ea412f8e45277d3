"""
Phylogenetic generalized least squares (PGLS).

The response is regressed on one or more traits with residuals distributed
as N(0, sigma2 * V), V being the tip covariance of an evolutionary model.
When the model has a shape parameter (Pagel's lambda, OU alpha or EB rate
change) that is not fixed by the caller, it is estimated by maximizing the
profile log-likelihood of the regression. Ordinary least squares (V = I) is
available as a non-phylogenetic baseline.
"""
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import scipy.stats

from phylotrait.data import MatchedData, TraitTable
from phylotrait.data.TraitTable import CONTINUOUS
from phylotrait.mixins import (
    DegenerateInputError,
    InvalidParameterError,
    MissingTraitDataError,
    SingularDesignError,
    log_runtime,
    logger,
)
from phylotrait.tools.continuous_models import (
    DEFAULT_RATE_CHANGE_LOWER_SCALE,
    information_criteria,
    shape_parameter_bounds,
    starting_points,
)
from phylotrait.tools.covariance import ContinuousModel, CovarianceBuilder
from phylotrait.tools.gls import (
    GLSFit,
    check_design,
    gls_profile,
    whitened_sum_of_squares,
)
from phylotrait.tools.optimization import (
    OptimizationResult,
    check_optimization_result,
    multistart_minimize,
)

OLS = "OLS"
INTERCEPT = "(Intercept)"


class DesignEncoding:
    """How predictor traits are turned into design-matrix columns.

    Continuous traits enter as they are. Discrete traits are dummy-encoded
    against their first (sorted) level.

    Args:
        predictors: Predictor trait names, in order.
        levels: For each discrete predictor, its sorted levels.
        intercept: Whether the design has an intercept column.
    """

    def __init__(
        self,
        predictors: List[str],
        levels: Dict[str, List[Any]],
        intercept: bool = True,
    ):
        self.predictors = predictors
        self.levels = levels
        self.intercept = intercept

    @classmethod
    def from_table(
        cls, table: TraitTable, predictors: List[str], intercept: bool = True
    ) -> "DesignEncoding":
        levels = {
            p: table.states(p)
            for p in predictors
            if table.kind(p) != CONTINUOUS
        }
        return cls(predictors, levels, intercept)

    def encode(self, frame: pd.DataFrame) -> pd.DataFrame:
        """Builds the design matrix of a frame holding the predictors.

        Raises:
            MissingTraitDataError if a predictor value is missing.
            InvalidParameterError if a discrete value is an unknown level.
            SingularDesignError if a discrete predictor has fewer than two
                levels.
        """
        columns = []
        if self.intercept:
            columns.append(pd.Series(1.0, index=frame.index, name=INTERCEPT))
        for predictor in self.predictors:
            values = frame[predictor]
            if values.isna().any():
                raise MissingTraitDataError(
                    f"Predictor {predictor} has missing values; drop them "
                    "before fitting.",
                    component="PhylogeneticRegression",
                    parameter=predictor,
                )
            if predictor not in self.levels:
                columns.append(values.astype(float).rename(predictor))
                continue
            if len(self.levels[predictor]) < 2:
                raise SingularDesignError(
                    f"Discrete predictor {predictor} has fewer than two "
                    "observed levels.",
                    component="PhylogeneticRegression",
                    parameter=predictor,
                )
            categorical = pd.Categorical(
                values, categories=self.levels[predictor]
            )
            if pd.isna(categorical).any():
                raise InvalidParameterError(
                    f"Predictor {predictor} has levels outside of "
                    f"{self.levels[predictor]}.",
                    component="PhylogeneticRegression",
                    parameter=predictor,
                )
            dummies = pd.get_dummies(
                pd.Series(categorical, index=frame.index),
                prefix=predictor,
                drop_first=True,
                dtype=float,
            )
            columns.extend(dummies[c] for c in dummies.columns)
        if not columns:
            raise SingularDesignError(
                "Design matrix has no columns.",
                component="PhylogeneticRegression",
            )
        return pd.concat(columns, axis=1)


class RegressionResult:
    """Result of a phylogenetic regression.

    Attributes:
        model: "OLS" or the name of the covariance model.
        coefficients: DataFrame indexed by design column with `estimate`,
            `std_error`, `t_value` and `p_value`.
        parameter: The shape parameter as {name: value}, empty for BM and
            OLS.
        parameter_estimated: Whether the shape parameter was optimized.
        sigma2: Residual variance, residual sum of squares over the
            residual degrees of freedom.
        log_likelihood: Maximized log-likelihood.
        k: Number of free parameters (coefficients, sigma2 and an estimated
            shape parameter).
        aic: Akaike information criterion.
        r_squared: Generalized R^2 against the intercept-only model with
            the same covariance.
        adjusted_r_squared: R^2 adjusted for the number of coefficients.
        df_residual: Residual degrees of freedom.
        fitted_values: Fitted values in tip order.
        residuals: Raw residuals in tip order.
        converged: Whether the shape-parameter search converged.
    """

    def __init__(
        self,
        model: str,
        encoding: DesignEncoding,
        profile: GLSFit,
        design: pd.DataFrame,
        null_residual_ss: float,
        parameter: Dict[str, float],
        parameter_estimated: bool,
        converged: bool = True,
    ):
        n, p = design.shape
        self.model = model
        self.encoding = encoding
        self.parameter = parameter
        self.parameter_estimated = parameter_estimated
        self.converged = converged
        self.df_residual = n - p
        self.log_likelihood = profile.log_likelihood
        self.k = p + 1 + int(parameter_estimated)
        self.aic = information_criteria(self.log_likelihood, self.k, n)["aic"]
        self.sigma2 = profile.residual_ss / self.df_residual

        std_error = np.sqrt(np.diag(profile.cov_unscaled) * self.sigma2)
        t_value = profile.coefficients / std_error
        self.coefficients = pd.DataFrame(
            {
                "estimate": profile.coefficients,
                "std_error": std_error,
                "t_value": t_value,
                "p_value": 2
                * scipy.stats.t.sf(np.abs(t_value), self.df_residual),
            },
            index=design.columns,
        )

        self.r_squared = 1 - profile.residual_ss / null_residual_ss
        intercept_df = 1 if encoding.intercept else 0
        self.adjusted_r_squared = 1 - (1 - self.r_squared) * (
            n - intercept_df
        ) / self.df_residual
        self.fitted_values = pd.Series(profile.fitted, index=design.index)
        self.residuals = pd.Series(profile.residuals, index=design.index)

    def __repr__(self) -> str:
        parameter = "".join(
            f", {k}={v:.4g}" for k, v in self.parameter.items()
        )
        return (
            f"RegressionResult(model={self.model}{parameter}, "
            f"logL={self.log_likelihood:.4f}, AIC={self.aic:.4f}, "
            f"R2={self.r_squared:.4f})"
        )

    def predict(
        self, new_x: Union[pd.DataFrame, Dict[str, Any]]
    ) -> pd.Series:
        """Predicts the response for new predictor values.

        Args:
            new_x: A DataFrame (or dictionary of columns) with one column per
                predictor.

        Returns:
            The predicted values, indexed like `new_x`.
        """
        frame = pd.DataFrame(new_x)
        design = self.encoding.encode(frame)
        design = design.reindex(
            columns=self.coefficients.index, fill_value=0.0
        )
        return design @ self.coefficients["estimate"]


class PhylogeneticRegression:
    """Generalized least squares regression under a phylogenetic covariance.

    Args:
        model: "BM", "OU", "EB", "lambda", or "OLS" for ordinary least
            squares.
        parameter: Value of the shape parameter (lambda, alpha or rate
            change). Estimated by maximum likelihood if None; ignored for BM
            and OLS.
        intercept: Include an intercept column.
        optimizer: Optimizer following the contract of
            `phylotrait.tools.optimization`. Defaults to L-BFGS-B.
        n_starts: Starting points besides the neutral value.
        max_iterations: Iteration budget of each optimizer run.
        alpha_upper_scale: Upper bound of alpha, in units of 1 / tree height.
        rate_change_lower_scale: Lower bound of the EB rate change, in units
            of 1 / tree height.
        strict: Raise OptimizationFailedError when the search does not
            converge.
        cancel_event: When set, a running search stops and returns its best
            point so far, flagged as not converged.
    """

    def __init__(
        self,
        model: Union[str, ContinuousModel] = "lambda",
        parameter: Optional[float] = None,
        intercept: bool = True,
        optimizer: Optional[Callable[..., OptimizationResult]] = None,
        n_starts: int = 3,
        max_iterations: int = 500,
        alpha_upper_scale: float = 100.0,
        rate_change_lower_scale: float = DEFAULT_RATE_CHANGE_LOWER_SCALE,
        strict: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ):
        if isinstance(model, str) and model.upper() == OLS:
            self.model = None
        else:
            self.model = ContinuousModel.parse(model)
        self.parameter = parameter
        self.intercept = intercept
        self.optimizer = optimizer
        self.n_starts = n_starts
        self.max_iterations = max_iterations
        self.alpha_upper_scale = alpha_upper_scale
        self.rate_change_lower_scale = rate_change_lower_scale
        self.strict = strict
        self.cancel_event = cancel_event

    @classmethod
    def from_config(
        cls, parameters: Dict[str, Dict[str, Any]], **overrides
    ) -> "PhylogeneticRegression":
        """Builds a regression from a parsed analysis configuration."""
        regression = parameters["regression"]
        optimizer = parameters["optimizer"]
        kwargs = {
            "model": regression["model"],
            "parameter": regression["parameter"],
            "intercept": regression["intercept"],
            "n_starts": optimizer["n_starts"],
            "max_iterations": optimizer["max_iterations"],
            "strict": optimizer["strict"],
            "alpha_upper_scale": parameters["continuous"]["alpha_upper_scale"],
            "rate_change_lower_scale": float(
                np.log(parameters["continuous"]["eb_min_rate_ratio"])
            ),
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    @property
    def model_name(self) -> str:
        return OLS if self.model is None else self.model.value

    def __design(
        self, matched: MatchedData, response: str, predictors: List[str]
    ) -> Tuple[np.ndarray, pd.DataFrame, DesignEncoding]:
        y = matched.continuous_vector(response)
        encoding = DesignEncoding.from_table(
            matched.traits, predictors, self.intercept
        )
        frame = matched.traits.select(predictors).to_frame()
        design = encoding.encode(frame)
        check_design(design.values)
        if design.shape[0] <= design.shape[1]:
            raise SingularDesignError(
                f"Design matrix with {design.shape[1]} columns on "
                f"{design.shape[0]} taxa leaves no residual degrees of "
                "freedom.",
                component="PhylogeneticRegression",
            )
        return y, design, encoding

    @log_runtime
    def fit(
        self,
        matched: MatchedData,
        response: str,
        predictors: Union[str, Sequence[str]],
    ) -> RegressionResult:
        """Fits the regression.

        Args:
            matched: A MatchedData object.
            response: Name of a continuous response trait.
            predictors: Names of the predictor traits. Discrete predictors
                are dummy-encoded.

        Returns:
            A RegressionResult.

        Raises:
            MissingTraitDataError if a used trait has missing values.
            SingularDesignError if the design matrix is rank-deficient or
                leaves no residual degrees of freedom.
            DegenerateInputError if the covariance is singular or the
                residual variance is zero.
            OptimizationFailedError if the shape-parameter search finds no
                finite likelihood.
        """
        predictors = [predictors] if isinstance(predictors, str) else list(
            predictors
        )
        y, design, encoding = self.__design(matched, response, predictors)
        x = design.values
        n = len(y)

        if self.model is None:
            covariance = np.eye(n)
            parameter, estimated, converged = {}, False, True
        else:
            builder = CovarianceBuilder(matched.tree)
            covariance, parameter, estimated, converged = self.__covariance(
                builder, x, y
            )

        profile = gls_profile(covariance, x, y)
        if self.intercept:
            null_residual_ss = gls_profile(
                covariance, np.ones((n, 1)), y
            ).residual_ss
        else:
            null_residual_ss = whitened_sum_of_squares(covariance, y)

        result = RegressionResult(
            self.model_name,
            encoding,
            profile,
            design,
            null_residual_ss,
            parameter,
            estimated,
            converged,
        )
        logger.info(f"Fitted {result}")
        return result

    def __covariance(
        self, builder: CovarianceBuilder, x: np.ndarray, y: np.ndarray
    ) -> Tuple[np.ndarray, Dict[str, float], bool, bool]:
        name = self.model.shape_parameter
        if name is None:
            return builder.brownian_motion(), {}, False, True
        if self.parameter is not None:
            return (
                builder.build(self.model, **{name: self.parameter}),
                {name: float(self.parameter)},
                False,
                True,
            )

        if builder.tree_height <= 0:
            raise DegenerateInputError(
                "Tree has zero height.", component="PhylogeneticRegression"
            )

        def negative_log_likelihood(theta: np.ndarray) -> float:
            try:
                covariance = builder.build(self.model, **{name: theta[0]})
                return -gls_profile(covariance, x, y).log_likelihood
            except (DegenerateInputError, SingularDesignError):
                return np.inf

        bounds = shape_parameter_bounds(
            self.model,
            builder.tree_height,
            self.alpha_upper_scale,
            self.rate_change_lower_scale,
        )
        result = multistart_minimize(
            negative_log_likelihood,
            starting_points(self.model, bounds, self.n_starts),
            [bounds],
            optimizer=self.optimizer,
            max_iterations=self.max_iterations,
            cancel_event=self.cancel_event,
        )
        check_optimization_result(
            result, "PhylogeneticRegression", name, self.strict
        )
        value = float(result.x[0])
        return (
            builder.build(self.model, **{name: value}),
            {name: value},
            True,
            result.converged,
        )
