"""
Generalized least squares under a known tip covariance.

Both the continuous-model fitter (intercept-only design) and the
phylogenetic regression engine (arbitrary design) profile the rate sigma2
and the mean coefficients out of the multivariate-normal likelihood
analytically. The covariance is whitened through its Cholesky factor; it is
never inverted explicitly.
"""
from typing import NamedTuple

import numpy as np
import scipy.linalg

from phylotrait.mixins import DegenerateInputError, SingularDesignError

# smallest allowed ratio between the smallest and largest Cholesky pivots
PIVOT_TOLERANCE = 1e-10


class GLSFit(NamedTuple):
    """Profiled GLS solution.

    `sigma2` is the maximum-likelihood rate (residual sum of squares over n)
    and `cov_unscaled` is (X^T V^-1 X)^-1, to be multiplied by a residual
    variance to obtain the coefficient covariance.
    """

    coefficients: np.ndarray
    sigma2: float
    log_likelihood: float
    residual_ss: float
    log_det: float
    fitted: np.ndarray
    residuals: np.ndarray
    cov_unscaled: np.ndarray


def cholesky_factor(covariance: np.ndarray) -> np.ndarray:
    """Lower Cholesky factor of a covariance matrix.

    Raises:
        DegenerateInputError if the matrix is not numerically positive
            definite.
    """
    try:
        factor = scipy.linalg.cholesky(covariance, lower=True)
    except (np.linalg.LinAlgError, ValueError):
        raise DegenerateInputError(
            "Covariance matrix is singular or not positive definite.",
            component="GLS",
        )
    pivots = np.diag(factor)
    if pivots.min() <= PIVOT_TOLERANCE * pivots.max():
        raise DegenerateInputError(
            "Covariance matrix is numerically singular.", component="GLS"
        )
    return factor


def check_design(design: np.ndarray) -> None:
    """Raises SingularDesignError if the design matrix is rank-deficient."""
    if design.shape[0] < design.shape[1] or (
        np.linalg.matrix_rank(design) < design.shape[1]
    ):
        raise SingularDesignError(
            f"Design matrix with {design.shape[1]} columns has rank "
            f"{np.linalg.matrix_rank(design)}.",
            component="GLS",
            parameter="X",
        )


def gls_profile(
    covariance: np.ndarray, design: np.ndarray, response: np.ndarray
) -> GLSFit:
    """Fits y = X beta + e, e ~ N(0, sigma2 V), by maximum likelihood.

    Args:
        covariance: V, n x n.
        design: X, n x p with full column rank.
        response: y, length n.

    Returns:
        A GLSFit.

    Raises:
        DegenerateInputError if V is singular or the residual variance is
            zero.
        SingularDesignError if the whitened design is rank-deficient.
    """
    n = len(response)
    factor = cholesky_factor(covariance)
    whitened_x = scipy.linalg.solve_triangular(factor, design, lower=True)
    whitened_y = scipy.linalg.solve_triangular(factor, response, lower=True)

    q, r = np.linalg.qr(whitened_x)
    r_diagonal = np.abs(np.diag(r))
    if r_diagonal.min() <= PIVOT_TOLERANCE * max(r_diagonal.max(), 1.0):
        raise SingularDesignError(
            "Whitened design matrix is rank-deficient.",
            component="GLS",
            parameter="X",
        )
    coefficients = scipy.linalg.solve_triangular(r, q.T @ whitened_y)

    whitened_residuals = whitened_y - whitened_x @ coefficients
    residual_ss = float(whitened_residuals @ whitened_residuals)
    sigma2 = residual_ss / n
    if sigma2 <= 0 or not np.isfinite(sigma2):
        raise DegenerateInputError(
            "Residual variance is zero; the data are fitted exactly.",
            component="GLS",
            parameter="sigma2",
        )

    log_det = 2 * float(np.log(np.diag(factor)).sum())
    log_likelihood = -0.5 * (n * np.log(2 * np.pi * sigma2) + n + log_det)

    r_inverse = scipy.linalg.solve_triangular(r, np.eye(r.shape[0]))
    fitted = design @ coefficients
    return GLSFit(
        coefficients=coefficients,
        sigma2=sigma2,
        log_likelihood=float(log_likelihood),
        residual_ss=residual_ss,
        log_det=log_det,
        fitted=fitted,
        residuals=response - fitted,
        cov_unscaled=r_inverse @ r_inverse.T,
    )


def gaussian_log_likelihood(
    covariance: np.ndarray, mean: np.ndarray, response: np.ndarray
) -> float:
    """Multivariate-normal log-density of `response` at fixed parameters."""
    n = len(response)
    factor = cholesky_factor(covariance)
    z = scipy.linalg.solve_triangular(factor, response - mean, lower=True)
    log_det = 2 * float(np.log(np.diag(factor)).sum())
    return float(-0.5 * (n * np.log(2 * np.pi) + log_det + z @ z))


def whitened_sum_of_squares(
    covariance: np.ndarray, response: np.ndarray
) -> float:
    """y^T V^-1 y, the residual sum of squares of an empty design."""
    factor = cholesky_factor(covariance)
    z = scipy.linalg.solve_triangular(factor, response, lower=True)
    return float(z @ z)
