"""
The numerical-optimizer contract used by every likelihood search.

An optimizer is any callable with the signature

    optimizer(objective, x0, bounds, max_iterations=..., cancel_event=...)
        -> OptimizationResult

that minimizes `objective` (a function from a parameter vector to a float)
within `bounds`. Model code never calls scipy directly; it receives an
optimizer, so that any other numerical library can be substituted.
"""
import threading
import warnings
from typing import Callable, List, NamedTuple, Optional, Sequence, Tuple

import numpy as np
import scipy.optimize

from phylotrait.mixins import (
    ConvergenceWarning,
    InvalidParameterError,
    OptimizationFailedError,
    logger,
)

Bounds = Sequence[Tuple[float, float]]
Objective = Callable[[np.ndarray], float]

# objective value handed to the optimizer in place of non-finite values
PENALTY = 1e300


class OptimizationResult(NamedTuple):
    """Outcome of a minimization.

    `x` and `fun` are the best point evaluated and its objective value,
    which may come from an intermediate evaluation if the search was
    cancelled or wandered off. `fun` is infinite if no evaluation produced a
    finite value.
    """

    x: np.ndarray
    fun: float
    converged: bool
    n_iterations: int
    n_evaluations: int
    message: str


class _OptimizationCancelled(Exception):
    pass


class _TrackedObjective:
    """Wraps an objective to remember the best point evaluated so far."""

    def __init__(
        self,
        objective: Objective,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.objective = objective
        self.cancel_event = cancel_event
        self.best_x = None
        self.best_fun = np.inf
        self.n_evaluations = 0

    def __call__(self, x: np.ndarray) -> float:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise _OptimizationCancelled()

        value = float(self.objective(np.asarray(x, dtype=float)))
        self.n_evaluations += 1

        if not np.isfinite(value):
            return PENALTY
        if value < self.best_fun:
            self.best_fun = value
            self.best_x = np.array(x, dtype=float)
        return value


def _clip(x0: Sequence[float], bounds: Bounds) -> np.ndarray:
    lower = np.array([b[0] for b in bounds], dtype=float)
    upper = np.array([b[1] for b in bounds], dtype=float)
    return np.clip(np.asarray(x0, dtype=float), lower, upper)


def scipy_optimizer(
    objective: Objective,
    x0: Sequence[float],
    bounds: Bounds,
    max_iterations: int = 500,
    cancel_event: Optional[threading.Event] = None,
    tolerance: float = 1e-10,
) -> OptimizationResult:
    """Bounded quasi-Newton minimization (L-BFGS-B).

    Args:
        objective: Function to minimize.
        x0: Starting point, clipped into the bounds.
        bounds: (lower, upper) pair for every parameter.
        max_iterations: Iteration budget.
        cancel_event: When set, the search stops after the current objective
            evaluation and the best point so far is returned, flagged as not
            converged.
        tolerance: Relative tolerance on the objective.

    Returns:
        An OptimizationResult.
    """
    tracked = _TrackedObjective(objective, cancel_event)
    x0 = _clip(x0, bounds)
    try:
        result = scipy.optimize.minimize(
            tracked,
            x0,
            method="L-BFGS-B",
            bounds=bounds,
            options={"maxiter": max_iterations, "ftol": tolerance},
        )
    except _OptimizationCancelled:
        logger.debug("Optimization cancelled; returning best point so far.")
        return OptimizationResult(
            tracked.best_x if tracked.best_x is not None else x0,
            tracked.best_fun,
            False,
            0,
            tracked.n_evaluations,
            "Cancelled",
        )

    return OptimizationResult(
        tracked.best_x if tracked.best_x is not None else np.asarray(result.x),
        tracked.best_fun,
        bool(result.success) and np.isfinite(tracked.best_fun),
        int(result.nit),
        tracked.n_evaluations,
        str(result.message),
    )


def bounded_scalar_optimizer(
    objective: Objective,
    x0: Sequence[float],
    bounds: Bounds,
    max_iterations: int = 500,
    cancel_event: Optional[threading.Event] = None,
    tolerance: float = 1e-10,
) -> OptimizationResult:
    """Derivative-free minimization of a one-parameter objective (Brent).

    The starting point is evaluated but otherwise ignored by Brent's method.
    Same contract as :func:`scipy_optimizer`.
    """
    if len(bounds) != 1:
        raise InvalidParameterError(
            "bounded_scalar_optimizer handles one parameter.",
            component="bounded_scalar_optimizer",
            parameter="bounds",
        )
    tracked = _TrackedObjective(objective, cancel_event)
    lower, upper = bounds[0]
    try:
        tracked(_clip(x0, bounds))
        result = scipy.optimize.minimize_scalar(
            lambda x: tracked(np.array([x])),
            bounds=(lower, upper),
            method="bounded",
            options={"maxiter": max_iterations, "xatol": tolerance},
        )
    except _OptimizationCancelled:
        return OptimizationResult(
            tracked.best_x if tracked.best_x is not None else _clip(x0, bounds),
            tracked.best_fun,
            False,
            0,
            tracked.n_evaluations,
            "Cancelled",
        )

    return OptimizationResult(
        tracked.best_x if tracked.best_x is not None else np.array([result.x]),
        tracked.best_fun,
        bool(result.success) and np.isfinite(tracked.best_fun),
        int(result.nit),
        tracked.n_evaluations,
        str(result.message),
    )


def multistart_minimize(
    objective: Objective,
    starts: List[Sequence[float]],
    bounds: Bounds,
    optimizer: Optional[Callable[..., OptimizationResult]] = None,
    max_iterations: int = 500,
    cancel_event: Optional[threading.Event] = None,
) -> OptimizationResult:
    """Runs an optimizer from several starting points and keeps the best.

    Args:
        objective: Function to minimize.
        starts: Starting points.
        bounds: (lower, upper) pair for every parameter.
        optimizer: Optimizer following the contract of this module. Defaults
            to :func:`scipy_optimizer`.
        max_iterations: Iteration budget of each run.
        cancel_event: Cancellation flag shared by all runs.

    Returns:
        The OptimizationResult with the lowest objective value. Its
        `n_evaluations` and `n_iterations` are summed over all runs.
    """
    optimizer = optimizer or scipy_optimizer

    best = None
    n_iterations = 0
    n_evaluations = 0
    for x0 in starts:
        if cancel_event is not None and cancel_event.is_set():
            break
        result = optimizer(
            objective,
            x0,
            bounds,
            max_iterations=max_iterations,
            cancel_event=cancel_event,
        )
        n_iterations += result.n_iterations
        n_evaluations += result.n_evaluations
        logger.debug(
            f"Start {np.round(x0, 6)} -> {np.round(result.x, 6)} "
            f"(objective {result.fun:.6g}, converged={result.converged})"
        )
        if best is None or result.fun < best.fun:
            best = result

    if best is None:
        x0 = _clip(starts[0], bounds)
        return OptimizationResult(x0, np.inf, False, 0, 0, "Cancelled")

    return best._replace(n_iterations=n_iterations, n_evaluations=n_evaluations)


def check_optimization_result(
    result: OptimizationResult,
    component: str,
    parameter: Optional[str] = None,
    strict: bool = False,
) -> None:
    """Applies the non-convergence policy to an optimization result.

    A search that never evaluated a finite objective is a hard failure. A
    search that stopped without converging is reported with a
    ConvergenceWarning, or raised as a failure when `strict` is set.

    Raises:
        OptimizationFailedError as described above.
    """
    if not np.isfinite(result.fun):
        raise OptimizationFailedError(
            "No finite likelihood was found in the search domain.",
            component=component,
            parameter=parameter,
        )
    if not result.converged:
        if strict:
            raise OptimizationFailedError(
                f"Optimizer did not converge: {result.message}",
                component=component,
                parameter=parameter,
            )
        logger.warning(f"{component} did not converge: {result.message}")
        warnings.warn(
            f"{component} did not converge ({result.message}); returning "
            "the best parameters found.",
            ConvergenceWarning,
        )
