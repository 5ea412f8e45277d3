"""
Tests for the optimizer contract in phylotrait.tools.optimization.
"""
import threading
import unittest

import numpy as np

from phylotrait.mixins import (
    ConvergenceWarning,
    InvalidParameterError,
    OptimizationFailedError,
)
from phylotrait.tools.optimization import (
    OptimizationResult,
    bounded_scalar_optimizer,
    check_optimization_result,
    multistart_minimize,
    scipy_optimizer,
)


def quadratic(x):
    return float((x[0] - 1.5) ** 2 + 2.0)


def double_well(x):
    # local minimum near -1, global minimum near 2
    return float((x[0] + 1) ** 2 * (x[0] - 2) ** 2 - 0.5 * x[0])


class TestOptimization(unittest.TestCase):
    def test_scipy_optimizer(self):

        result = scipy_optimizer(quadratic, [0.0], [(-5.0, 5.0)])

        self.assertIsInstance(result, OptimizationResult)
        self.assertTrue(result.converged)
        self.assertAlmostEqual(result.x[0], 1.5, places=4)
        self.assertAlmostEqual(result.fun, 2.0, places=6)
        self.assertGreater(result.n_evaluations, 0)

    def test_start_is_clipped_into_bounds(self):

        result = scipy_optimizer(quadratic, [10.0], [(-1.0, 1.0)])
        self.assertAlmostEqual(result.x[0], 1.0, places=6)

    def test_bounded_scalar_optimizer(self):

        result = bounded_scalar_optimizer(quadratic, [0.0], [(-5.0, 5.0)])
        self.assertTrue(result.converged)
        self.assertAlmostEqual(result.x[0], 1.5, places=4)

        with self.assertRaises(InvalidParameterError) as context:
            bounded_scalar_optimizer(
                lambda x: 0.0, [0.0, 0.0], [(0, 1), (0, 1)]
            )
        self.assertEqual(context.exception.parameter, "bounds")

    def test_non_finite_values_are_penalized(self):

        def objective(x):
            return np.inf if x[0] < 0 else quadratic(x)

        result = scipy_optimizer(objective, [0.5], [(-5.0, 5.0)])
        self.assertTrue(np.isfinite(result.fun))
        self.assertGreaterEqual(result.x[0], 0.0)

    def test_multistart_keeps_best(self):

        result = multistart_minimize(
            double_well, [[-1.5], [2.5]], [(-3.0, 3.0)]
        )
        self.assertGreater(result.x[0], 1.5)

        single = scipy_optimizer(double_well, [-1.5], [(-3.0, 3.0)])
        self.assertLessEqual(result.fun, single.fun)
        self.assertGreater(result.n_evaluations, single.n_evaluations)

    def test_custom_optimizer(self):

        calls = []

        def grid_optimizer(
            objective, x0, bounds, max_iterations=500, cancel_event=None
        ):
            calls.append(x0)
            grid = np.linspace(bounds[0][0], bounds[0][1], 301)
            values = [objective(np.array([g])) for g in grid]
            best = int(np.argmin(values))
            return OptimizationResult(
                np.array([grid[best]]), values[best], True, 1, len(grid), ""
            )

        result = multistart_minimize(
            quadratic, [[0.0], [1.0]], [(0.0, 3.0)], optimizer=grid_optimizer
        )
        self.assertEqual(len(calls), 2)
        self.assertAlmostEqual(result.x[0], 1.5)
        self.assertEqual(result.n_iterations, 2)

    def test_cancellation_returns_best_so_far(self):

        event = threading.Event()
        evaluations = []

        def objective(x):
            evaluations.append(x[0])
            if len(evaluations) == 3:
                event.set()
            return quadratic(x)

        result = multistart_minimize(
            objective, [[0.0], [4.0]], [(-5.0, 5.0)], cancel_event=event
        )

        self.assertFalse(result.converged)
        self.assertEqual(result.message, "Cancelled")
        self.assertTrue(np.isfinite(result.fun))
        self.assertEqual(len(evaluations), 3)

    def test_cancelled_before_start(self):

        event = threading.Event()
        event.set()
        result = multistart_minimize(
            quadratic, [[0.0]], [(-5.0, 5.0)], cancel_event=event
        )
        self.assertFalse(result.converged)
        self.assertEqual(result.n_evaluations, 0)

        with self.assertRaises(OptimizationFailedError):
            check_optimization_result(result, "Test")

    def test_check_optimization_result(self):

        converged = OptimizationResult(np.array([1.0]), 1.0, True, 3, 9, "")
        check_optimization_result(converged, "Test")

        stalled = converged._replace(converged=False, message="max iter")
        with self.assertWarns(ConvergenceWarning):
            check_optimization_result(stalled, "Test")
        with self.assertRaises(OptimizationFailedError):
            check_optimization_result(stalled, "Test", strict=True)

        empty = converged._replace(fun=np.inf)
        with self.assertRaises(OptimizationFailedError):
            check_optimization_result(empty, "Test", "alpha")


if __name__ == "__main__":
    unittest.main()
