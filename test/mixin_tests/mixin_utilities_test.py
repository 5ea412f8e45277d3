"""
This file tests the utilities, errors and logging helpers stored in
phylotrait/mixins.
"""

import logging
import unittest

import numpy as np

from phylotrait.mixins import (
    InvalidParameterError,
    MalformedTreeError,
    PhyloTraitError,
    is_missing,
    log_kwargs,
    log_runtime,
    spawn_generators,
)


class TestMixinUtilities(unittest.TestCase):
    def test_is_missing(self):
        self.assertTrue(is_missing(None))
        self.assertTrue(is_missing(np.nan))
        self.assertTrue(is_missing(float("nan")))
        self.assertFalse(is_missing(0))
        self.assertFalse(is_missing(0.0))
        self.assertFalse(is_missing("a"))
        self.assertFalse(is_missing(False))
        self.assertFalse(is_missing((1, 2)))

    def test_spawn_generators(self):
        first = [g.random() for g in spawn_generators(1, 4)]
        second = [g.random() for g in spawn_generators(1, 4)]

        self.assertEqual(first, second)
        self.assertEqual(len(set(first)), 4)

        sequence = np.random.SeedSequence(1)
        third = [g.random() for g in spawn_generators(sequence, 4)]
        self.assertEqual(first, third)

        self.assertEqual(spawn_generators(None, 0), [])

    def test_errors(self):
        error = InvalidParameterError(
            "alpha must be non-negative.",
            component="CovarianceBuilder",
            parameter="alpha",
        )
        self.assertIsInstance(error, PhyloTraitError)
        self.assertEqual(
            str(error), "[CovarianceBuilder] alpha must be non-negative."
        )
        self.assertEqual(error.component, "CovarianceBuilder")
        self.assertEqual(error.parameter, "alpha")

        error = MalformedTreeError("Tree is empty.")
        self.assertEqual(str(error), "Tree is empty.")
        self.assertIsNone(error.component)
        self.assertIsNone(error.parameter)

    def test_log_decorators(self):
        @log_runtime
        def add(a, b=1):
            return a + b

        @log_kwargs
        def multiply(a, b=1):
            return a * b

        with self.assertLogs("phylotrait", level="DEBUG") as logs:
            self.assertEqual(add(1, b=2), 3)
            self.assertEqual(multiply(2, b=3), 6)

        self.assertIn("Starting", logs.output[0])
        self.assertIn("add", logs.output[0])
        self.assertIn("Finished", logs.output[1])
        self.assertIn("{'b': 3}", logs.output[2])
        self.assertEqual(add.__name__, "add")

    def test_log_runtime_on_error(self):
        @log_runtime
        def fail():
            raise ValueError("failure")

        with self.assertLogs("phylotrait", level=logging.INFO) as logs:
            with self.assertRaises(ValueError):
                fail()
        self.assertIn("Finished", logs.output[-1])


if __name__ == "__main__":
    unittest.main()
