"""
Tests for the tip covariance matrices in phylotrait.tools.covariance.
"""
import unittest

import numpy as np

from phylotrait.data import PhyloTree
from phylotrait.mixins import InvalidParameterError
from phylotrait.simulator import YuleSimulator
from phylotrait.tools.covariance import (
    ContinuousModel,
    CovarianceBuilder,
    compute_covariance_matrix,
    shared_path_matrix,
)


class TestCovarianceBuilder(unittest.TestCase):
    def setUp(self):

        self.tree = PhyloTree("((a:1,b:1)n1:1,c:2)r;")
        self.builder = CovarianceBuilder(self.tree)

        self.uneven_tree = PhyloTree(
            "((a:0.5,b:2)n1:1,(c:1,d:0.2,e:3)n2:0.5)r;"
        )

    def test_parse_model(self):

        self.assertIs(ContinuousModel.parse("ou"), ContinuousModel.OU)
        self.assertIs(ContinuousModel.parse("Lambda"), ContinuousModel.LAMBDA)
        self.assertIs(
            ContinuousModel.parse(ContinuousModel.EB), ContinuousModel.EB
        )
        self.assertEqual(ContinuousModel.OU.shape_parameter, "alpha")
        self.assertEqual(ContinuousModel.LAMBDA.neutral_value, 1.0)
        self.assertIsNone(ContinuousModel.BM.shape_parameter)

        with self.assertRaises(InvalidParameterError):
            ContinuousModel.parse("brownian")

    def test_brownian_motion(self):

        expected = np.array([[2.0, 1.0, 0.0], [1.0, 2.0, 0.0], [0.0, 0.0, 2.0]])
        np.testing.assert_array_almost_equal(
            self.builder.brownian_motion(), expected
        )
        self.assertEqual(self.builder.n_tips, 3)
        self.assertAlmostEqual(self.builder.tree_height, 2.0)

    def test_brownian_motion_diagonal_is_tip_depth(self):

        matrix = CovarianceBuilder(self.uneven_tree).brownian_motion()
        depths = [self.uneven_tree.get_time(t) for t in "abcde"]
        np.testing.assert_array_almost_equal(np.diag(matrix), depths)

        # polytomy below n2 shares its depth among all of its tips
        self.assertAlmostEqual(matrix[2, 3], 0.5)
        self.assertAlmostEqual(matrix[2, 4], 0.5)
        self.assertAlmostEqual(matrix[0, 4], 0.0)

    def test_shared_path_matrix_is_symmetric_psd(self):

        tree = YuleSimulator(30, random_seed=3).simulate_tree()
        matrix = shared_path_matrix(tree, tree.node_times)

        np.testing.assert_array_almost_equal(matrix, matrix.T)
        self.assertGreater(np.linalg.eigvalsh(matrix).min(), -1e-10)
        np.testing.assert_array_almost_equal(
            np.diag(matrix), np.ones(30), decimal=8
        )

    def test_ornstein_uhlenbeck(self):

        alpha = 0.7
        matrix = self.builder.ornstein_uhlenbeck(alpha)

        expected_ab = (
            np.exp(-alpha * 2.0) * (1 - np.exp(-2 * alpha * 1.0)) / (2 * alpha)
        )
        expected_aa = (1 - np.exp(-2 * alpha * 2.0)) / (2 * alpha)
        self.assertAlmostEqual(matrix[0, 1], expected_ab)
        self.assertAlmostEqual(matrix[0, 0], expected_aa)
        self.assertAlmostEqual(matrix[0, 2], 0.0)
        np.testing.assert_array_almost_equal(matrix, matrix.T)

    def test_ornstein_uhlenbeck_reduces_to_brownian_motion(self):

        np.testing.assert_array_equal(
            self.builder.ornstein_uhlenbeck(0.0),
            self.builder.brownian_motion(),
        )
        np.testing.assert_allclose(
            self.builder.ornstein_uhlenbeck(1e-9),
            self.builder.brownian_motion(),
            atol=1e-7,
        )

    def test_stationary_ornstein_uhlenbeck(self):

        matrix = self.builder.ornstein_uhlenbeck(0.5, stationary_root=True)
        self.assertAlmostEqual(matrix[0, 0], 1.0)
        self.assertAlmostEqual(matrix[0, 2], np.exp(-0.5 * 4.0))

        with self.assertRaises(InvalidParameterError):
            self.builder.ornstein_uhlenbeck(0.0, stationary_root=True)
        with self.assertRaises(InvalidParameterError):
            self.builder.ornstein_uhlenbeck(-0.1)

    def test_early_burst(self):

        np.testing.assert_array_equal(
            self.builder.early_burst(0.0), self.builder.brownian_motion()
        )

        matrix = self.builder.early_burst(-1.0)
        self.assertAlmostEqual(matrix[0, 1], 1 - np.exp(-1.0))
        self.assertAlmostEqual(matrix[0, 0], 1 - np.exp(-2.0))

        with self.assertRaises(InvalidParameterError):
            self.builder.early_burst(0.5)

    def test_pagel_lambda(self):

        bm = self.builder.brownian_motion()
        np.testing.assert_array_equal(self.builder.pagel_lambda(1.0), bm)
        np.testing.assert_array_equal(
            self.builder.pagel_lambda(0.0), np.diag(np.diag(bm))
        )

        half = self.builder.pagel_lambda(0.5)
        self.assertAlmostEqual(half[0, 1], 0.5)
        self.assertAlmostEqual(half[0, 0], 2.0)

        for value in [-0.1, 1.5, np.nan]:
            with self.assertRaises(InvalidParameterError):
                self.builder.pagel_lambda(value)

    def test_build(self):

        np.testing.assert_array_equal(
            self.builder.build("OU", alpha=0.3),
            self.builder.ornstein_uhlenbeck(0.3),
        )
        np.testing.assert_array_equal(
            self.builder.build("lambda", **{"lambda": 0.2}),
            self.builder.pagel_lambda(0.2),
        )
        np.testing.assert_array_equal(
            self.builder.build("EB"), self.builder.brownian_motion()
        )

        with self.assertRaises(InvalidParameterError):
            self.builder.build("BM", alpha=0.3)
        with self.assertRaises(InvalidParameterError):
            self.builder.build("EB", stationary_root=True)
        with self.assertRaises(InvalidParameterError):
            self.builder.build("white-noise")

    def test_cache(self):

        builder = CovarianceBuilder(self.tree, cache=True)
        first = builder.build("OU", alpha=0.4)
        first[0, 0] = 1000.0

        second = builder.build("OU", alpha=0.4)
        np.testing.assert_array_almost_equal(
            second, self.builder.ornstein_uhlenbeck(0.4)
        )

    def test_compute_covariance_matrix(self):

        frame = compute_covariance_matrix(self.tree, "EB", rate_change=-0.5)

        self.assertEqual(list(frame.index), ["a", "b", "c"])
        self.assertEqual(list(frame.columns), ["a", "b", "c"])
        self.assertAlmostEqual(
            frame.loc["a", "b"], np.expm1(-0.5 * 1.0) / -0.5
        )


if __name__ == "__main__":
    unittest.main()
