"""
Tests for phylogenetic independent contrasts in phylotrait.tools.contrasts.
"""
import unittest

import numpy as np
import pandas as pd

from phylotrait.data import PhyloTree, TraitTable, match
from phylotrait.mixins import (
    DegenerateInputError,
    MissingTraitDataError,
    PhyloTreeWarning,
    PolytomyUnsupportedError,
)
from phylotrait.simulator import ContinuousTraitSimulator, YuleSimulator
from phylotrait.tools.contrasts import (
    ancestral_state_estimates,
    compute_independent_contrasts,
    compute_independent_contrasts_for_trait,
    contrast_regression,
)
from phylotrait.tools.regression import PhylogeneticRegression


class TestIndependentContrasts(unittest.TestCase):
    def setUp(self):

        self.tree = PhyloTree("((a:1,b:1)n1:1,c:2)r;")
        self.values = {"a": 1.0, "b": 3.0, "c": 5.0}

    def test_known_contrasts(self):

        contrasts = compute_independent_contrasts(self.tree, self.values)

        self.assertEqual(list(contrasts["node"]), ["n1", "r"])
        np.testing.assert_array_almost_equal(
            contrasts["contrast"], [-2 / np.sqrt(2), -3 / np.sqrt(3.5)]
        )
        np.testing.assert_array_almost_equal(contrasts["variance"], [2, 3.5])
        np.testing.assert_array_almost_equal(
            contrasts["node_state"], [2.0, 11.5 / 3.5]
        )

    def test_unscaled_contrasts(self):

        contrasts = compute_independent_contrasts(
            self.tree, self.values, scaled=False
        )
        np.testing.assert_array_almost_equal(contrasts["contrast"], [-2, -3])

    def test_child_order_only_flips_signs(self):

        flipped = PhyloTree("(c:2,(b:1,a:1)n1:1)r;")

        original = compute_independent_contrasts(self.tree, self.values)
        reordered = compute_independent_contrasts(flipped, self.values)

        original = original.set_index("node")
        reordered = reordered.set_index("node")
        for node in ["n1", "r"]:
            self.assertAlmostEqual(
                abs(original.loc[node, "contrast"]),
                abs(reordered.loc[node, "contrast"]),
            )
            self.assertAlmostEqual(
                original.loc[node, "node_state"],
                reordered.loc[node, "node_state"],
            )

    def test_root_estimate_is_gls_root_state(self):

        tree = YuleSimulator(25, random_seed=11).simulate_tree()
        table = ContinuousTraitSimulator(random_seed=5).simulate_data(tree)
        values = table.get_continuous("trait")

        estimates = ancestral_state_estimates(tree, values)

        inverse = np.linalg.inv(_bm_matrix(tree))
        ones = np.ones(tree.n_tips)
        y = values.loc[tree.tip_order()].values
        gls_root = (ones @ inverse @ y) / (ones @ inverse @ ones)

        self.assertEqual(list(estimates.index), tree.internal_nodes)
        self.assertAlmostEqual(estimates[tree.root], gls_root, places=8)

    def test_polytomies(self):

        star = PhyloTree("(a:1,b:1,c:1)r;")
        values = {"a": 0.0, "b": 1.0, "c": 2.0}

        contrasts = compute_independent_contrasts(star, values)
        self.assertEqual(contrasts.shape[0], 2)
        self.assertEqual(list(contrasts["node"]), ["r", "r"])
        self.assertAlmostEqual(contrasts["node_state"].iloc[-1], 1.0)

        with self.assertRaises(PolytomyUnsupportedError):
            compute_independent_contrasts(
                star, values, resolve_polytomies=False
            )

    def test_zero_length_sisters(self):

        with self.assertWarns(PhyloTreeWarning):
            tree = PhyloTree("((a:0,b:0)n1:1,c:1)r;")
        with self.assertRaises(DegenerateInputError):
            compute_independent_contrasts(tree, self.values)

    def test_missing_values(self):

        with self.assertRaises(MissingTraitDataError):
            compute_independent_contrasts(self.tree, {"a": 1.0, "b": 2.0})

        with self.assertRaises(MissingTraitDataError):
            compute_independent_contrasts(
                self.tree, {"a": 1.0, "b": np.nan, "c": 2.0}
            )

    def test_contrasts_for_trait(self):

        table = TraitTable(
            pd.DataFrame({"x": [5.0, 3.0, 1.0]}, index=["c", "b", "a"])
        )
        matched = match(self.tree, table)

        contrasts = compute_independent_contrasts_for_trait(matched, "x")
        expected = compute_independent_contrasts(self.tree, self.values)
        pd.testing.assert_frame_equal(contrasts, expected)

    def test_contrast_slope_equals_gls_slope(self):

        tree = YuleSimulator(40, random_seed=2).simulate_tree()
        x = ContinuousTraitSimulator(random_seed=3).simulate_data(tree)
        noise = ContinuousTraitSimulator(random_seed=4).simulate_data(tree)
        x = x.get_continuous("trait")
        y = 1.5 * x + 0.5 * noise.get_continuous("trait")

        table = TraitTable(pd.DataFrame({"x": x, "y": y}))
        matched = match(tree, table)

        pic = contrast_regression(matched, "y", "x")
        pgls = PhylogeneticRegression(model="BM").fit(matched, "y", ["x"])

        self.assertAlmostEqual(
            pic["slope"], pgls.coefficients.loc["x", "estimate"], places=8
        )
        self.assertAlmostEqual(
            pic["std_error"],
            pgls.coefficients.loc["x", "std_error"],
            places=8,
        )
        self.assertEqual(pic["df_residual"], pgls.df_residual)

    def test_contrast_regression_degenerate(self):

        table = TraitTable(
            pd.DataFrame(
                {"x": [2.0, 2.0, 2.0], "y": [1.0, 2.0, 3.0]},
                index=["a", "b", "c"],
            )
        )
        with self.assertRaises(DegenerateInputError):
            contrast_regression(match(self.tree, table), "y", "x")


def _bm_matrix(tree: PhyloTree) -> np.ndarray:
    """Brownian-motion covariance from pairwise MRCA depths."""
    tips = tree.tip_order()
    matrix = np.zeros((len(tips), len(tips)))
    for i, u in enumerate(tips):
        for j, v in enumerate(tips):
            lca = u if u == v else tree.find_lca(u, v)
            matrix[i, j] = tree.get_time(lca)
    return matrix


if __name__ == "__main__":
    unittest.main()
