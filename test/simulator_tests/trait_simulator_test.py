"""
Tests the trait simulators in phylotrait.simulator.
"""
import unittest

import numpy as np

from phylotrait.data import PhyloTree
from phylotrait.mixins import DataSimulatorError
from phylotrait.simulator import (
    CompleteBinarySimulator,
    ContinuousTraitSimulator,
    DiscreteTraitSimulator,
    StarTreeSimulator,
)
from phylotrait.tools.discrete_models import RateMatrix


class TestContinuousTraitSimulator(unittest.TestCase):
    def setUp(self):
        self.tree = CompleteBinarySimulator(depth=4).simulate_tree()

    def test_init(self):
        with self.assertRaises(DataSimulatorError):
            ContinuousTraitSimulator("lambda")

        with self.assertRaises(DataSimulatorError):
            ContinuousTraitSimulator(sigma2=-1.0)

        with self.assertRaises(DataSimulatorError):
            ContinuousTraitSimulator("OU", alpha=-1.0)

        with self.assertRaises(DataSimulatorError):
            ContinuousTraitSimulator("EB", rate_change=0.5)

        with self.assertRaises(DataSimulatorError):
            ContinuousTraitSimulator(n_replicates=0)

    def test_simulate_data(self):
        table = ContinuousTraitSimulator(random_seed=1).simulate_data(
            self.tree
        )

        self.assertEqual(table.taxa, self.tree.tip_order())
        self.assertEqual(table.traits, ["trait"])
        self.assertEqual(table.kind("trait"), "continuous")
        self.assertEqual(table.missing(), [])

    def test_replicates(self):
        table = ContinuousTraitSimulator(
            n_replicates=3, trait_name="x", random_seed=2
        ).simulate_data(self.tree)

        self.assertEqual(table.traits, ["x_0", "x_1", "x_2"])
        frame = table.to_frame()
        self.assertFalse(np.allclose(frame["x_0"], frame["x_1"]))

    def test_random_seed(self):
        first = ContinuousTraitSimulator("EB", rate_change=-2.0, random_seed=3)
        second = ContinuousTraitSimulator("EB", rate_change=-2.0, random_seed=3)

        np.testing.assert_array_equal(
            first.simulate_data(self.tree).to_frame().values,
            second.simulate_data(self.tree).to_frame().values,
        )

    def test_no_variance(self):
        table = ContinuousTraitSimulator(
            sigma2=0.0, root_state=4.0
        ).simulate_data(self.tree)
        np.testing.assert_array_equal(
            table.get_continuous("trait").values, np.full(16, 4.0)
        )

        table = ContinuousTraitSimulator(
            "OU", sigma2=0.0, alpha=50.0, optimum=5.0
        ).simulate_data(self.tree)
        np.testing.assert_array_almost_equal(
            table.get_continuous("trait").values, np.full(16, 5.0)
        )

    def test_brownian_motion_variance(self):
        tree = StarTreeSimulator(2000, height=0.5).simulate_tree()
        values = (
            ContinuousTraitSimulator(sigma2=4.0, random_seed=4)
            .simulate_data(tree)
            .get_continuous("trait")
        )
        self.assertLess(abs(values.var() - 2.0), 0.3)
        self.assertLess(abs(values.mean()), 0.15)


class TestDiscreteTraitSimulator(unittest.TestCase):
    def setUp(self):
        self.tree = CompleteBinarySimulator(depth=4).simulate_tree()
        self.rate_matrix = RateMatrix.from_parameters(
            [1.0], "ER", ["x", "y"]
        )

    def test_init(self):
        with self.assertRaises(DataSimulatorError):
            DiscreteTraitSimulator(self.rate_matrix, root_state="z")

    def test_simulate_data(self):
        table = DiscreteTraitSimulator(
            self.rate_matrix, random_seed=5
        ).simulate_data(self.tree)

        self.assertEqual(table.taxa, self.tree.tip_order())
        self.assertEqual(table.kind("state"), "discrete")
        self.assertTrue(set(table.get_discrete("state")) <= {"x", "y"})

    def test_history_matches_data(self):
        history = DiscreteTraitSimulator(
            self.rate_matrix, random_seed=6
        ).simulate_history(self.tree)
        table = DiscreteTraitSimulator(
            self.rate_matrix, random_seed=6
        ).simulate_data(self.tree)

        self.assertEqual(
            history.tip_states(), table.get_discrete("state").to_dict()
        )
        for parent, child in self.tree.edges:
            segments = history.edge_segments(parent, child)
            self.assertAlmostEqual(
                sum(d for _, d in segments),
                self.tree.get_branch_length(parent, child),
            )
            self.assertEqual(segments[0][0], history.node_state(parent))
            self.assertEqual(segments[-1][0], history.node_state(child))

    def test_frozen_chain(self):
        frozen = RateMatrix([[0.0, 0.0], [0.0, 0.0]], ["x", "y"])
        table = DiscreteTraitSimulator(
            frozen, root_state="y", random_seed=7
        ).simulate_data(self.tree)

        self.assertEqual(set(table.get_discrete("state")), {"y"})

    def test_one_way_chain(self):
        tree = PhyloTree("(a:100,b:100)r;")
        one_way = RateMatrix.from_rates([[0, 5.0], [0, 0]], ["x", "y"])
        history = DiscreteTraitSimulator(
            one_way, root_state="x", random_seed=8
        ).simulate_history(tree)

        self.assertEqual(history.tip_states(), {"a": "y", "b": "y"})
        self.assertEqual(history.n_transitions(), 2)


if __name__ == "__main__":
    unittest.main()
