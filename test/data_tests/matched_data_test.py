"""
Tests for matching a PhyloTree with a TraitTable.
"""
import unittest

import numpy as np
import pandas as pd

from phylotrait.data import MatchedData, PhyloTree, TraitTable, match
from phylotrait.mixins import (
    EmptyIntersectionError,
    MissingTraitDataError,
    TraitTableError,
)


class TestMatch(unittest.TestCase):
    def setUp(self):

        self.tree = PhyloTree("((a:1,b:1)n1:1,((c:1,d:1)n3:0.5,e:1.5)n2:0.5)r;")
        self.table = TraitTable(
            pd.DataFrame(
                {
                    "size": [4.0, 2.0, 1.0, np.nan, 7.0],
                    "diet": ["x", "y", "y", "x", "x"],
                },
                index=["e", "b", "a", "d", "z"],
            )
        )

    def test_tip_order_matches_row_order(self):

        matched = match(self.tree, self.table)

        self.assertEqual(matched.taxa, ["a", "b", "d", "e"])
        self.assertEqual(matched.traits.taxa, matched.tree.tip_order())
        self.assertEqual(matched.n_tips, 4)
        np.testing.assert_array_equal(
            matched.traits.get_continuous("size").values[[0, 1, 3]],
            [1.0, 2.0, 4.0],
        )

    def test_tree_is_pruned(self):

        matched = match(self.tree, self.table)

        self.assertNotIn("c", matched.tree.nodes)
        self.assertNotIn("n3", matched.tree.nodes)
        self.assertAlmostEqual(matched.tree.get_branch_length("n2", "d"), 1.5)
        self.assertAlmostEqual(matched.tree.get_time("d"), 2.0)

    def test_diagnostics(self):

        matched = match(self.tree, self.table)

        self.assertEqual(matched.dropped_tree_tips, ["c"])
        self.assertEqual(matched.dropped_table_rows, ["z"])
        diagnostics = matched.diagnostics()
        self.assertEqual(diagnostics.shape, (2, 2))
        self.assertEqual(
            diagnostics.set_index("taxon")["dropped_from"].to_dict(),
            {"c": "tree", "z": "table"},
        )

    def test_matching_is_deterministic(self):

        first = match(self.tree, self.table)
        second = match(self.tree, self.table)
        self.assertEqual(first.taxa, second.taxa)
        self.assertEqual(first.tree.get_newick(), second.tree.get_newick())
        pd.testing.assert_frame_equal(
            first.traits.to_frame(), second.traits.to_frame()
        )

    def test_full_overlap_keeps_tree(self):

        table = TraitTable(
            pd.DataFrame(
                {"size": np.arange(5, dtype=float)},
                index=["a", "b", "c", "d", "e"],
            )
        )
        matched = match(self.tree, table)
        self.assertIs(matched.tree, self.tree)
        self.assertEqual(matched.diagnostics().shape[0], 0)

    def test_empty_intersection(self):

        table = TraitTable(pd.DataFrame({"size": [1.0]}, index=["q"]))
        with self.assertRaises(EmptyIntersectionError):
            match(self.tree, table)

    def test_drop_missing(self):

        matched = match(self.tree, self.table)

        with self.assertRaises(MissingTraitDataError):
            matched.continuous_vector("size")

        complete = matched.drop_missing(["size"])
        self.assertEqual(complete.taxa, ["a", "b", "e"])
        self.assertEqual(complete.dropped_table_rows, ["z", "d"])
        np.testing.assert_array_equal(
            complete.continuous_vector("size"), [1.0, 2.0, 4.0]
        )

        # nothing to drop
        self.assertIs(complete.drop_missing(), complete)

    def test_discrete_vector(self):

        matched = match(self.tree, self.table)
        self.assertEqual(matched.discrete_vector("diet"), ["y", "y", "x", "x"])

    def test_select_and_transform(self):

        matched = match(self.tree, self.table).drop_missing()
        logged = matched.transform("size", np.log, "log_size")
        self.assertIn("log_size", logged.traits.traits)
        self.assertIs(logged.tree, matched.tree)

        selected = logged.select(["log_size"])
        self.assertEqual(selected.traits.traits, ["log_size"])

    def test_misaligned_table_raises(self):

        table = self.table.subset(["b", "a"])
        tree = PhyloTree("(a:1,b:1)r;")
        with self.assertRaises(TraitTableError):
            MatchedData(tree, table)


if __name__ == "__main__":
    unittest.main()
