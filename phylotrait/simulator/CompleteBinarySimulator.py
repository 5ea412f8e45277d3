"""
This file defines the CompleteBinarySimulator, which inherits TreeSimulator,
that simulates complete binary trees. In this sense, this is the simplest tree
simulator.
"""
from typing import Optional

import networkx as nx
import numpy as np

from phylotrait.data import PhyloTree
from phylotrait.mixins import TreeSimulatorError
from phylotrait.simulator.TreeSimulator import TreeSimulator


class CompleteBinarySimulator(TreeSimulator):
    """Simulate a complete binary tree.

    Internally, this class uses :func:`nx.balanced_tree` to generate a
    perfectly balanced binary tree of specified size. Only one of
    ``num_tips`` or ``depth`` should be provided. All branches have length
    1 / depth, so that the tree is ultrametric with height 1. The root is the
    first split; there is no stem branch above it.

    Args:
        num_tips: Number of tips to simulate. Needs to be a power of 2. The
            depth of the tree will be `log2(num_tips)`.
        depth: Depth of the tree. The number of tips will be `2^depth`.

    Raises:
        TreeSimulatorError if neither or both ``num_tips`` or ``depth`` are
            provided, if ``num_tips`` is not a power of 2, or if the
            calculated depth is not greater than 0.
    """

    def __init__(
        self, num_tips: Optional[int] = None, depth: Optional[int] = None
    ):
        if (num_tips is None) == (depth is None):
            raise TreeSimulatorError(
                "One of `num_tips` or `depth` must be provided.",
                component="CompleteBinarySimulator",
            )
        if num_tips is not None:
            log2_num_tips = np.log2(num_tips)
            if log2_num_tips != int(log2_num_tips):
                raise TreeSimulatorError(
                    "`num_tips` must be a power of 2.",
                    component="CompleteBinarySimulator",
                    parameter="num_tips",
                )
            depth = int(log2_num_tips)
        if depth <= 0:
            raise TreeSimulatorError(
                "`depth` must be greater than 0.",
                component="CompleteBinarySimulator",
                parameter="depth",
            )
        self.depth = depth

    def simulate_tree(self) -> PhyloTree:
        """Simulates a complete binary tree.

        Returns:
            A PhyloTree of height 1 with tips "t0" ... "t{2^depth - 1}".
        """
        tree = nx.balanced_tree(2, self.depth, create_using=nx.DiGraph)
        nx.set_edge_attributes(tree, 1.0 / self.depth, "length")

        tips = [
            n
            for n in nx.dfs_preorder_nodes(tree, 0)
            if tree.out_degree(n) == 0
        ]
        mapping = {node: f"node{node}" for node in tree.nodes}
        mapping.update({tip: f"t{i}" for i, tip in enumerate(tips)})
        return PhyloTree(nx.relabel_nodes(tree, mapping))
