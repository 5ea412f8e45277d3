"""
This file defines the StarTreeSimulator, which inherits TreeSimulator, that
simulates star trees: every tip hangs directly from the root.
"""
import networkx as nx

from phylotrait.data import PhyloTree
from phylotrait.mixins import TreeSimulatorError
from phylotrait.simulator.TreeSimulator import TreeSimulator


class StarTreeSimulator(TreeSimulator):
    """Simulate a star tree.

    All tips are attached to the root by branches of equal length, so tip
    values evolving on the tree are independent and identically distributed.

    Args:
        num_tips: Number of tips, at least 2.
        height: Length of every branch.

    Raises:
        TreeSimulatorError if there are fewer than two tips or the height is
            not positive.
    """

    def __init__(self, num_tips: int, height: float = 1.0):
        if num_tips < 2:
            raise TreeSimulatorError(
                "A star tree needs at least two tips.",
                component="StarTreeSimulator",
                parameter="num_tips",
            )
        if height <= 0:
            raise TreeSimulatorError(
                "Height must be positive.",
                component="StarTreeSimulator",
                parameter="height",
            )
        self.num_tips = num_tips
        self.height = height

    def simulate_tree(self) -> PhyloTree:
        """Simulates a star tree.

        Returns:
            A PhyloTree with root "root" and tips "t0" ... "t{num_tips - 1}".
        """
        tree = nx.DiGraph()
        tree.add_node("root")
        for i in range(self.num_tips):
            tree.add_edge("root", f"t{i}", length=self.height)
        return PhyloTree(tree)
