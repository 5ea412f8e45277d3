"""
Abstract class DataSimulator, for simulating trait data on a PhyloTree.

All data simulators are derived classes of this abstract class, and at a
minimum implement a method called `simulate_data`.
"""
import abc

from phylotrait.data import PhyloTree, TraitTable


class DataSimulator(abc.ABC):
    """
    DataSimulator is an abstract class that all trait simulators derive from.

    A DataSimulator evolves trait values from the root of a tree to its tips
    and returns the tip values as a TraitTable indexed in the tree's tip
    order. The tree itself is never modified.
    """

    @abc.abstractmethod
    def simulate_data(self, tree: PhyloTree) -> TraitTable:
        """
        Simulate tip trait values on a PhyloTree.

        Args:
            tree: The PhyloTree to simulate trait values on.
        """
        pass
