"""
Abstract class TreeSimulator, for tree simulation module.

All tree simulators are derived classes of this abstract class, and at a
minimum implement a method called `simulate_tree`.
"""
import abc

from phylotrait.data import PhyloTree


class TreeSimulator(abc.ABC):
    """
    TreeSimulator is an abstract class that all tree simulators derive from.

    A TreeSimulator returns a validated PhyloTree with branch lengths. Tips
    are named "t0", "t1", ... in canonical tip order. Simulated trees provide
    a ground truth on which trait models can be simulated and then fitted.
    """

    @abc.abstractmethod
    def simulate_tree(self) -> PhyloTree:
        """
        Simulate a PhyloTree.
        """
