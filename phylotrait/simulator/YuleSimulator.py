"""
This file defines the YuleSimulator, which inherits TreeSimulator, that
simulates ultrametric trees under a pure-birth (Yule) process.
"""
from typing import Optional

import networkx as nx
import numpy as np

from phylotrait.data import PhyloTree
from phylotrait.mixins import TreeSimulatorError
from phylotrait.simulator.TreeSimulator import TreeSimulator


class YuleSimulator(TreeSimulator):
    """Simulate a pure-birth tree.

    Starting from a root that splits into two lineages, every extant lineage
    splits at rate `birth_rate` until `num_tips` lineages exist. The process
    then runs for one more waiting time, so that no tip branch has zero
    length, and all lineages are stopped at the same time. The tree is
    therefore ultrametric.

    Args:
        num_tips: Number of tips, at least 2.
        birth_rate: Per-lineage splitting rate.
        normalize: Rescale the tree to height 1.
        random_seed: A seed for reproducibility.

    Raises:
        TreeSimulatorError if there are fewer than two tips or the birth rate
            is not positive.
    """

    def __init__(
        self,
        num_tips: int,
        birth_rate: float = 1.0,
        normalize: bool = True,
        random_seed: Optional[int] = None,
    ):
        if num_tips < 2:
            raise TreeSimulatorError(
                "A Yule tree needs at least two tips.",
                component="YuleSimulator",
                parameter="num_tips",
            )
        if birth_rate <= 0:
            raise TreeSimulatorError(
                "Birth rate must be positive.",
                component="YuleSimulator",
                parameter="birth_rate",
            )
        self.num_tips = num_tips
        self.birth_rate = birth_rate
        self.normalize = normalize
        self.random_seed = random_seed

    def simulate_tree(self) -> PhyloTree:
        """Simulates a Yule tree.

        Returns:
            A PhyloTree with tips "t0" ... "t{num_tips - 1}" in tip order.
        """
        rng = np.random.default_rng(self.random_seed)

        tree = nx.DiGraph()
        birth_times = {"node0": 0.0, "node1": 0.0, "node2": 0.0}
        tree.add_edges_from([("node0", "node1"), ("node0", "node2")])
        extant = ["node1", "node2"]
        time = 0.0
        node_count = 3
        while True:
            time += rng.exponential(1 / (self.birth_rate * len(extant)))
            if len(extant) == self.num_tips:
                break
            parent = extant.pop(rng.integers(len(extant)))
            grandparent = next(tree.predecessors(parent))
            tree.edges[grandparent, parent]["length"] = (
                time - birth_times[parent]
            )
            for _ in range(2):
                child = f"node{node_count}"
                node_count += 1
                birth_times[child] = time
                tree.add_edge(parent, child)
                extant.append(child)

        for lineage in extant:
            parent = next(tree.predecessors(lineage))
            tree.edges[parent, lineage]["length"] = time - birth_times[lineage]

        scale = 1.0 / time if self.normalize else 1.0
        for u, v in tree.edges:
            tree.edges[u, v]["length"] *= scale

        tips = [
            n
            for n in nx.dfs_preorder_nodes(tree, "node0")
            if tree.out_degree(n) == 0
        ]
        return PhyloTree(
            nx.relabel_nodes(tree, {tip: f"t{i}" for i, tip in enumerate(tips)})
        )
