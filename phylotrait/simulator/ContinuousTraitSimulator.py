"""
This file defines the ContinuousTraitSimulator, which is a subclass of the
DataSimulator. The ContinuousTraitSimulator evolves continuous traits along
the edges of a tree under Brownian motion, Ornstein-Uhlenbeck or Early-Burst
dynamics.
"""
from typing import Optional, Union

import numpy as np
import pandas as pd

from phylotrait.data import PhyloTree, TraitTable
from phylotrait.mixins import DataSimulatorError
from phylotrait.simulator.DataSimulator import DataSimulator
from phylotrait.tools.covariance import ContinuousModel


class ContinuousTraitSimulator(DataSimulator):
    """
    Simulate continuous traits edge by edge.

    The tree is traversed from the root to the tips. The root takes value
    `root_state` and every child is drawn given its parent value x and the
    length t of the edge between them:

        BM: x + Normal(0, sigma2 t)
        OU: theta + (x - theta) exp(-alpha t)
            + Normal(0, sigma2 (1 - exp(-2 alpha t)) / (2 alpha))
        EB: x + Normal(0, sigma2 (exp(r t1) - exp(r t0)) / r), where t0 and
            t1 are the times of the parent and child since the root.

    Args:
        model: "BM", "OU" or "EB".
        sigma2: Evolutionary rate.
        root_state: Trait value at the root.
        alpha: OU selection strength.
        optimum: OU optimum theta. Defaults to the root state.
        rate_change: EB rate change r, non-positive.
        n_replicates: Number of independent traits to simulate.
        trait_name: Name of the simulated trait. With several replicates the
            traits are named `{trait_name}_{i}`.
        random_seed: A seed for reproducibility.

    Raises:
        DataSimulatorError if a parameter is outside of its domain or the
            model is not a process model.
    """

    def __init__(
        self,
        model: Union[str, ContinuousModel] = "BM",
        sigma2: float = 1.0,
        root_state: float = 0.0,
        alpha: float = 0.0,
        optimum: Optional[float] = None,
        rate_change: float = 0.0,
        n_replicates: int = 1,
        trait_name: str = "trait",
        random_seed: Optional[Union[int, np.random.SeedSequence]] = None,
    ):
        self.model = ContinuousModel.parse(model)
        if self.model is ContinuousModel.LAMBDA:
            raise DataSimulatorError(
                "Pagel's lambda is a covariance transform, not a process "
                "that can be simulated along edges.",
                component="ContinuousTraitSimulator",
                parameter="model",
            )
        if sigma2 < 0:
            raise DataSimulatorError(
                "sigma2 must be non-negative.",
                component="ContinuousTraitSimulator",
                parameter="sigma2",
            )
        if alpha < 0:
            raise DataSimulatorError(
                "alpha must be non-negative.",
                component="ContinuousTraitSimulator",
                parameter="alpha",
            )
        if rate_change > 0:
            raise DataSimulatorError(
                "rate_change must be non-positive.",
                component="ContinuousTraitSimulator",
                parameter="rate_change",
            )
        if n_replicates < 1:
            raise DataSimulatorError(
                "At least one replicate must be simulated.",
                component="ContinuousTraitSimulator",
                parameter="n_replicates",
            )

        self.sigma2 = sigma2
        self.root_state = root_state
        self.alpha = alpha
        self.optimum = root_state if optimum is None else optimum
        self.rate_change = rate_change
        self.n_replicates = n_replicates
        self.trait_name = trait_name
        self.rng = np.random.default_rng(random_seed)

    def _edge_moments(self, tree: PhyloTree, child: int, x: np.ndarray):
        """Conditional mean and variance of a child given its parent value."""
        length = tree.branch_lengths[child]
        if self.model is ContinuousModel.OU and self.alpha > 0:
            decay = np.exp(-self.alpha * length)
            mean = self.optimum + (x - self.optimum) * decay
            variance = (
                self.sigma2
                * -np.expm1(-2 * self.alpha * length)
                / (2 * self.alpha)
            )
            return mean, variance
        if self.model is ContinuousModel.EB and self.rate_change < 0:
            end = tree.node_times[child]
            start = end - length
            r = self.rate_change
            variance = self.sigma2 * (np.exp(r * end) - np.exp(r * start)) / r
            return x, variance
        return x, self.sigma2 * length

    def simulate_data(self, tree: PhyloTree) -> TraitTable:
        """Simulates tip values on a tree.

        Args:
            tree: The PhyloTree to simulate on.

        Returns:
            A TraitTable indexed in the tree's tip order.
        """
        values = np.zeros((len(tree.parent_indices), self.n_replicates))
        values[0] = self.root_state
        for i in tree.preorder(indices=True):
            if i == 0:
                continue
            mean, variance = self._edge_moments(
                tree, i, values[tree.parent_indices[i]]
            )
            values[i] = mean + self.rng.normal(
                scale=np.sqrt(variance), size=self.n_replicates
            )

        if self.n_replicates == 1:
            columns = [self.trait_name]
        else:
            columns = [
                f"{self.trait_name}_{i}" for i in range(self.n_replicates)
            ]
        return TraitTable(
            pd.DataFrame(
                values[tree.tip_indices],
                index=tree.tip_order(),
                columns=columns,
            )
        )
