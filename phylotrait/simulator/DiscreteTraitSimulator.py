"""
This file defines the DiscreteTraitSimulator, which is a subclass of the
DataSimulator. The DiscreteTraitSimulator evolves a discrete character along
the edges of a tree as a continuous-time Markov chain, recording its full
history.
"""
from typing import Any, List, Optional, Union

import numpy as np
import pandas as pd

from phylotrait.data import PhyloTree, TraitTable
from phylotrait.mixins import DataSimulatorError
from phylotrait.simulator.DataSimulator import DataSimulator
from phylotrait.tools.discrete_models import RateMatrix
from phylotrait.tools.stochastic_mapping import StochasticCharacterHistory


class DiscreteTraitSimulator(DataSimulator):
    """
    Simulate a discrete character with a continuous-time Markov chain.

    The root state is given or drawn from the stationary distribution of the
    rate matrix. Along every edge the chain waits an exponential time with
    the exit rate of its current state and then jumps to another state with
    probability proportional to the corresponding rate.

    Args:
        rate_matrix: The RateMatrix of the chain.
        root_state: State at the root. Drawn from the stationary
            distribution if None.
        trait_name: Name of the simulated trait.
        random_seed: A seed for reproducibility.

    Raises:
        DataSimulatorError if the root state is not one of the states.
    """

    def __init__(
        self,
        rate_matrix: RateMatrix,
        root_state: Optional[Any] = None,
        trait_name: str = "state",
        random_seed: Optional[Union[int, np.random.SeedSequence]] = None,
    ):
        if root_state is not None and root_state not in rate_matrix.states:
            raise DataSimulatorError(
                f"Root state {root_state} is not among {rate_matrix.states}.",
                component="DiscreteTraitSimulator",
                parameter="root_state",
            )
        self.rate_matrix = rate_matrix
        self.root_state = root_state
        self.trait_name = trait_name
        self.rng = np.random.default_rng(random_seed)

    def _evolve_edge(self, state: int, length: float) -> List[tuple]:
        """Gillespie simulation of the chain along one edge."""
        q = self.rate_matrix.matrix
        exit_rates = self.rate_matrix.exit_rates
        segments = []
        remaining = length
        while True:
            if exit_rates[state] <= 0:
                segments.append((state, remaining))
                return segments
            wait = self.rng.exponential(1 / exit_rates[state])
            if wait >= remaining:
                segments.append((state, remaining))
                return segments
            segments.append((state, wait))
            remaining -= wait
            jump = np.clip(q[state], 0, None)
            jump[state] = 0
            state = int(self.rng.choice(len(jump), p=jump / jump.sum()))

    def simulate_history(self, tree: PhyloTree) -> StochasticCharacterHistory:
        """Simulates the full history of the character on a tree."""
        states = self.rate_matrix.states
        if self.root_state is None:
            root = int(
                self.rng.choice(
                    len(states), p=self.rate_matrix.stationary_distribution()
                )
            )
        else:
            root = states.index(self.root_state)

        node_states = np.zeros(len(tree.parent_indices), dtype=int)
        node_states[0] = root
        segments = [[]]
        for i in range(1, len(node_states)):
            edge = self._evolve_edge(
                node_states[tree.parent_indices[i]], tree.branch_lengths[i]
            )
            node_states[i] = edge[-1][0]
            segments.append(edge)
        return StochasticCharacterHistory(tree, states, node_states, segments)

    def simulate_data(self, tree: PhyloTree) -> TraitTable:
        """Simulates tip states on a tree.

        Returns:
            A TraitTable with one discrete trait, indexed in tip order.
        """
        history = self.simulate_history(tree)
        tip_states = history.tip_states()
        return TraitTable(
            pd.DataFrame(
                {self.trait_name: pd.Series(tip_states, dtype=object)}
            ),
            discrete_traits=[self.trait_name],
        )
