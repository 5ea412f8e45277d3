"""
Stochastic character mapping of discrete traits.

Each simulated history is drawn in two steps. First, the states of all
internal nodes are sampled jointly from their posterior under a fitted rate
matrix: the root from the root prior times its conditional likelihood, then
every other node in preorder from exp(Q t)[parent state, :] times its own
conditional likelihood. Second, every edge is filled with a continuous-time
Markov trajectory conditioned on both of its endpoint states, sampled by
uniformization.
"""
import collections.abc
import multiprocessing
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import scipy.stats
from tqdm.auto import tqdm

from phylotrait.data import PhyloTree
from phylotrait.mixins import (
    InvalidParameterError,
    RateMatrixSingularError,
    UnknownTipError,
    log_runtime,
    logger,
    spawn_generators,
)
from phylotrait.tools.discrete_models import (
    DiscreteModelFit,
    RateMatrix,
    conditional_likelihoods,
    transition_matrices,
)

# tail probability of the uniformized jump count left out of a bridge
JUMP_TAIL_PROBABILITY = 1e-12

Segment = Tuple[int, float]


class StochasticCharacterHistory:
    """One realization of a discrete character along every edge of a tree.

    The history of each edge is piecewise constant and stored as a list of
    (state, duration) segments, ordered from the parent to the child. The
    durations of an edge sum to its branch length.

    Args:
        tree: The tree the history lives on.
        states: State labels; histories store indices into this list.
        node_states: State index of every node, in arena order.
        segments: Segments of the edge above every node, in arena order. The
            root has no segments.
    """

    def __init__(
        self,
        tree: PhyloTree,
        states: Sequence[Any],
        node_states: np.ndarray,
        segments: List[List[Segment]],
    ) -> None:
        self.tree = tree
        self.states = list(states)
        self._node_states = np.asarray(node_states, dtype=int)
        self._segments = segments

    def __repr__(self) -> str:
        return (
            f"StochasticCharacterHistory(n_nodes={len(self._node_states)}, "
            f"n_transitions={self.n_transitions()})"
        )

    def node_state(self, node: str) -> Any:
        """State at a node."""
        return self.states[self._node_states[self.tree.index_of(node)]]

    def node_states(self) -> Dict[str, Any]:
        """States at every node, in preorder."""
        return {
            self.tree.name_of(i): self.states[s]
            for i, s in enumerate(self._node_states)
        }

    def tip_states(self) -> Dict[str, Any]:
        """States at the tips, in canonical tip order."""
        return {
            self.tree.name_of(i): self.states[self._node_states[i]]
            for i in self.tree.tip_indices
        }

    def edge_segments(
        self, parent: str, child: str
    ) -> List[Tuple[Any, float]]:
        """(state, duration) segments of an edge, from parent to child.

        Raises:
            UnknownTipError if the edge does not exist.
        """
        self.tree.get_branch_length(parent, child)
        return [
            (self.states[s], d)
            for s, d in self._segments[self.tree.index_of(child)]
        ]

    def state_at(self, node: str, elapsed: float) -> Any:
        """State on the edge above `node`, `elapsed` time below its parent.

        Raises:
            UnknownTipError if `node` is the root.
            InvalidParameterError if `elapsed` lies outside of the edge.
        """
        index = self.tree.index_of(node)
        if index == 0:
            raise UnknownTipError(
                "The root has no incoming edge.",
                component="StochasticCharacterHistory",
            )
        length = self.tree.branch_lengths[index]
        if elapsed < 0 or elapsed > length:
            raise InvalidParameterError(
                f"Elapsed time {elapsed} is outside of [0, {length}].",
                component="StochasticCharacterHistory",
                parameter="elapsed",
            )
        start = 0.0
        for state, duration in self._segments[index]:
            if elapsed < start + duration:
                return self.states[state]
            start += duration
        return self.states[self._node_states[index]]

    def transitions(self) -> pd.DataFrame:
        """Every state change, with its absolute time since the root."""
        records = []
        for i in range(1, len(self._node_states)):
            parent = self.tree.parent_indices[i]
            time = self.tree.node_times[parent]
            segments = self._segments[i]
            for (before, duration), (after, _) in zip(
                segments[:-1], segments[1:]
            ):
                time += duration
                records.append(
                    (
                        self.tree.name_of(parent),
                        self.tree.name_of(i),
                        time,
                        self.states[before],
                        self.states[after],
                    )
                )
        return pd.DataFrame(
            records,
            columns=["parent", "child", "time", "from_state", "to_state"],
        )

    def n_transitions(self) -> int:
        """Total number of state changes."""
        return sum(max(len(s) - 1, 0) for s in self._segments)

    def transition_counts(self) -> pd.DataFrame:
        """Number of changes between every ordered pair of states."""
        counts = np.zeros((len(self.states), len(self.states)), dtype=int)
        for segments in self._segments:
            for (before, _), (after, _) in zip(segments[:-1], segments[1:]):
                counts[before, after] += 1
        return pd.DataFrame(counts, index=self.states, columns=self.states)

    def dwell_times(self) -> pd.Series:
        """Total time spent in every state over the whole tree."""
        totals = np.zeros(len(self.states))
        for segments in self._segments:
            for state, duration in segments:
                totals[state] += duration
        return pd.Series(totals, index=self.states)


class StochasticMapSample(collections.abc.Sequence):
    """Finite, restartable sequence of independent stochastic histories."""

    def __init__(self, histories: List[StochasticCharacterHistory]) -> None:
        self._histories = list(histories)

    def __len__(self) -> int:
        return len(self._histories)

    def __getitem__(self, item):
        return self._histories[item]

    def __repr__(self) -> str:
        return f"StochasticMapSample(n={len(self)})"

    def summarize(self) -> Dict[str, Union[pd.DataFrame, pd.Series]]:
        """Averages over the sample.

        Returns:
            A dictionary with the mean `transition_counts` (DataFrame), the
            mean `dwell_times` (Series) and the `node_state_frequencies`
            (DataFrame of internal nodes by states).
        """
        first = self._histories[0]
        states = first.states
        tree = first.tree
        internal = tree.internal_nodes

        counts = sum(h.transition_counts() for h in self._histories)
        dwell = sum(h.dwell_times() for h in self._histories)
        frequencies = pd.DataFrame(0.0, index=internal, columns=states)
        for history in self._histories:
            for node in internal:
                frequencies.loc[node, history.node_state(node)] += 1

        n = len(self._histories)
        return {
            "transition_counts": counts / n,
            "dwell_times": dwell / n,
            "node_state_frequencies": frequencies / n,
        }


def sample_bridge(
    rate_matrix: np.ndarray,
    start: int,
    end: int,
    length: float,
    rng: np.random.Generator,
) -> List[Segment]:
    """Endpoint-conditioned trajectory of a Markov chain by uniformization.

    With mu the largest exit rate and R = I + Q / mu, the chain is a Poisson
    process of rate mu whose jumps follow R, some of them virtual (to the
    same state). The number of jumps is drawn given both endpoints, jump
    times are uniform on the edge, and the jump states are drawn forward
    conditioned on reaching `end`.

    Args:
        rate_matrix: Q as an array.
        start: State index at the parent.
        end: State index at the child.
        length: Branch length.
        rng: Random generator.

    Returns:
        (state, duration) segments without virtual jumps.
    """
    if length == 0:
        return [(start, 0.0)]
    n_states = rate_matrix.shape[0]
    mu = float(np.max(-np.diag(rate_matrix)))
    if mu == 0:
        return [(start, length)]

    jump_matrix = np.eye(n_states) + rate_matrix / mu
    max_jumps = int(
        scipy.stats.poisson.isf(JUMP_TAIL_PROBABILITY, mu * length)
    )
    powers = [np.eye(n_states)]
    for _ in range(max_jumps + 1):
        powers.append(powers[-1] @ jump_matrix)

    weights = np.array(
        [
            scipy.stats.poisson.pmf(n, mu * length) * powers[n][start, end]
            for n in range(max_jumps + 2)
        ]
    )
    cumulative = np.cumsum(weights)
    n_jumps = int(
        np.searchsorted(cumulative, rng.random() * cumulative[-1], side="right")
    )
    n_jumps = min(n_jumps, max_jumps + 1)

    times = np.sort(rng.uniform(0.0, length, n_jumps))
    path = [start]
    for j in range(1, n_jumps + 1):
        p = jump_matrix[path[-1], :] * powers[n_jumps - j][:, end]
        path.append(int(rng.choice(n_states, p=p / p.sum())))

    segments = []
    segment_start = 0.0
    current = start
    for time, state in zip(times, path[1:]):
        if state != current:
            segments.append((current, float(time - segment_start)))
            segment_start = time
            current = state
    segments.append((current, float(length - segment_start)))
    return segments


class StochasticCharacterMapper:
    """Draws stochastic character histories from a fitted discrete model.

    Args:
        fit: A DiscreteModelFit.
        n_simulations: Default number of histories per call to `simulate`.
        threads: Default number of processes.
        show_progress: Display a progress bar.

    Raises:
        RateMatrixSingularError if the fitted rate matrix is reducible.
    """

    def __init__(
        self,
        fit: DiscreteModelFit,
        n_simulations: int = 100,
        threads: int = 1,
        show_progress: bool = False,
    ) -> None:
        if not fit.rate_matrix.is_irreducible():
            raise RateMatrixSingularError(
                "Cannot map characters with a reducible rate matrix.",
                component="StochasticCharacterMapper",
            )
        self.tree = fit.tree
        self.rate_matrix: RateMatrix = fit.rate_matrix
        self.root_prior = np.asarray(fit.root_prior, dtype=float)
        self.n_simulations = n_simulations
        self.threads = threads
        self.show_progress = show_progress

        self.__probabilities = transition_matrices(self.tree, self.rate_matrix)
        self.__partials, _ = conditional_likelihoods(
            self.tree, fit.tip_partials(), self.__probabilities
        )

    @classmethod
    def from_config(
        cls,
        fit: DiscreteModelFit,
        parameters: Dict[str, Dict[str, Any]],
        **overrides,
    ) -> "StochasticCharacterMapper":
        """Builds a mapper from a parsed analysis configuration."""
        kwargs = {
            "n_simulations": parameters["stochastic_mapping"]["n_simulations"],
            "show_progress": parameters["stochastic_mapping"]["show_progress"],
            "threads": parameters["general"]["threads"],
        }
        kwargs.update(overrides)
        return cls(fit, **kwargs)

    def sample_node_states(self, rng: np.random.Generator) -> np.ndarray:
        """Draws the states of all nodes jointly from their posterior."""
        n_states = self.rate_matrix.n_states
        node_states = np.zeros(len(self.tree.parent_indices), dtype=int)

        p = self.root_prior * self.__partials[0]
        node_states[0] = rng.choice(n_states, p=p / p.sum())
        for i in self.tree.preorder(indices=True):
            if i == 0:
                continue
            parent_state = node_states[self.tree.parent_indices[i]]
            p = self.__probabilities[i][parent_state, :] * self.__partials[i]
            node_states[i] = rng.choice(n_states, p=p / p.sum())
        return node_states

    def simulate_history(
        self, rng: np.random.Generator
    ) -> StochasticCharacterHistory:
        """Draws one history with its own random generator."""
        node_states = self.sample_node_states(rng)
        q = self.rate_matrix.matrix
        segments: List[List[Segment]] = [[]]
        for i in range(1, len(node_states)):
            segments.append(
                sample_bridge(
                    q,
                    node_states[self.tree.parent_indices[i]],
                    node_states[i],
                    self.tree.branch_lengths[i],
                    rng,
                )
            )
        return StochasticCharacterHistory(
            self.tree, self.rate_matrix.states, node_states, segments
        )

    @log_runtime
    def simulate(
        self,
        n: Optional[int] = None,
        random_seed: Optional[Union[int, np.random.SeedSequence]] = None,
        threads: Optional[int] = None,
    ) -> StochasticMapSample:
        """Draws independent stochastic character histories.

        Every history gets its own generator spawned from `random_seed`, so
        the sample is reproducible and does not depend on `threads`.

        Args:
            n: Number of histories. Defaults to `n_simulations`.
            random_seed: Seed of the sample.
            threads: Number of processes. Defaults to `threads`.

        Returns:
            A StochasticMapSample of `n` histories.

        Raises:
            InvalidParameterError if n < 1.
        """
        n = self.n_simulations if n is None else n
        threads = self.threads if threads is None else threads
        if n < 1:
            raise InvalidParameterError(
                f"Number of simulations must be positive, got {n}.",
                component="StochasticCharacterMapper",
                parameter="n",
            )

        generators = spawn_generators(random_seed, n)
        if threads > 1:
            with multiprocessing.Pool(processes=threads) as pool:
                histories = list(
                    tqdm(
                        pool.imap(self.simulate_history, generators),
                        total=n,
                        disable=not self.show_progress,
                    )
                )
        else:
            histories = [
                self.simulate_history(rng)
                for rng in tqdm(
                    generators, total=n, disable=not self.show_progress
                )
            ]

        logger.info(f"Simulated {n} stochastic character histories.")
        return StochasticMapSample(histories)
