"""
Continuous-time Markov (Mk) models of discrete-trait evolution.

A RateMatrix Q over a finite set of states is estimated by maximum
likelihood, computing the likelihood of the tip states with Felsenstein's
pruning recursion: at each internal node the conditional likelihood vector
is the product, over its children, of exp(Q t_child) applied to the child's
vector. Vectors are rescaled at every node and the log scaling factors are
accumulated, so large trees do not underflow.
"""
import enum
import threading
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import networkx as nx
import numpy as np
import pandas as pd
import scipy.linalg

from phylotrait.data import MatchedData, PhyloTree
from phylotrait.mixins import (
    DegenerateInputError,
    InvalidParameterError,
    RateMatrixSingularError,
    TraitTableError,
    log_runtime,
    logger,
)
from phylotrait.tools.continuous_models import information_criteria
from phylotrait.tools.optimization import (
    OptimizationResult,
    check_optimization_result,
    multistart_minimize,
)


class DiscreteModel(enum.Enum):
    """Closed set of rate-matrix structures."""

    ER = "ER"
    SYM = "SYM"
    ARD = "ARD"

    @classmethod
    def parse(cls, model: Union[str, "DiscreteModel"]) -> "DiscreteModel":
        """Resolves a model given as an enum member or a name."""
        if isinstance(model, DiscreteModel):
            return model
        aliases = {
            "equal-rates": cls.ER,
            "symmetric": cls.SYM,
            "all-rates-different": cls.ARD,
        }
        name = str(model)
        if name.lower() in aliases:
            return aliases[name.lower()]
        for member in cls:
            if name.upper() == member.value:
                return member
        raise InvalidParameterError(
            f"Unknown discrete model {model}. Choose one of "
            f"{[m.value for m in cls]}.",
            component="DiscreteModel",
            parameter="model",
        )

    def rate_index(self, n_states: int) -> np.ndarray:
        """Maps every off-diagonal cell of Q to a free-parameter index.

        Returns:
            An integer matrix with -1 on the diagonal.
        """
        index = np.full((n_states, n_states), -1, dtype=int)
        parameter = 0
        for i in range(n_states):
            for j in range(n_states):
                if i == j:
                    continue
                if self is DiscreteModel.ER:
                    index[i, j] = 0
                elif self is DiscreteModel.SYM:
                    if i < j:
                        index[i, j] = index[j, i] = parameter
                        parameter += 1
                else:
                    index[i, j] = parameter
                    parameter += 1
        return index

    def n_parameters(self, n_states: int) -> int:
        """Number of free rates."""
        return int(self.rate_index(n_states).max()) + 1


class RateMatrix:
    """Instantaneous transition-rate matrix of a continuous-time Markov chain.

    Args:
        matrix: Square matrix with non-negative off-diagonal entries and rows
            summing to zero.
        states: Labels of the states, in row order.
        tolerance: Allowed deviation of the row sums from zero, relative to
            the largest rate.

    Raises:
        InvalidParameterError if the matrix is malformed.
    """

    def __init__(
        self,
        matrix: np.ndarray,
        states: Sequence[Any],
        tolerance: float = 1e-8,
    ) -> None:
        matrix = np.array(matrix, dtype=float)
        states = list(states)
        if matrix.ndim != 2 or matrix.shape[0] != matrix.shape[1]:
            raise InvalidParameterError(
                "Rate matrix must be square.",
                component="RateMatrix",
                parameter="matrix",
            )
        if len(states) != matrix.shape[0] or len(set(states)) != len(states):
            raise InvalidParameterError(
                "States must be unique, one per row of the rate matrix.",
                component="RateMatrix",
                parameter="states",
            )
        if not np.all(np.isfinite(matrix)):
            raise InvalidParameterError(
                "Rate matrix has non-finite entries.",
                component="RateMatrix",
                parameter="matrix",
            )
        off_diagonal = matrix[~np.eye(len(states), dtype=bool)]
        if np.any(off_diagonal < 0):
            raise InvalidParameterError(
                "Off-diagonal rates must be non-negative.",
                component="RateMatrix",
                parameter="matrix",
            )
        scale = max(np.abs(matrix).max(), 1.0)
        if np.any(np.abs(matrix.sum(axis=1)) > tolerance * scale):
            raise InvalidParameterError(
                "Rows of the rate matrix must sum to zero.",
                component="RateMatrix",
                parameter="matrix",
            )

        self._matrix = matrix
        self._matrix.setflags(write=False)
        self._states = states

    @classmethod
    def from_rates(
        cls, rates: np.ndarray, states: Sequence[Any]
    ) -> "RateMatrix":
        """Builds a rate matrix from its off-diagonal rates.

        The diagonal of `rates` is ignored and replaced by the negative row
        sums.
        """
        matrix = np.array(rates, dtype=float)
        np.fill_diagonal(matrix, 0.0)
        np.fill_diagonal(matrix, -matrix.sum(axis=1))
        return cls(matrix, states)

    @classmethod
    def from_parameters(
        cls,
        parameters: np.ndarray,
        model: Union[str, DiscreteModel],
        states: Sequence[Any],
    ) -> "RateMatrix":
        """Builds the rate matrix of a model from its free rates."""
        index = DiscreteModel.parse(model).rate_index(len(states))
        rates = np.where(index >= 0, np.asarray(parameters)[index], 0.0)
        return cls.from_rates(rates, states)

    def __repr__(self) -> str:
        return (
            f"RateMatrix(states={self._states}, "
            f"matrix={self._matrix.tolist()})"
        )

    @property
    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    @property
    def states(self) -> List[Any]:
        return self._states[:]

    @property
    def n_states(self) -> int:
        return len(self._states)

    @property
    def exit_rates(self) -> np.ndarray:
        """Total rate of leaving each state."""
        return -np.diag(self._matrix)

    def transition_probabilities(self, t: float) -> np.ndarray:
        """Transition probability matrix exp(Q t)."""
        probabilities = scipy.linalg.expm(self._matrix * t)
        probabilities = np.clip(probabilities, 0.0, None)
        return probabilities / probabilities.sum(axis=1, keepdims=True)

    def is_irreducible(self, minimum_rate: float = 0.0) -> bool:
        """Whether every state can be reached from every other state.

        Args:
            minimum_rate: Rates at or below this value count as absent.
        """
        graph = nx.DiGraph()
        graph.add_nodes_from(range(self.n_states))
        for i in range(self.n_states):
            for j in range(self.n_states):
                if i != j and self._matrix[i, j] > minimum_rate:
                    graph.add_edge(i, j)
        return nx.is_strongly_connected(graph)

    def stationary_distribution(self) -> np.ndarray:
        """Solves pi Q = 0 with pi summing to one.

        Raises:
            RateMatrixSingularError if the chain is reducible.
        """
        if not self.is_irreducible():
            raise RateMatrixSingularError(
                "A reducible rate matrix has no unique stationary "
                "distribution.",
                component="RateMatrix",
            )
        system = np.vstack([self._matrix.T, np.ones(self.n_states)])
        target = np.zeros(self.n_states + 1)
        target[-1] = 1.0
        pi = np.linalg.lstsq(system, target, rcond=None)[0]
        pi = np.clip(pi, 0.0, None)
        return pi / pi.sum()

    def to_frame(self) -> pd.DataFrame:
        """The rate matrix labelled by state."""
        return pd.DataFrame(
            self._matrix.copy(), index=self._states, columns=self._states
        )


def tip_partial_likelihoods(
    tip_states: Sequence[Any], states: Sequence[Any]
) -> np.ndarray:
    """Indicator vectors of the observed tip states.

    A missing state (None) is compatible with every state and contributes a
    vector of ones.

    Raises:
        TraitTableError if a tip state is not one of `states`.
    """
    position = {state: i for i, state in enumerate(states)}
    partials = np.zeros((len(tip_states), len(states)))
    for row, state in enumerate(tip_states):
        if state is None:
            partials[row, :] = 1.0
        elif state in position:
            partials[row, position[state]] = 1.0
        else:
            raise TraitTableError(
                f"Observed state {state} is not among the model states "
                f"{list(states)}.",
                component="DiscreteModelFitter",
            )
    return partials


def transition_matrices(
    tree: PhyloTree, rate_matrix: RateMatrix
) -> List[np.ndarray]:
    """exp(Q t) for the branch above every node, in arena order."""
    cache = {}
    matrices = []
    for length in tree.branch_lengths:
        if length not in cache:
            cache[length] = rate_matrix.transition_probabilities(length)
        matrices.append(cache[length])
    return matrices


def conditional_likelihoods(
    tree: PhyloTree,
    tip_partials: np.ndarray,
    probabilities: List[np.ndarray],
) -> Tuple[np.ndarray, float]:
    """Pruning recursion.

    Args:
        tree: A PhyloTree.
        tip_partials: Tip likelihood vectors in canonical tip order.
        probabilities: Transition matrices from :func:`transition_matrices`.

    Returns:
        The rescaled conditional likelihood vector of every node in arena
        order, and the accumulated log scaling factor. The likelihood given
        a root distribution p is log(p @ partials[root]) + log_scale.
    """
    n_nodes = len(tree.parent_indices)
    partials = np.ones((n_nodes, tip_partials.shape[1]))
    partials[tree.tip_indices] = tip_partials

    log_scale = 0.0
    for i in tree.postorder(indices=True):
        children = tree.children_indices[i]
        if len(children) == 0:
            continue
        vector = np.ones(tip_partials.shape[1])
        for c in children:
            vector = vector * (probabilities[c] @ partials[c])
        scale = vector.max()
        if scale <= 0:
            return partials, -np.inf
        partials[i] = vector / scale
        log_scale += np.log(scale)
    return partials, log_scale


def resolve_root_prior(
    root_prior: Union[str, Sequence[float]], rate_matrix: RateMatrix
) -> np.ndarray:
    """Root state distribution: "equal", "stationary", or explicit."""
    if isinstance(root_prior, str):
        if root_prior == "equal":
            return np.full(rate_matrix.n_states, 1.0 / rate_matrix.n_states)
        if root_prior == "stationary":
            return rate_matrix.stationary_distribution()
        raise InvalidParameterError(
            f"Unknown root prior {root_prior}.",
            component="DiscreteModelFitter",
            parameter="root_prior",
        )
    prior = np.asarray(root_prior, dtype=float)
    if (
        prior.shape != (rate_matrix.n_states,)
        or np.any(prior < 0)
        or not np.isclose(prior.sum(), 1.0)
    ):
        raise InvalidParameterError(
            "Root prior must be a probability vector over the states.",
            component="DiscreteModelFitter",
            parameter="root_prior",
        )
    return prior


def discrete_log_likelihood(
    tree: PhyloTree,
    tip_partials: np.ndarray,
    rate_matrix: RateMatrix,
    root_prior: Union[str, Sequence[float]] = "equal",
) -> float:
    """Log-likelihood of tip states under a rate matrix."""
    partials, log_scale = conditional_likelihoods(
        tree, tip_partials, transition_matrices(tree, rate_matrix)
    )
    if not np.isfinite(log_scale):
        return -np.inf
    prior = resolve_root_prior(root_prior, rate_matrix)
    root_likelihood = float(prior @ partials[0])
    if root_likelihood <= 0:
        return -np.inf
    return float(np.log(root_likelihood) + log_scale)


def fitch_parsimony_score(tree: PhyloTree, tip_states: Sequence[Any]) -> int:
    """Minimum number of state changes (Fitch), multifurcations allowed.

    Missing tip states are compatible with any state.
    """
    n_nodes = len(tree.parent_indices)
    observed = {s for s in tip_states if s is not None}
    sets: List[Optional[set]] = [None] * n_nodes
    for position, i in enumerate(tree.tip_indices):
        state = tip_states[position]
        sets[i] = set(observed) if state is None else {state}

    score = 0
    for i in tree.postorder(indices=True):
        children = tree.children_indices[i]
        if len(children) == 0:
            continue
        counts: Dict[Any, int] = {}
        for c in children:
            for state in sets[c]:
                counts[state] = counts.get(state, 0) + 1
        best = max(counts.values())
        sets[i] = {s for s, count in counts.items() if count == best}
        score += len(children) - best
    return score


class DiscreteModelFit:
    """Result of a discrete-model fit.

    Attributes:
        model: The fitted DiscreteModel.
        rate_matrix: The estimated RateMatrix.
        root_prior: Root state distribution used in the fit.
        log_likelihood: Maximized log-likelihood.
        k: Number of free rates.
        n: Number of tips.
        aic: Akaike information criterion.
        aicc: Small-sample corrected AIC.
        converged: Whether the optimizer reported convergence.
        tree: The tree the model was fitted on.
        tip_states: Observed tip states in tip order (None if missing).
    """

    def __init__(
        self,
        model: DiscreteModel,
        rate_matrix: RateMatrix,
        root_prior: np.ndarray,
        log_likelihood: float,
        tree: PhyloTree,
        tip_states: List[Any],
        converged: bool = True,
        n_iterations: int = 0,
        message: str = "",
    ):
        self.model = model
        self.rate_matrix = rate_matrix
        self.root_prior = root_prior
        self.log_likelihood = log_likelihood
        self.tree = tree
        self.tip_states = tip_states
        self.k = model.n_parameters(rate_matrix.n_states)
        self.n = tree.n_tips
        criteria = information_criteria(log_likelihood, self.k, self.n)
        self.aic = criteria["aic"]
        self.aicc = criteria["aicc"]
        self.converged = converged
        self.n_iterations = n_iterations
        self.message = message

    def __repr__(self) -> str:
        return (
            f"DiscreteModelFit(model={self.model.value}, "
            f"states={self.rate_matrix.states}, "
            f"logL={self.log_likelihood:.4f}, AIC={self.aic:.4f}, "
            f"converged={self.converged})"
        )

    @property
    def states(self) -> List[Any]:
        return self.rate_matrix.states

    def tip_partials(self) -> np.ndarray:
        return tip_partial_likelihoods(self.tip_states, self.states)

    def marginal_ancestral_states(self) -> pd.DataFrame:
        """Posterior probability of every state at every internal node.

        Computed with one postorder (pruning) and one preorder pass: the
        posterior at a node is proportional to the likelihood of the data
        below it times the probability of its state given the data outside
        of its subtree.

        Returns:
            A DataFrame indexed by internal node (preorder) with one column
            per state; rows sum to one.
        """
        tree = self.tree
        probabilities = transition_matrices(tree, self.rate_matrix)
        partials, _ = conditional_likelihoods(
            tree, self.tip_partials(), probabilities
        )

        n_nodes = len(tree.parent_indices)
        outside = np.zeros((n_nodes, self.rate_matrix.n_states))
        outside[0] = self.root_prior
        for i in tree.preorder(indices=True):
            children = tree.children_indices[i]
            below = [probabilities[c] @ partials[c] for c in children]
            for position, c in enumerate(children):
                message = outside[i].copy()
                for other, vector in enumerate(below):
                    if other != position:
                        message = message * vector
                message = message @ probabilities[c]
                outside[c] = message / message.sum()

        internal = [
            i
            for i in tree.preorder(indices=True)
            if len(tree.children_indices[i]) > 0
        ]
        posterior = outside[internal] * partials[internal]
        posterior = posterior / posterior.sum(axis=1, keepdims=True)
        return pd.DataFrame(
            posterior,
            index=[tree.name_of(i) for i in internal],
            columns=self.states,
        )


class DiscreteModelFitter:
    """Fits an Mk rate matrix to a discrete trait by maximum likelihood.

    Rates are searched in log space between `rate_lower_bound` and
    `rate_upper_scale / T`, T being the height of the tree, starting from
    the parsimony score divided by the total branch length.

    Args:
        model: A DiscreteModel or its name ("ER", "SYM", "ARD").
        root_prior: "equal", "stationary" or an explicit probability vector.
        states: State labels. The observed states (sorted) if None.
        optimizer: Optimizer following the contract of
            `phylotrait.tools.optimization`. Defaults to L-BFGS-B.
        n_starts: Number of starting points.
        max_iterations: Iteration budget of each optimizer run.
        rate_lower_bound: Smallest rate searched.
        rate_upper_scale: Largest rate searched, in units of 1 / tree height.
        min_expected_transitions: A rate whose expected number of events over
            the whole tree is below this value counts as absent when
            checking irreducibility.
        strict: Raise OptimizationFailedError when the optimizer does not
            converge.
        cancel_event: When set, a running search stops and returns its best
            point so far, flagged as not converged.
    """

    def __init__(
        self,
        model: Union[str, DiscreteModel] = "ER",
        root_prior: Union[str, Sequence[float]] = "equal",
        states: Optional[Sequence[Any]] = None,
        optimizer: Optional[Callable[..., OptimizationResult]] = None,
        n_starts: int = 3,
        max_iterations: int = 500,
        rate_lower_bound: float = 1e-8,
        rate_upper_scale: float = 100.0,
        min_expected_transitions: float = 1e-4,
        strict: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ):
        self.model = DiscreteModel.parse(model)
        self.root_prior = root_prior
        self.states = list(states) if states is not None else None
        self.optimizer = optimizer
        self.n_starts = n_starts
        self.max_iterations = max_iterations
        self.rate_lower_bound = rate_lower_bound
        self.rate_upper_scale = rate_upper_scale
        self.min_expected_transitions = min_expected_transitions
        self.strict = strict
        self.cancel_event = cancel_event

    @classmethod
    def from_config(
        cls, parameters: Dict[str, Dict[str, Any]], **overrides
    ) -> "DiscreteModelFitter":
        """Builds a fitter from a parsed analysis configuration."""
        discrete = parameters["discrete"]
        optimizer = parameters["optimizer"]
        kwargs = {
            "model": discrete["model"],
            "root_prior": discrete["root_prior"],
            "n_starts": optimizer["n_starts"],
            "max_iterations": optimizer["max_iterations"],
            "strict": optimizer["strict"],
            "rate_lower_bound": discrete["rate_lower_bound"],
            "rate_upper_scale": discrete["rate_upper_scale"],
            "min_expected_transitions": discrete["min_expected_transitions"],
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    def __resolve_states(self, matched: MatchedData, trait: str) -> List[Any]:
        observed = matched.traits.states(trait)
        if self.states is None:
            states = observed
        else:
            unknown = [s for s in observed if s not in self.states]
            if unknown:
                raise TraitTableError(
                    f"Observed states {unknown} are not among {self.states}.",
                    component="DiscreteModelFitter",
                    parameter=trait,
                )
            states = self.states
        if len(states) < 2:
            raise DegenerateInputError(
                f"Trait {trait} needs at least two states, found {states}.",
                component="DiscreteModelFitter",
                parameter=trait,
            )
        return states

    @log_runtime
    def fit(self, matched: MatchedData, trait: str) -> DiscreteModelFit:
        """Estimates the rate matrix of a discrete trait.

        Args:
            matched: A MatchedData object.
            trait: Name of a discrete trait. Missing tip states are allowed.

        Returns:
            A DiscreteModelFit.

        Raises:
            DegenerateInputError if fewer than two states are available or
                the tree has no branch length.
            RateMatrixSingularError if the estimated matrix is reducible.
            OptimizationFailedError if no finite likelihood is found, or
                `strict` is set and the search did not converge.
        """
        tree = matched.tree
        tip_states = matched.discrete_vector(trait)
        if all(state is None for state in tip_states):
            raise DegenerateInputError(
                f"Trait {trait} has no observed state.",
                component="DiscreteModelFitter",
                parameter=trait,
            )
        states = self.__resolve_states(matched, trait)
        total_length = tree.get_total_branch_length()
        if total_length <= 0:
            raise DegenerateInputError(
                "Tree has no branch length.", component="DiscreteModelFitter"
            )

        tip_partials = tip_partial_likelihoods(tip_states, states)
        n_parameters = self.model.n_parameters(len(states))

        def negative_log_likelihood(x: np.ndarray) -> float:
            rate_matrix = RateMatrix.from_parameters(
                np.exp(x), self.model, states
            )
            return -discrete_log_likelihood(
                tree, tip_partials, rate_matrix, self.root_prior
            )

        lower = np.log(self.rate_lower_bound)
        upper = np.log(self.rate_upper_scale / tree.get_max_depth_of_tree())
        parsimony = fitch_parsimony_score(tree, tip_states)
        start = np.clip(np.log(max(parsimony, 1) / total_length), lower, upper)
        logger.debug(f"Parsimony score {parsimony}, starting log-rate {start}")
        offsets = [0.0]
        if self.n_starts > 1:
            offsets = np.linspace(-1, 1, self.n_starts)
        starts = [
            np.clip(np.full(n_parameters, start + np.log(10) * o), lower, upper)
            for o in sorted(offsets, key=abs)
        ]

        result = multistart_minimize(
            negative_log_likelihood,
            starts,
            [(lower, upper)] * n_parameters,
            optimizer=self.optimizer,
            max_iterations=self.max_iterations,
            cancel_event=self.cancel_event,
        )
        check_optimization_result(
            result, "DiscreteModelFitter", "rates", self.strict
        )

        rate_matrix = RateMatrix.from_parameters(
            np.exp(result.x), self.model, states
        )
        if not rate_matrix.is_irreducible(
            self.min_expected_transitions / total_length
        ):
            raise RateMatrixSingularError(
                f"Estimated rate matrix is reducible: some state cannot be "
                f"left or reached.\n{rate_matrix.to_frame()}",
                component="DiscreteModelFitter",
                parameter="rates",
            )

        fit = DiscreteModelFit(
            self.model,
            rate_matrix,
            resolve_root_prior(self.root_prior, rate_matrix),
            -result.fun,
            tree,
            tip_states,
            converged=result.converged,
            n_iterations=result.n_iterations,
            message=result.message,
        )
        logger.info(f"Fitted {fit}")
        return fit
