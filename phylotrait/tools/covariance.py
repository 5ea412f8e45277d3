"""
Tree-induced covariance structures among tip values.

The Brownian-motion matrix C (C_ij = root-to-MRCA path length of tips i and
j) is computed once per tree by a single postorder pass. Every other model
(Ornstein-Uhlenbeck, Early-Burst, Pagel's lambda) is a deterministic
transform of C and of the tip depths, so it can be regenerated cheaply at
each step of a likelihood search.
"""
import enum
from typing import Dict, Optional, Tuple, Union

import numpy as np
import pandas as pd

from phylotrait.data import PhyloTree
from phylotrait.mixins import InvalidParameterError


class ContinuousModel(enum.Enum):
    """Closed set of continuous-trait evolution models."""

    BM = "BM"
    OU = "OU"
    EB = "EB"
    LAMBDA = "lambda"

    @classmethod
    def parse(cls, model: Union[str, "ContinuousModel"]) -> "ContinuousModel":
        """Resolves a model given as an enum member or a name."""
        if isinstance(model, ContinuousModel):
            return model
        for member in cls:
            if str(model).lower() == member.value.lower():
                return member
        raise InvalidParameterError(
            f"Unknown continuous model {model}. Choose one of "
            f"{[m.value for m in cls]}.",
            component="ContinuousModel",
            parameter="model",
        )

    @property
    def shape_parameter(self) -> Optional[str]:
        """Name of the model's shape parameter (None for BM)."""
        return _SHAPE_PARAMETERS[self]

    @property
    def neutral_value(self) -> Optional[float]:
        """Value of the shape parameter at which the model equals BM."""
        return _NEUTRAL_VALUES[self]


_SHAPE_PARAMETERS = {
    ContinuousModel.BM: None,
    ContinuousModel.OU: "alpha",
    ContinuousModel.EB: "rate_change",
    ContinuousModel.LAMBDA: "lambda",
}

_NEUTRAL_VALUES = {
    ContinuousModel.BM: None,
    ContinuousModel.OU: 0.0,
    ContinuousModel.EB: 0.0,
    ContinuousModel.LAMBDA: 1.0,
}


def _check_parameter(
    name: str, value: float, lower: float, upper: float
) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        raise InvalidParameterError(
            f"{name} must be a number, got {value}.",
            component="CovarianceBuilder",
            parameter=name,
        )
    if not np.isfinite(value) or value < lower or value > upper:
        raise InvalidParameterError(
            f"{name} must lie in [{lower}, {upper}], got {value}.",
            component="CovarianceBuilder",
            parameter=name,
        )
    return value


def shared_path_matrix(tree: PhyloTree, node_depths: np.ndarray) -> np.ndarray:
    """Assigns each node's depth to every tip pair it is the MRCA of.

    Tips are indexed in the tree's canonical tip order. Each tip pair is
    written exactly once, at the postorder visit of its most recent common
    ancestor, so the total work is O(n^2) for n tips.

    Args:
        tree: A PhyloTree.
        node_depths: A depth for every node of the tree, in arena order.
            With the root-to-node times this yields the BM matrix.

    Returns:
        An n x n symmetric matrix.
    """
    n_nodes = len(tree.parent_indices)
    position = np.full(n_nodes, -1, dtype=int)
    position[tree.tip_indices] = np.arange(tree.n_tips)

    matrix = np.zeros((tree.n_tips, tree.n_tips))
    tips_below = [None] * n_nodes
    for i in tree.postorder(indices=True):
        children = tree.children_indices[i]
        if len(children) == 0:
            tips_below[i] = np.array([position[i]])
            matrix[position[i], position[i]] = node_depths[i]
            continue

        groups = [tips_below[c] for c in children]
        for a in range(len(groups)):
            for b in range(a + 1, len(groups)):
                matrix[np.ix_(groups[a], groups[b])] = node_depths[i]
                matrix[np.ix_(groups[b], groups[a])] = node_depths[i]
        tips_below[i] = np.concatenate(groups)
        for c in children:
            tips_below[c] = None

    return matrix


class CovarianceBuilder:
    """Builds covariance matrices of tip values for a fixed tree.

    All matrices are in units of the evolutionary rate (sigma2 = 1) and are
    indexed by the tree's canonical tip order. Every call returns a fresh
    array owned by the caller.

    Args:
        tree: The tree whose covariance structures are built.
        cache: Memoize matrices per (model, parameters) pair. Memoized
            matrices are still copied on return.
    """

    def __init__(self, tree: PhyloTree, cache: bool = False) -> None:
        self.tree = tree
        self.__shared = shared_path_matrix(tree, tree.node_times)
        self.__shared.setflags(write=False)
        self.__tip_times = tree.node_times[tree.tip_indices]
        self.__cache: Optional[Dict[Tuple, np.ndarray]] = {} if cache else None

    @property
    def n_tips(self) -> int:
        return self.tree.n_tips

    @property
    def tree_height(self) -> float:
        return float(self.__tip_times.max())

    def brownian_motion(self) -> np.ndarray:
        """Brownian-motion covariance: shared root-to-MRCA path lengths."""
        return self.__shared.copy()

    def ornstein_uhlenbeck(
        self, alpha: float, stationary_root: bool = False
    ) -> np.ndarray:
        """Ornstein-Uhlenbeck covariance with selection strength alpha.

        With a root state fixed at the start of the process,

            V_ij = exp(-alpha d_ij) (1 - exp(-2 alpha C_ij)) / (2 alpha)

        where d_ij = t_i + t_j - 2 C_ij is the patristic distance. This
        tends to C as alpha -> 0 and equals C at alpha = 0. With the root
        drawn from the stationary distribution, V_ij = exp(-alpha d_ij) /
        (2 alpha), which requires alpha > 0.

        Args:
            alpha: Selection strength, non-negative.
            stationary_root: Use the stationary-root form.

        Raises:
            InvalidParameterError if alpha is negative or not finite, or
                zero with `stationary_root`.
        """
        alpha = _check_parameter("alpha", alpha, 0.0, np.inf)
        if stationary_root and alpha == 0:
            raise InvalidParameterError(
                "The stationary-root OU covariance requires alpha > 0.",
                component="CovarianceBuilder",
                parameter="alpha",
            )
        if alpha == 0:
            return self.brownian_motion()

        t = self.__tip_times
        distance = t[:, None] + t[None, :] - 2 * self.__shared
        decay = np.exp(-alpha * distance)
        if stationary_root:
            return decay / (2 * alpha)
        return decay * (-np.expm1(-2 * alpha * self.__shared)) / (2 * alpha)

    def early_burst(self, rate_change: float) -> np.ndarray:
        """Early-Burst covariance with exponential rate change r <= 0.

        Each time t since the root is mapped to (exp(r t) - 1) / r, which
        rescales every branch by the integrated rate over its span.

        Raises:
            InvalidParameterError if r is positive or not finite.
        """
        rate_change = _check_parameter("rate_change", rate_change, -np.inf, 0.0)
        if rate_change == 0:
            return self.brownian_motion()
        return np.expm1(rate_change * self.__shared) / rate_change

    def pagel_lambda(
        self, lambda_: float, base: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """Multiplies the off-diagonal entries of a covariance by lambda.

        Args:
            lambda_: Phylogenetic signal in [0, 1]. 0 yields independent
                tips, 1 the unmodified matrix.
            base: Matrix to transform. Brownian motion if None.

        Raises:
            InvalidParameterError if lambda is outside of [0, 1].
        """
        lambda_ = _check_parameter("lambda", lambda_, 0.0, 1.0)
        base = self.brownian_motion() if base is None else np.array(base)
        transformed = base * lambda_
        np.fill_diagonal(transformed, np.diag(base))
        return transformed

    def build(
        self, model: Union[str, ContinuousModel], **parameters
    ) -> np.ndarray:
        """Builds the covariance matrix of a model.

        Args:
            model: A ContinuousModel or its name.
            **parameters: The model's shape parameter (`alpha`, `rate_change`
                or `lambda`), defaulting to its neutral value, and for OU
                optionally `stationary_root`.

        Returns:
            A covariance matrix in canonical tip order.

        Raises:
            InvalidParameterError for unknown models, unexpected parameters
                or out-of-domain values.
        """
        model = ContinuousModel.parse(model)
        allowed = {model.shape_parameter} - {None}
        if model is ContinuousModel.OU:
            allowed.add("stationary_root")
        unexpected = set(parameters) - allowed
        if unexpected:
            raise InvalidParameterError(
                f"Unexpected parameters for model {model.value}: "
                f"{sorted(unexpected)}",
                component="CovarianceBuilder",
                parameter=sorted(unexpected)[0],
            )

        key = None
        if self.__cache is not None:
            key = (model, tuple(sorted(parameters.items())))
            if key in self.__cache:
                return self.__cache[key].copy()

        value = parameters.get(model.shape_parameter, model.neutral_value)
        if model is ContinuousModel.BM:
            matrix = self.brownian_motion()
        elif model is ContinuousModel.OU:
            matrix = self.ornstein_uhlenbeck(
                value, parameters.get("stationary_root", False)
            )
        elif model is ContinuousModel.EB:
            matrix = self.early_burst(value)
        elif model is ContinuousModel.LAMBDA:
            matrix = self.pagel_lambda(value)
        else:
            raise InvalidParameterError(
                f"No covariance for model {model}.",
                component="CovarianceBuilder",
                parameter="model",
            )

        if key is not None:
            self.__cache[key] = matrix.copy()
        return matrix


def compute_covariance_matrix(
    tree: PhyloTree, model: Union[str, ContinuousModel] = "BM", **parameters
) -> pd.DataFrame:
    """Computes a tip covariance matrix labelled by taxon.

    Args:
        tree: A PhyloTree.
        model: A ContinuousModel or its name.
        **parameters: Shape parameter of the model, see
            :meth:`CovarianceBuilder.build`.

    Returns:
        A DataFrame indexed by the tree's tip order on both axes.
    """
    matrix = CovarianceBuilder(tree).build(model, **parameters)
    tips = tree.tip_order()
    return pd.DataFrame(matrix, index=tips, columns=tips)
