"""
Phylogenetic independent contrasts (Felsenstein 1985).

Contrasts are computed in one postorder pass over the tree. At each internal
node the two child estimates x1, x2 with adjusted branch lengths v1, v2 give

    contrast     = (x1 - x2) / sqrt(v1 + v2)
    node value   = (v2 x1 + v1 x2) / (v1 + v2)
    added length = v1 v2 / (v1 + v2)

and the node's value and adjusted length (its own branch plus the added
length) are passed upward. Multifurcations are resolved left to right: the
first two children are combined into a virtual node joined by a zero-length
branch, which is then combined with the third child, and so on.
"""
from typing import Dict, List, Tuple, Union

import numpy as np
import pandas as pd
import scipy.stats

from phylotrait.data import MatchedData, PhyloTree
from phylotrait.mixins import (
    DegenerateInputError,
    MissingTraitDataError,
    PolytomyUnsupportedError,
)


def _tip_values(
    tree: PhyloTree, values: Union[pd.Series, Dict[str, float]]
) -> np.ndarray:
    values = pd.Series(values, dtype=float)
    tips = tree.tip_order()
    absent = [t for t in tips if t not in values.index]
    if absent:
        raise MissingTraitDataError(
            f"No trait values for tips {absent[:5]}.",
            component="ContrastEngine",
        )
    tip_values = values.loc[tips].values
    if np.isnan(tip_values).any():
        raise MissingTraitDataError(
            "Contrasts require a value for every tip; drop missing values "
            "before computing contrasts.",
            component="ContrastEngine",
        )
    return tip_values


def _postorder_contrasts(
    tree: PhyloTree,
    tip_values: np.ndarray,
    scaled: bool,
    resolve_polytomies: bool,
) -> Tuple[List[Tuple[str, float, float, float]], np.ndarray]:
    """Runs the contrasts recursion.

    Returns:
        The contrast records (node, contrast, variance, node_state), and
        the estimated value at every node in arena order.
    """
    n_nodes = len(tree.parent_indices)
    estimate = np.zeros(n_nodes)
    adjusted = np.zeros(n_nodes)
    estimate[tree.tip_indices] = tip_values

    records = []
    for i in tree.postorder(indices=True):
        children = tree.children_indices[i]
        own_length = tree.branch_lengths[i]
        if len(children) == 0:
            adjusted[i] = own_length
            continue

        if len(children) > 2 and not resolve_polytomies:
            raise PolytomyUnsupportedError(
                f"Node {tree.name_of(i)} has {len(children)} children.",
                component="ContrastEngine",
                parameter="resolve_polytomies",
            )

        x1, v1 = estimate[children[0]], adjusted[children[0]]
        for c in children[1:]:
            x2, v2 = estimate[c], adjusted[c]
            variance = v1 + v2
            if variance <= 0:
                raise DegenerateInputError(
                    f"Sister lineages below node {tree.name_of(i)} both "
                    "have zero adjusted length.",
                    component="ContrastEngine",
                    parameter="branch_lengths",
                )
            difference = x1 - x2
            x1 = (v2 * x1 + v1 * x2) / variance
            v1 = v1 * v2 / variance
            records.append(
                (
                    tree.name_of(i),
                    difference / np.sqrt(variance) if scaled else difference,
                    variance,
                    x1,
                )
            )

        estimate[i] = x1
        adjusted[i] = own_length + v1

    return records, estimate


def compute_independent_contrasts(
    tree: PhyloTree,
    values: Union[pd.Series, Dict[str, float]],
    scaled: bool = True,
    resolve_polytomies: bool = True,
) -> pd.DataFrame:
    """Computes phylogenetic independent contrasts for one trait.

    Args:
        tree: A PhyloTree.
        values: Trait values keyed by tip label. Every tip needs a value.
        scaled: Divide each contrast by the square root of its variance. If
            False, raw differences are reported.
        resolve_polytomies: Resolve multifurcations left to right. If False,
            a multifurcation raises an error.

    Returns:
        A DataFrame with one row per contrast, in postorder, with columns
        `node`, `contrast`, `variance` (sum of the two adjusted lengths) and
        `node_state` (estimated value at the node once this contrast is
        taken). A node with k children contributes k - 1 rows.

    Raises:
        MissingTraitDataError if a tip has no value.
        PolytomyUnsupportedError if a multifurcation is found and
            `resolve_polytomies` is False.
        DegenerateInputError if two sister lineages both have zero adjusted
            branch length.
    """
    records, _ = _postorder_contrasts(
        tree, _tip_values(tree, values), scaled, resolve_polytomies
    )
    return pd.DataFrame(
        records, columns=["node", "contrast", "variance", "node_state"]
    )


def compute_independent_contrasts_for_trait(
    matched: MatchedData, trait: str, **kwargs
) -> pd.DataFrame:
    """Computes contrasts for a trait of a matched structure.

    Keyword arguments are passed to :func:`compute_independent_contrasts`.
    """
    return compute_independent_contrasts(
        matched.tree,
        pd.Series(matched.continuous_vector(trait), index=matched.taxa),
        **kwargs,
    )


def ancestral_state_estimates(
    tree: PhyloTree,
    values: Union[pd.Series, Dict[str, float]],
    resolve_polytomies: bool = True,
) -> pd.Series:
    """Contrast-based trait estimates at every internal node.

    Each estimate is the weighted average of the descendant tips only; at the
    root it coincides with the Brownian-motion GLS estimate of the root
    state.

    Returns:
        A Series indexed by internal node name, in preorder.
    """
    _, estimate = _postorder_contrasts(
        tree, _tip_values(tree, values), True, resolve_polytomies
    )
    internal = [
        i
        for i in tree.preorder(indices=True)
        if len(tree.children_indices[i]) > 0
    ]
    return pd.Series(
        estimate[internal], index=[tree.name_of(i) for i in internal]
    )


def contrast_regression(
    matched: MatchedData, response: str, predictor: str
) -> pd.Series:
    """Regresses response contrasts on predictor contrasts through the origin.

    On a bifurcating tree the slope equals the Brownian-motion GLS slope.

    Args:
        matched: A MatchedData object.
        response: Name of the response trait.
        predictor: Name of the predictor trait.

    Returns:
        A Series with `slope`, `std_error`, `t_value`, `p_value` and
        `df_residual`.

    Raises:
        DegenerateInputError if the predictor contrasts are all zero or
            there are fewer than two contrasts.
    """
    y = compute_independent_contrasts_for_trait(matched, response)["contrast"]
    x = compute_independent_contrasts_for_trait(matched, predictor)[
        "contrast"
    ]
    y, x = y.values, x.values

    sxx = float(x @ x)
    if len(x) < 2 or sxx == 0:
        raise DegenerateInputError(
            "Predictor contrasts carry no variation.",
            component="ContrastEngine",
            parameter=predictor,
        )
    slope = float(x @ y) / sxx
    residuals = y - slope * x
    df_residual = len(x) - 1
    std_error = np.sqrt(float(residuals @ residuals) / df_residual / sxx)
    if std_error > 0:
        t_value = slope / std_error
        p_value = 2 * scipy.stats.t.sf(abs(t_value), df_residual)
    else:
        t_value, p_value = np.inf, 0.0

    return pd.Series(
        {
            "slope": slope,
            "std_error": std_error,
            "t_value": t_value,
            "p_value": p_value,
            "df_residual": df_residual,
        }
    )
