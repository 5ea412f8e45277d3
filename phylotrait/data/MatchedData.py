"""
Aligns a PhyloTree with a TraitTable.

The matched structure pairs a tree pruned to the taxa present on both sides
with a trait table restricted and reordered to exactly the tree's tip order,
so that row i of the table always describes tip i of the tree. The
identifiers dropped from each side are kept as diagnostics.
"""
from typing import Any, Callable, Iterable, List, Optional

import numpy as np
import pandas as pd

from phylotrait.data.PhyloTree import PhyloTree
from phylotrait.data.TraitTable import TraitTable
from phylotrait.mixins import (
    EmptyIntersectionError,
    MissingTraitDataError,
    TraitTableError,
    logger,
)


class MatchedData:
    """A pruned tree paired with a trait table in tip order.

    MatchedData objects are produced by :func:`match` and are never mutated;
    every filtering or transformation returns a new object.

    Args:
        tree: The pruned tree.
        traits: The trait table, indexed exactly by the tree's tip order.
        dropped_tree_tips: Tips of the original tree absent from the table.
        dropped_table_rows: Table rows absent from the original tree.
    """

    def __init__(
        self,
        tree: PhyloTree,
        traits: TraitTable,
        dropped_tree_tips: Optional[List[str]] = None,
        dropped_table_rows: Optional[List[str]] = None,
    ) -> None:
        if traits.taxa != tree.tip_order():
            raise TraitTableError(
                "Trait table rows are not aligned with the tree's tips.",
                component="MatchedData",
            )
        self.tree = tree
        self.traits = traits
        self.dropped_tree_tips = list(dropped_tree_tips or [])
        self.dropped_table_rows = list(dropped_table_rows or [])

    def __repr__(self) -> str:
        return (
            f"MatchedData(n_tips={self.n_tips}, traits={self.traits.traits}, "
            f"dropped_tree_tips={len(self.dropped_tree_tips)}, "
            f"dropped_table_rows={len(self.dropped_table_rows)})"
        )

    @property
    def n_tips(self) -> int:
        return self.tree.n_tips

    @property
    def taxa(self) -> List[str]:
        return self.tree.tip_order()

    def diagnostics(self) -> pd.DataFrame:
        """Lists the identifiers dropped from each side during matching."""
        records = [(t, "tree") for t in self.dropped_tree_tips] + [
            (t, "table") for t in self.dropped_table_rows
        ]
        return pd.DataFrame(records, columns=["taxon", "dropped_from"])

    def select(self, traits: Iterable[str]) -> "MatchedData":
        """Restricts the traits, sharing the same pruned tree."""
        return MatchedData(
            self.tree,
            self.traits.select(traits),
            self.dropped_tree_tips,
            self.dropped_table_rows,
        )

    def transform(
        self, trait: str, fn: Callable[[pd.Series], pd.Series], name: str
    ) -> "MatchedData":
        """Adds `fn(trait)` as trait `name`, sharing the same pruned tree."""
        return MatchedData(
            self.tree,
            self.traits.transform(trait, fn, name),
            self.dropped_tree_tips,
            self.dropped_table_rows,
        )

    def drop_missing(
        self, traits: Optional[Iterable[str]] = None
    ) -> "MatchedData":
        """Drops taxa missing any of `traits` and re-prunes the tree.

        Args:
            traits: Traits to check. All traits if None.

        Returns:
            A new MatchedData. The taxa dropped here are appended to
            `dropped_table_rows`.

        Raises:
            EmptyIntersectionError if every taxon has a missing value.
        """
        missing = self.traits.missing(traits)
        if not missing:
            return self
        rematched = match(self.tree, self.traits.dropna(traits))
        return MatchedData(
            rematched.tree,
            rematched.traits,
            self.dropped_tree_tips,
            self.dropped_table_rows + missing,
        )

    def continuous_vector(self, trait: str) -> np.ndarray:
        """Returns a continuous trait as an array in tip order.

        Raises:
            MissingTraitDataError if any value is missing.
        """
        values = self.traits.get_continuous(trait)
        if values.isna().any():
            raise MissingTraitDataError(
                f"Trait {trait} has missing values for "
                f"{values.index[values.isna()].tolist()[:5]}; call "
                "drop_missing first.",
                component="MatchedData",
                parameter=trait,
            )
        return values.values.astype(float)

    def discrete_vector(self, trait: str) -> List[Any]:
        """Returns a discrete trait as a list in tip order (None if missing)."""
        return self.traits.get_discrete(trait).tolist()


def match(tree: PhyloTree, table: TraitTable) -> MatchedData:
    """Matches a tree with a trait table.

    Computes the intersection of tip labels and table identifiers, prunes
    the tree to it and restricts the table to the pruned tree's tip order.
    The result depends only on the inputs.

    Args:
        tree: A PhyloTree.
        table: A TraitTable.

    Returns:
        A MatchedData object.

    Raises:
        EmptyIntersectionError if the tree and table share no taxa.
    """
    tips = tree.tip_order()
    in_table = set(table.taxa)
    in_tree = set(tips)

    shared = [t for t in tips if t in in_table]
    if not shared:
        raise EmptyIntersectionError(
            "The tree tips and the trait table share no taxa.",
            component="match",
        )

    dropped_tree_tips = [t for t in tips if t not in in_table]
    dropped_table_rows = [t for t in table.taxa if t not in in_tree]
    if dropped_tree_tips or dropped_table_rows:
        logger.info(
            f"Matched {len(shared)} taxa; dropped {len(dropped_tree_tips)} "
            f"tree tips and {len(dropped_table_rows)} table rows."
        )

    pruned = tree.prune_tips(dropped_tree_tips) if dropped_tree_tips else tree
    return MatchedData(
        pruned,
        table.subset(pruned.tip_order()),
        dropped_tree_tips,
        dropped_table_rows,
    )
