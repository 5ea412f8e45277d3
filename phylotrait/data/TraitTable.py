"""
This file stores the TraitTable, a mapping from taxon identifier to a record
of named trait values that is independent of any tree.

Traits are either continuous (numeric columns) or discrete (object,
categorical or boolean columns). Missing values are explicit (None / NaN) and
are never treated as zero.
"""
import warnings
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

import pandas as pd

from phylotrait.mixins import TraitTableError, TraitTableWarning, is_missing

CONTINUOUS = "continuous"
DISCRETE = "discrete"


def _as_discrete(column: pd.Series) -> pd.Series:
    """Casts a column to object dtype with None marking missing values.

    Integer-coded states stored as floats (a NaN upcasts an integer column)
    are cast back to int.
    """
    values = [None if is_missing(v) else v for v in column]
    if pd.api.types.is_float_dtype(column.dtype) and all(
        v is None or float(v).is_integer() for v in values
    ):
        values = [None if v is None else int(v) for v in values]
    return pd.Series(
        values,
        index=column.index,
        name=column.name,
        dtype=object,
    )


class TraitTable:
    """Taxon-by-trait table.

    Args:
        data: A DataFrame indexed by taxon identifier with one column per
            trait, or a dictionary mapping taxon identifiers to dictionaries of
            trait values.
        discrete_traits: Columns to treat as discrete even if their values
            are numeric (e.g. integer-coded states).

    Raises:
        TraitTableError if the identifiers are not unique strings or a
            requested discrete trait does not exist.
    """

    def __init__(
        self,
        data: Union[pd.DataFrame, Dict[str, Dict[str, Any]]],
        discrete_traits: Optional[List[str]] = None,
    ) -> None:
        if isinstance(data, dict):
            frame = pd.DataFrame.from_dict(data, orient="index")
        elif isinstance(data, pd.DataFrame):
            frame = data.copy()
        else:
            raise TraitTableError(
                "Please pass a pandas DataFrame or a dictionary.",
                component="TraitTable",
            )

        if not all(isinstance(i, str) for i in frame.index):
            raise TraitTableError(
                "Index of trait table must consist of strings.",
                component="TraitTable",
            )
        if frame.index.has_duplicates:
            duplicated = frame.index[frame.index.duplicated()].unique().tolist()
            raise TraitTableError(
                f"Duplicated taxon identifiers: {duplicated[:5]}",
                component="TraitTable",
            )

        for trait in discrete_traits or []:
            if trait not in frame.columns:
                raise TraitTableError(
                    f"Trait {trait} does not exist.",
                    component="TraitTable",
                    parameter=trait,
                )
            frame[trait] = _as_discrete(frame[trait])

        empty = [c for c in frame.columns if frame[c].isna().all()]
        if empty and frame.shape[0] > 0:
            warnings.warn(
                f"Traits without any observed value: {empty}",
                TraitTableWarning,
            )

        self._frame = frame

    def __repr__(self) -> str:
        return (
            f"TraitTable(n_taxa={self.n_taxa}, "
            f"continuous={self.continuous_traits}, "
            f"discrete={self.discrete_traits})"
        )

    def __len__(self) -> int:
        return self._frame.shape[0]

    def __contains__(self, taxon: str) -> bool:
        return taxon in self._frame.index

    @property
    def taxa(self) -> List[str]:
        return self._frame.index.tolist()

    @property
    def n_taxa(self) -> int:
        return self._frame.shape[0]

    @property
    def traits(self) -> List[str]:
        return self._frame.columns.tolist()

    @property
    def continuous_traits(self) -> List[str]:
        return [t for t in self.traits if self.kind(t) == CONTINUOUS]

    @property
    def discrete_traits(self) -> List[str]:
        return [t for t in self.traits if self.kind(t) == DISCRETE]

    def __check_trait(self, trait: str) -> None:
        if trait not in self._frame.columns:
            raise TraitTableError(
                f"Trait {trait} does not exist.",
                component="TraitTable",
                parameter=trait,
            )

    def kind(self, trait: str) -> str:
        """Returns whether a trait is "continuous" or "discrete"."""
        self.__check_trait(trait)
        column = self._frame[trait]
        if pd.api.types.is_bool_dtype(column) or not (
            pd.api.types.is_numeric_dtype(column)
        ):
            return DISCRETE
        return CONTINUOUS

    def get_continuous(self, trait: str) -> pd.Series:
        """Returns a continuous trait as a float Series (NaN when missing).

        Raises:
            TraitTableError if the trait does not exist or is discrete.
        """
        if self.kind(trait) != CONTINUOUS:
            raise TraitTableError(
                f"Trait {trait} is not continuous.",
                component="TraitTable",
                parameter=trait,
            )
        return self._frame[trait].astype(float)

    def get_discrete(self, trait: str) -> pd.Series:
        """Returns a discrete trait as an object Series (None when missing).

        Raises:
            TraitTableError if the trait does not exist or is continuous.
        """
        if self.kind(trait) != DISCRETE:
            raise TraitTableError(
                f"Trait {trait} is not discrete.",
                component="TraitTable",
                parameter=trait,
            )
        return _as_discrete(self._frame[trait])

    def states(self, trait: str) -> List[Any]:
        """Returns the sorted, observed states of a discrete trait."""
        values = [v for v in self.get_discrete(trait) if v is not None]
        unique = list(dict.fromkeys(values))
        try:
            return sorted(unique)
        except TypeError:
            return sorted(unique, key=str)

    def missing(self, traits: Optional[Iterable[str]] = None) -> List[str]:
        """Returns taxa with at least one missing value among `traits`."""
        traits = self.traits if traits is None else list(traits)
        for trait in traits:
            self.__check_trait(trait)
        mask = self._frame[traits].isna().any(axis=1)
        return self._frame.index[mask].tolist()

    def subset(self, taxa: Iterable[str]) -> "TraitTable":
        """Restricts and reorders the table to the given taxa.

        Raises:
            TraitTableError if a taxon is not in the table.
        """
        taxa = list(taxa)
        unknown = [t for t in taxa if t not in self._frame.index]
        if unknown:
            raise TraitTableError(
                f"Taxa not in trait table: {unknown[:5]}",
                component="TraitTable",
            )
        return TraitTable(self._frame.loc[taxa])

    def select(self, traits: Iterable[str]) -> "TraitTable":
        """Returns a table with only the given traits."""
        traits = list(traits)
        for trait in traits:
            self.__check_trait(trait)
        return TraitTable(self._frame[traits])

    def dropna(self, traits: Optional[Iterable[str]] = None) -> "TraitTable":
        """Returns a table without taxa missing any of `traits`."""
        missing = set(self.missing(traits))
        return self.subset([t for t in self.taxa if t not in missing])

    def assign(
        self, name: str, values: Union[pd.Series, Dict[str, Any]]
    ) -> "TraitTable":
        """Returns a table with a new or replaced trait column.

        Raises:
            TraitTableError if the values do not cover every taxon.
        """
        values = pd.Series(values)
        if not set(self.taxa).issubset(values.index):
            raise TraitTableError(
                f"Values for trait {name} do not cover every taxon.",
                component="TraitTable",
                parameter=name,
            )
        frame = self._frame.copy()
        frame[name] = values.loc[self.taxa].values
        return TraitTable(frame)

    def transform(
        self, trait: str, fn: Callable[[pd.Series], pd.Series], name: str
    ) -> "TraitTable":
        """Returns a table with `fn` applied to a trait, stored as `name`."""
        self.__check_trait(trait)
        return self.assign(name, fn(self._frame[trait]))

    def to_frame(self) -> pd.DataFrame:
        """Returns a copy of the underlying DataFrame."""
        return self._frame.copy()
