"""Top level for simulator."""

from .CompleteBinarySimulator import CompleteBinarySimulator
from .ContinuousTraitSimulator import ContinuousTraitSimulator
from .DataSimulator import DataSimulator
from .DiscreteTraitSimulator import DiscreteTraitSimulator
from .StarTreeSimulator import StarTreeSimulator
from .TreeSimulator import TreeSimulator
from .YuleSimulator import YuleSimulator


__all__ = [
    "CompleteBinarySimulator",
    "ContinuousTraitSimulator",
    "DataSimulator",
    "DiscreteTraitSimulator",
    "StarTreeSimulator",
    "TreeSimulator",
    "YuleSimulator",
]
