"""Top level for data."""

from .PhyloTree import PhyloTree
from .TraitTable import TraitTable
from .MatchedData import MatchedData, match
from .utilities import ete3_to_networkx, newick_to_networkx, to_newick
