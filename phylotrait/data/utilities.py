"""
General utilities for moving trees between the formats handled by external
tree sources (newick strings, ete3 Trees) and the networkx graphs that back
a PhyloTree.
"""
import collections
from typing import Optional

import ete3
from ete3.parser.newick import NewickError
import networkx as nx

from phylotrait.mixins import MalformedTreeError


def newick_to_networkx(newick_string: str) -> nx.DiGraph:
    """Converts a newick string to a networkx DiGraph.

    Args:
        newick_string: A newick string.

    Returns:
        A networkx DiGraph.

    Raises:
        MalformedTreeError if the newick string can not be parsed.
    """
    try:
        tree = ete3.Tree(newick_string, 1)
    except NewickError as error:
        raise MalformedTreeError(
            f"Could not parse newick string: {error}", component="PhyloTree"
        )
    return ete3_to_networkx(tree)


def ete3_to_networkx(tree: ete3.Tree) -> nx.DiGraph:
    """Converts an ete3 Tree to a networkx DiGraph.

    Unnamed internal nodes receive generated names. Branch lengths are stored
    under the `length` edge attribute.

    Args:
        tree: an ete3 Tree object

    Returns:
        a networkx DiGraph

    Raises:
        MalformedTreeError if two leaves share a name.
    """
    leaf_names = collections.Counter(leaf.name for leaf in tree.get_leaves())
    duplicated = sorted(name for name, count in leaf_names.items() if count > 1)
    if duplicated:
        raise MalformedTreeError(
            f"Duplicate tip labels: {duplicated}", component="PhyloTree"
        )

    g = nx.DiGraph()
    used_names = set(leaf_names)
    internal_node_iter = 0
    for n in tree.traverse("preorder"):
        if n.name == "" or (not n.is_leaf() and n.name in used_names):
            name = f"phylotrait_internal_node{internal_node_iter}"
            while name in used_names:
                internal_node_iter += 1
                name = f"phylotrait_internal_node{internal_node_iter}"
            n.name = name
            internal_node_iter += 1
        used_names.add(n.name)

        if n.is_root():
            g.add_node(n.name)
            continue

        g.add_edge(n.up.name, n.name, length=float(n.dist))

    return g


def to_newick(
    tree: nx.DiGraph,
    record_branch_lengths: bool = False,
    record_node_names: bool = False,
    root: Optional[str] = None,
) -> str:
    """Converts a networkx graph to a newick string.

    Args:
        tree: A networkx tree
        record_branch_lengths: Whether to record branch lengths on the tree in
            the newick string
        record_node_names: Whether to record internal node names on the tree in
            the newick string
        root: Root of the tree. Inferred from the in-degrees if not given.

    Returns:
        A newick string representing the topology of the tree
    """

    def _to_newick_str(node: str) -> str:
        suffix = ""
        if record_branch_lengths and tree.in_degree(node) > 0:
            parent = next(tree.predecessors(node))
            suffix = f":{tree[parent][node]['length']}"

        if tree.out_degree(node) == 0:
            return f"{node}{suffix}"
        subtrees = ",".join(_to_newick_str(c) for c in tree.successors(node))
        label = str(node) if record_node_names else ""
        return f"({subtrees}){label}{suffix}"

    if root is None:
        root = [node for node in tree if tree.in_degree(node) == 0][0]
    return _to_newick_str(root) + ";"
