"""
This file stores the basic tree structure for phylotrait - the PhyloTree.

A PhyloTree is a rooted, possibly multifurcating tree with branch lengths,
whose tips are labeled with unique taxon identifiers. The topology is given
by an external tree source (a networkx DiGraph, a newick string or an ete3
Tree) and validated once on construction. After that the tree is immutable:
structural edits such as tip pruning return a new, validated PhyloTree.

Alongside the networkx graph, the tree keeps an index-based arena (nodes in
a flat preorder sequence with parent and children stored as indices). Every
tree-recursive algorithm in `phylotrait.tools` walks this arena rather than
the graph.
"""
import copy
import warnings
from typing import Dict, Iterable, Iterator, List, Tuple, Union

import ete3
import networkx as nx
import numpy as np

from phylotrait.data import utilities
from phylotrait.mixins import (
    InvalidParameterError,
    MalformedTreeError,
    PhyloTreeWarning,
    UnknownTipError,
)


class PhyloTree:
    """Rooted phylogenetic tree with branch lengths.

    The tree can be fed into the object via ete3, networkx or a newick
    string. When a networkx DiGraph is passed, every edge must carry a
    `length` attribute; newick strings and ete3 Trees contribute their branch
    lengths directly.

    The canonical tip order (see :meth:`tip_order`) is the left-to-right
    order of tips in a preorder traversal that visits children in the order
    in which they were given. All matrices and vectors derived from the tree
    (covariance matrices, matched trait vectors) are indexed in this order.

    Args:
        tree: A tree topology specified as a networkx DiGraph, a newick
            string, or an ete3 Tree.

    Raises:
        MalformedTreeError if the input is not a valid rooted tree with
            finite, non-negative branch lengths and unique tip labels.
    """

    def __init__(self, tree: Union[str, ete3.Tree, nx.DiGraph]) -> None:

        if isinstance(tree, nx.DiGraph):
            network = tree.copy()
        elif isinstance(tree, str):
            network = utilities.newick_to_networkx(tree)
        elif isinstance(tree, ete3.Tree):
            network = utilities.ete3_to_networkx(copy.deepcopy(tree))
        else:
            raise MalformedTreeError(
                "Please pass an ete3 Tree, a newick string, or a Networkx "
                "object.",
                component="PhyloTree",
            )

        # enforce all names to be strings
        rename_dictionary = {n: str(n) for n in network.nodes}
        if len(set(rename_dictionary.values())) != len(rename_dictionary):
            raise MalformedTreeError(
                "Node names collide once converted to strings.",
                component="PhyloTree",
            )
        self.__network = nx.relabel_nodes(network, rename_dictionary)

        self.validate()
        self.__build_arena()

        zero_tips = [
            self._names[i]
            for i in self._tip_indices
            if i > 0 and self._lengths[i] == 0
        ]
        if zero_tips:
            warnings.warn(
                f"Tips with zero-length branches: {zero_tips[:5]}. "
                "Tip covariance matrices may be singular.",
                PhyloTreeWarning,
            )

    def validate(self) -> None:
        """Validates the tree topology and branch lengths.

        Raises:
            MalformedTreeError if the graph is empty, contains a cycle, does
                not have exactly one root, has a node with several parents,
                is disconnected, or has a missing, negative or non-finite
                branch length.
        """
        network = self.__network

        if network.number_of_nodes() == 0:
            raise MalformedTreeError("Tree is empty.", component="PhyloTree")

        if not nx.is_directed_acyclic_graph(network):
            raise MalformedTreeError(
                "Tree contains a cycle.", component="PhyloTree"
            )

        roots = [n for n in network if network.in_degree(n) == 0]
        if len(roots) != 1:
            raise MalformedTreeError(
                f"Tree must have exactly one root, found {len(roots)}.",
                component="PhyloTree",
            )

        multiple_parents = [n for n in network if network.in_degree(n) > 1]
        if multiple_parents:
            raise MalformedTreeError(
                f"Nodes with more than one parent: {multiple_parents[:5]}",
                component="PhyloTree",
            )

        if not nx.is_weakly_connected(network):
            raise MalformedTreeError(
                "Tree contains orphan nodes.", component="PhyloTree"
            )

        for u, v, data in network.edges(data=True):
            if "length" not in data:
                raise MalformedTreeError(
                    f"Edge ({u}, {v}) has no branch length.",
                    component="PhyloTree",
                    parameter="length",
                )
            try:
                length = float(data["length"])
            except (TypeError, ValueError):
                raise MalformedTreeError(
                    f"Edge ({u}, {v}) has a non-numeric branch length.",
                    component="PhyloTree",
                    parameter="length",
                )
            if not np.isfinite(length) or length < 0:
                raise MalformedTreeError(
                    f"Edge ({u}, {v}) has an invalid branch length {length}.",
                    component="PhyloTree",
                    parameter="length",
                )

    def __build_arena(self) -> None:
        """Flattens the graph into preorder index arrays."""
        network = self.__network
        root = [n for n in network if network.in_degree(n) == 0][0]

        names = []
        parents = []
        children = []
        lengths = []
        stack = [(root, -1)]
        while stack:
            node, parent = stack.pop()
            index = len(names)
            names.append(node)
            parents.append(parent)
            children.append([])
            if parent >= 0:
                children[parent].append(index)
                lengths.append(float(network[names[parent]][node]["length"]))
            else:
                lengths.append(0.0)
            for child in reversed(list(network.successors(node))):
                stack.append((child, index))

        times = np.zeros(len(names))
        for i in range(1, len(names)):
            times[i] = times[parents[i]] + lengths[i]

        self._names = names
        self._index = {name: i for i, name in enumerate(names)}
        self._parent = np.array(parents, dtype=int)
        self._children = tuple(tuple(c) for c in children)
        self._lengths = np.array(lengths, dtype=float)
        self._times = times
        self._tip_indices = np.array(
            [i for i in range(len(names)) if len(children[i]) == 0], dtype=int
        )
        for array in (
            self._parent, self._lengths, self._times, self._tip_indices
        ):
            array.setflags(write=False)

    def __repr__(self) -> str:
        return (
            f"PhyloTree(n_tips={self.n_tips}, n_nodes={len(self._names)}, "
            f"height={self.get_max_depth_of_tree():.4g})"
        )

    def __index(self, node: str) -> int:
        if node not in self._index:
            raise UnknownTipError(
                f"Node {node} does not exist.", component="PhyloTree"
            )
        return self._index[node]

    # # # # # Arena accessors # # # # #

    @property
    def parent_indices(self) -> np.ndarray:
        """Parent index of every node (-1 for the root), in preorder."""
        return self._parent

    @property
    def children_indices(self) -> Tuple[Tuple[int, ...], ...]:
        """Children indices of every node, in preorder."""
        return self._children

    @property
    def branch_lengths(self) -> np.ndarray:
        """Length of the branch leading into every node (0 for the root)."""
        return self._lengths

    @property
    def node_times(self) -> np.ndarray:
        """Root-to-node path length of every node, in preorder."""
        return self._times

    @property
    def tip_indices(self) -> np.ndarray:
        """Arena indices of the tips, in canonical tip order."""
        return self._tip_indices

    def index_of(self, node: str) -> int:
        """Returns the arena index of a node."""
        return self.__index(node)

    def name_of(self, index: int) -> str:
        """Returns the name of the node at an arena index."""
        return self._names[index]

    # # # # # Basic properties # # # # #

    @property
    def root(self) -> str:
        """Returns root of tree."""
        return self._names[0]

    @property
    def n_tips(self) -> int:
        """Returns number of tips in tree."""
        return len(self._tip_indices)

    @property
    def leaves(self) -> List[str]:
        """Returns leaves of tree, in canonical tip order."""
        return self.tip_order()

    @property
    def internal_nodes(self) -> List[str]:
        """Returns internal nodes in tree (including the root), in preorder."""
        return [
            name
            for name, children in zip(self._names, self._children)
            if len(children) > 0
        ]

    @property
    def nodes(self) -> List[str]:
        """Returns all nodes in tree, in preorder."""
        return self._names[:]

    @property
    def edges(self) -> List[Tuple[str, str]]:
        """Returns all edges in the tree, in preorder of the child."""
        return [
            (self._names[self._parent[i]], self._names[i])
            for i in range(1, len(self._names))
        ]

    def tip_order(self) -> List[str]:
        """Returns the canonical left-to-right sequence of tip labels."""
        return [self._names[i] for i in self._tip_indices]

    def is_leaf(self, node: str) -> bool:
        """Returns whether or not the node is a leaf."""
        return len(self._children[self.__index(node)]) == 0

    def is_root(self, node: str) -> bool:
        """Returns whether or not the node is the root."""
        return self.__index(node) == 0

    def is_internal_node(self, node: str) -> bool:
        """Returns whether or not the node is an internal node."""
        return len(self._children[self.__index(node)]) > 0

    def is_binary(self) -> bool:
        """Returns whether every internal node has exactly two children."""
        return all(len(c) in (0, 2) for c in self._children)

    def is_ultrametric(self, tolerance: float = 1e-8) -> bool:
        """Returns whether all tips are equidistant from the root.

        Args:
            tolerance: Allowed spread of root-to-tip lengths, relative to the
                height of the tree.
        """
        tip_times = self._times[self._tip_indices]
        height = tip_times.max()
        if height == 0:
            return True
        return (height - tip_times.min()) <= tolerance * height

    def parent(self, node: str) -> str:
        """Gets the parent of a node.

        Raises:
            UnknownTipError if the node does not exist or is the root.
        """
        index = self.__index(node)
        if index == 0:
            raise UnknownTipError(
                "The root has no parent.", component="PhyloTree"
            )
        return self._names[self._parent[index]]

    def children(self, node: str) -> List[str]:
        """Gets the children of a given node, in order."""
        return [self._names[c] for c in self._children[self.__index(node)]]

    def get_branch_length(self, parent: str, child: str) -> float:
        """Gets the length of a branch.

        Raises:
            UnknownTipError if the branch does not exist in the tree.
        """
        child_index = self.__index(child)
        if child_index == 0 or self._parent[child_index] != self.__index(
            parent
        ):
            raise UnknownTipError(
                f"Edge ({parent}, {child}) does not exist.",
                component="PhyloTree",
            )
        return float(self._lengths[child_index])

    def get_time(self, node: str) -> float:
        """Gets the sum of edge lengths from the root to the node."""
        return float(self._times[self.__index(node)])

    def get_times(self) -> Dict[str, float]:
        """Gets the root-to-node times of all nodes."""
        return dict(zip(self._names, self._times.tolist()))

    def get_max_depth_of_tree(self) -> float:
        """Computes the maximum root-to-tip path length."""
        return float(self._times[self._tip_indices].max())

    def get_mean_depth_of_tree(self) -> float:
        """Computes the mean root-to-tip path length."""
        return float(self._times[self._tip_indices].mean())

    def get_total_branch_length(self) -> float:
        """Computes the sum of all branch lengths."""
        return float(self._lengths.sum())

    # # # # # Traversals # # # # #

    def postorder(self, indices: bool = False) -> Iterator[Union[str, int]]:
        """Postorder traversal of the tree.

        Children are visited left to right and always before their parent.
        The traversal is a generator: it is lazy and can only be consumed
        once.

        Args:
            indices: Yield arena indices instead of node names.

        Returns:
            An iterator over the nodes of the tree.
        """
        stack = [(0, False)]
        while stack:
            index, expanded = stack.pop()
            if expanded:
                yield index if indices else self._names[index]
                continue
            stack.append((index, True))
            for child in reversed(self._children[index]):
                stack.append((child, False))

    def preorder(self, indices: bool = False) -> Iterator[Union[str, int]]:
        """Preorder traversal of the tree (parents before children)."""
        for index in range(len(self._names)):
            yield index if indices else self._names[index]

    def depth_first_traverse_edges(self) -> Iterator[Tuple[str, str]]:
        """Edges of the tree, each visited after the edge above it."""
        for index in range(1, len(self._names)):
            yield self._names[self._parent[index]], self._names[index]

    def leaves_in_subtree(self, node: str) -> List[str]:
        """Get leaves in subtree below a given node, in tip order."""
        start = self.__index(node)
        leaves = []
        stack = [start]
        while stack:
            index = stack.pop()
            if len(self._children[index]) == 0:
                leaves.append(self._names[index])
            stack.extend(reversed(self._children[index]))
        return leaves

    # # # # # Ancestry # # # # #

    def __ancestors(self, index: int) -> List[int]:
        path = [index]
        while index != 0:
            index = self._parent[index]
            path.append(index)
        return path

    def find_lca(self, *nodes: str) -> str:
        """Finds the most recent common ancestor of a set of nodes.

        Raises:
            UnknownTipError if fewer than two nodes are given or if a node
                does not exist.
        """
        if len(nodes) < 2:
            raise UnknownTipError(
                "Specify at least two nodes to find the LCA.",
                component="PhyloTree",
            )
        common = None
        for node in nodes:
            path = self.__ancestors(self.__index(node))
            if common is None:
                common = path
            else:
                shared = set(common)
                common = [i for i in path if i in shared]
        return self._names[common[0]]

    def get_distance(self, node1: str, node2: str) -> float:
        """Computes the patristic distance between two nodes."""
        lca = self.__index(self.find_lca(node1, node2))
        return float(
            self._times[self.__index(node1)]
            + self._times[self.__index(node2)]
            - 2 * self._times[lca]
        )

    # # # # # Structural operations # # # # #

    def prune_tips(self, labels: Iterable[str]) -> "PhyloTree":
        """Removes tips and returns the pruned tree.

        Removes the given tips and every internal node left without
        descendant tips. Internal nodes that become unary because of the
        pruning are collapsed, their branch lengths summed into the remaining
        child branch; if the root becomes unary its only child is promoted to
        root. Nodes that were already unary are left untouched, so pruning an
        empty set returns a structurally identical tree. Child order is
        preserved.

        Args:
            labels: Tip labels to remove.

        Returns:
            A new, validated PhyloTree.

        Raises:
            UnknownTipError if a label is not a tip of this tree.
            MalformedTreeError if every tip would be removed.
        """
        labels = list(labels)
        unknown = [
            label
            for label in labels
            if label not in self._index
            or len(self._children[self._index[label]]) > 0
        ]
        if unknown:
            raise UnknownTipError(
                f"Labels are not tips of the tree: {unknown[:5]}",
                component="PhyloTree",
                parameter="labels",
            )

        drop = set(labels)
        if not drop:
            return PhyloTree(self.get_tree_topology())
        if len(drop) == self.n_tips:
            raise MalformedTreeError(
                "Pruning would remove every tip.", component="PhyloTree"
            )

        n = len(self._names)
        survives = np.zeros(n, dtype=bool)
        kept_children = [[] for _ in range(n)]
        for i in self.postorder(indices=True):
            if len(self._children[i]) == 0:
                survives[i] = self._names[i] not in drop
            else:
                kept_children[i] = [c for c in self._children[i] if survives[c]]
                survives[i] = len(kept_children[i]) > 0

        def collapses(i: int) -> bool:
            return len(kept_children[i]) == 1 and len(self._children[i]) > 1

        root = 0
        while collapses(root):
            root = kept_children[root][0]

        pruned = nx.DiGraph()
        pruned.add_node(self._names[root])
        stack = [root]
        while stack:
            u = stack.pop()
            targets = []
            for c in kept_children[u]:
                length = self._lengths[c]
                while collapses(c):
                    c = kept_children[c][0]
                    length += self._lengths[c]
                pruned.add_edge(
                    self._names[u], self._names[c], length=float(length)
                )
                targets.append(c)
            stack.extend(reversed(targets))

        return PhyloTree(pruned)

    def scale_branch_lengths(self, factor: float) -> "PhyloTree":
        """Returns a copy of the tree with every branch length multiplied.

        Raises:
            InvalidParameterError if the factor is negative or not finite.
        """
        if not np.isfinite(factor) or factor < 0:
            raise InvalidParameterError(
                "Scaling factor must be finite and non-negative, got "
                f"{factor}.",
                component="PhyloTree",
                parameter="factor",
            )
        network = self.get_tree_topology()
        for u, v in network.edges:
            network[u][v]["length"] = network[u][v]["length"] * factor
        return PhyloTree(network)

    def get_tree_topology(self) -> nx.DiGraph:
        """Returns a copy of the tree as a networkx DiGraph."""
        return copy.deepcopy(self.__network)

    def get_newick(
        self,
        record_branch_lengths: bool = True,
        record_node_names: bool = True,
    ) -> str:
        """Returns a newick string representing the tree."""
        return utilities.to_newick(
            self.__network,
            record_branch_lengths=record_branch_lengths,
            record_node_names=record_node_names,
            root=self.root,
        )
