"""
Node store for a weave document.

Owns the node records and every index derived from them:
- parent -> children adjacency
- root set
- model label registry with a reverse index (model -> node ids)
- bookmark set
- current node pointer

Nodes refer to each other only by identifier, so re-parenting is a pure
index update. add_node() deduplicates siblings and splices out hollow
(empty) parents; remove_node() is the only destructive operation.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Set

from weavetree.common import copy_parameters

from .node import UNKNOWN_MODEL_LABEL, ModelLabel, WeaveNode, sibling_sort_key

logger = logging.getLogger(__name__)


class UnknownNodeError(LookupError):
    """Raised when an operation references a node id that is not in the store."""


class WeaveStore:
    """
    Arena of nodes plus id-indexed adjacency.

    Not internally locked: one logical owner mutates a store at a time.
    """

    def __init__(self):
        self.nodes: Dict[str, WeaveNode] = {}
        self.node_children: Dict[str, Set[str]] = {}
        self.root_nodes: Set[str] = set()
        self.models: Dict[str, ModelLabel] = {}
        self.model_nodes: Dict[str, Set[str]] = {}
        self.bookmarks: Set[str] = set()
        self._current_node: Optional[str] = None

    # ------------------------------------------------------------------
    # Current node
    # ------------------------------------------------------------------

    @property
    def current_node(self) -> Optional[str]:
        return self._current_node

    @current_node.setter
    def current_node(self, identifier: Optional[str]) -> None:
        if identifier is not None and identifier not in self.nodes:
            raise UnknownNodeError(f"Cannot select missing node {identifier}")
        self._current_node = identifier

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self.nodes)

    def __contains__(self, identifier: object) -> bool:
        return identifier in self.nodes

    def get_node(self, identifier: Optional[str]) -> Optional[WeaveNode]:
        if identifier is None:
            return None
        return self.nodes.get(identifier)

    def get_node_children_count(self, identifier: str) -> int:
        return len(self.node_children.get(identifier, ()))

    def get_node_children(self, identifier: str) -> List[WeaveNode]:
        """Children of a node, in sibling ranking order."""
        return self._sorted(self.node_children.get(identifier, ()))

    def get_root_nodes(self) -> List[WeaveNode]:
        """Root nodes, in sibling ranking order."""
        return self._sorted(self.root_nodes)

    def get_all_nodes(self) -> List[WeaveNode]:
        """Every node, oldest first."""
        return [self.nodes[identifier] for identifier in sorted(self.nodes)]

    def get_siblings(self, identifier: str) -> List[WeaveNode]:
        """The ranked sibling group a node belongs to (itself included)."""
        node = self.nodes.get(identifier)
        if node is None:
            return []
        if node.parent is None:
            return self.get_root_nodes()
        return self.get_node_children(node.parent)

    def is_bookmarked(self, identifier: str) -> bool:
        return identifier in self.bookmarks

    def subtree_identifiers(self, identifier: str) -> List[str]:
        """A node and all its descendants, parents before children."""
        if identifier not in self.nodes:
            return []
        collected = []
        stack = [identifier]
        while stack:
            current = stack.pop()
            collected.append(current)
            stack.extend(self.node_children.get(current, ()))
        return collected

    def _sorted(self, identifiers) -> List[WeaveNode]:
        nodes = [self.nodes[i] for i in identifiers if i in self.nodes]
        nodes.sort(key=lambda node: sibling_sort_key(node, self.models))
        return nodes

    # ------------------------------------------------------------------
    # Insertion
    # ------------------------------------------------------------------

    def add_node(self, node: WeaveNode, label: Optional[ModelLabel] = None) -> str:
        """
        Insert a node, deduplicating against its siblings.

        Args:
            node: Node to insert. The caller's object is not stored; a copy
                with its own parameter map is.
            label: Display label for node.model (replaces any existing label)

        Returns:
            Identifier of the stored node. This is an existing sibling's id
            when an identical (content, model, parameters) sibling exists,
            so callers must use the returned id.

        Raises:
            UnknownNodeError: If node.parent is not in the store
        """
        node = replace(node, parameters=copy_parameters(node.parameters))

        while node.parent is not None:
            parent = self.nodes.get(node.parent)
            if parent is None:
                raise UnknownNodeError(
                    f"Cannot add node {node.identifier}: parent {node.parent} does not exist"
                )

            duplicate = self._find_duplicate_child(node)
            if duplicate is not None:
                logger.debug(f"Deduplicated node {node.identifier} -> {duplicate}")
                return duplicate

            if parent.text:
                break

            # Hollow parent: attach one level up instead
            node.parent = parent.parent
            if (
                self.get_node_children_count(parent.identifier) == 0
                and parent.identifier not in self.bookmarks
            ):
                self.remove_node(parent.identifier)

        if node.identifier in self.nodes:
            raise ValueError(f"Node {node.identifier} already exists")

        self._insert(node)
        self._register_model(node, label)
        logger.debug(f"Added node {node.identifier} under {node.parent}")
        return node.identifier

    def _find_duplicate_child(self, node: WeaveNode) -> Optional[str]:
        key = node.dedup_key()
        for child_identifier in self.node_children.get(node.parent, ()):
            child = self.nodes.get(child_identifier)
            if (
                child_identifier != node.identifier
                and child is not None
                and child.dedup_key() == key
            ):
                return child_identifier
        return None

    def _fold_node(self, source: str, target: str) -> Dict[str, str]:
        """
        Fold a node into an identical sibling and remove it.

        Children move onto target, folding recursively into target's own
        identical children. Bookmarks and the current pointer follow.

        Returns:
            Mapping of every absorbed identifier to the node replacing it
        """
        absorbed: Dict[str, str] = {}
        pending = [(source, target)]
        while pending:
            old, new = pending.pop()
            absorbed[old] = new
            if old in self.bookmarks:
                self.bookmarks.add(new)
            if self._current_node == old:
                self._current_node = new
            for child in list(self.node_children.get(old, ())):
                duplicate = self._find_duplicate_child(replace(self.nodes[child], parent=new))
                if duplicate is None:
                    self._reparent(child, new)
                else:
                    pending.append((child, duplicate))

        self.remove_node(source)
        logger.debug(f"Folded node {source} into {target}")
        return absorbed

    def _insert(self, node: WeaveNode) -> None:
        """Raw insertion: no dedup, no hollow-parent handling."""
        self.nodes[node.identifier] = node
        self.node_children.setdefault(node.identifier, set())
        if node.parent is None:
            self.root_nodes.add(node.identifier)
        else:
            self.node_children.setdefault(node.parent, set()).add(node.identifier)

    def _register_model(self, node: WeaveNode, label: Optional[ModelLabel]) -> None:
        if node.model is None:
            return
        if label is not None or node.model not in self.models:
            self.models[node.model] = label or UNKNOWN_MODEL_LABEL
        self.model_nodes.setdefault(node.model, set()).add(node.identifier)

    def _unregister_model(self, node: WeaveNode) -> None:
        if node.model is None:
            return
        referencing = self.model_nodes.get(node.model)
        if referencing is None:
            return
        referencing.discard(node.identifier)
        if not referencing:
            del self.model_nodes[node.model]
            self.models.pop(node.model, None)

    def _reparent(self, identifier: str, parent: Optional[str]) -> None:
        """Move a node under a new parent (or to the root set)."""
        node = self.nodes[identifier]
        if node.parent is None:
            self.root_nodes.discard(identifier)
        else:
            self.node_children.get(node.parent, set()).discard(identifier)

        node.parent = parent
        if parent is None:
            self.root_nodes.add(identifier)
        else:
            self.node_children.setdefault(parent, set()).add(identifier)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    def remove_node(self, identifier: str) -> bool:
        """
        Remove a node and its entire subtree.

        Cleans the root set, bookmarks, model registry and child index. If
        the current node is inside the removed subtree, the removed node's
        parent becomes current.

        Returns:
            False if the node did not exist
        """
        node = self.nodes.get(identifier)
        if node is None:
            return False

        doomed = self.subtree_identifiers(identifier)

        if node.parent is not None:
            self.node_children.get(node.parent, set()).discard(identifier)

        if self._current_node in set(doomed):
            self._current_node = node.parent

        for doomed_identifier in doomed:
            removed = self.nodes.pop(doomed_identifier)
            self.root_nodes.discard(doomed_identifier)
            self.bookmarks.discard(doomed_identifier)
            self.node_children.pop(doomed_identifier, None)
            self._unregister_model(removed)

        logger.debug(f"Removed node {identifier} ({len(doomed)} nodes)")
        return True
