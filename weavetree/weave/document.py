"""
Weave document: tree navigation, structural edits and buffer sync.

The document is the single mutation surface for both buffer
synchronization and branch generation. Every operation that receives a
stale or unknown identifier returns without mutating anything, since
UI-driven callers routinely pass ids that were removed meanwhile.
"""

from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from weavetree.common import (
    TextContent,
    TokenContent,
    concat_content,
    copy_parameters,
    get_node_content,
    identifier_like,
    new_identifier,
    parameters_equal,
    same_kind,
    split_content,
)
from weavetree.config import SyncConfig

from .node import WeaveNode
from .store import WeaveStore

logger = logging.getLogger(__name__)


class WeaveDocument(WeaveStore):
    """
    A branching text document.

    Any root-to-node path spells one variant of the text; the path ending
    at current_node is the one shown in the editable buffer.

    Usage:
        document = WeaveDocument("Hello")
        document.set_active_content("Hello world")  # appends " world"
        document.get_active_content()               # "Hello world"
    """

    def __init__(
        self, content: Optional[str] = None, config: Optional[SyncConfig] = None
    ):
        """
        Args:
            content: Initial text. Creates one root node holding it (an
                empty string creates the empty root placeholder). None
                creates an empty document.
            config: Buffer synchronization settings
        """
        super().__init__()
        self.config = config or SyncConfig()
        if content is not None:
            self.current_node = self.add_node(
                WeaveNode(identifier=new_identifier(), content=TextContent(content))
            )

    # ------------------------------------------------------------------
    # Active path
    # ------------------------------------------------------------------

    def get_active_nodes(self, identifier: Optional[str] = None) -> List[WeaveNode]:
        """Ancestor chain of a node (default: current node), root first."""
        node = self.get_node(identifier if identifier is not None else self.current_node)
        chain = []
        while node is not None:
            chain.append(node)
            node = self.get_node(node.parent)
        chain.reverse()
        return chain

    def get_active_content(self, identifier: Optional[str] = None) -> str:
        """Text spelled by the ancestor chain of a node (default: current)."""
        return "".join(node.text for node in self.get_active_nodes(identifier))

    def get_active_identifier(
        self, content: str, position: int
    ) -> Optional[Tuple[str, int]]:
        """
        Map a buffer offset to a node on the active path.

        Args:
            content: Buffer text
            position: Offset into content

        Returns:
            (node id, offset inside that node), or None if the buffer has
            diverged from the active path before reaching position
        """
        offset = 0
        for node in self.get_active_nodes():
            text = node.text
            if not content.startswith(text, offset):
                return None
            end = offset + len(text)
            if position > end:
                offset = end
                continue
            return node.identifier, position - offset
        return None

    # ------------------------------------------------------------------
    # Buffer synchronization
    # ------------------------------------------------------------------

    def set_active_content(self, content: str) -> bool:
        """
        Reconcile the active path with edited buffer text.

        Walks the active path matching each node's text as a prefix of the
        remaining buffer text. At the first mismatch the rest of the buffer
        replaces that node and everything below it; if the whole path
        matches, any leftover text is appended under the last node.

        Returns:
            True if the tree or the current node changed
        """
        active = self.get_active_nodes()
        offset = 0

        for node in active:
            text = node.text
            if content.startswith(text, offset):
                offset += len(text)
                continue
            self._replace_from(node, content[offset:])
            return True

        remainder = content[offset:]
        if not remainder:
            return False

        parent = active[-1].identifier if active else None
        self._append_typed(parent, remainder)
        return True

    def _replace_from(self, node: WeaveNode, remainder: str) -> None:
        prunable = self._is_prunable(node)

        if remainder:
            replacement = self.add_node(
                WeaveNode(
                    identifier=new_identifier(),
                    content=TextContent(remainder),
                    parent=node.parent,
                )
            )
        else:
            replacement = node.parent

        if prunable:
            logger.debug(f"Pruning abandoned node {node.identifier}")
            self.remove_node(node.identifier)

        self.current_node = replacement

    def _is_prunable(self, node: WeaveNode) -> bool:
        if self.get_node_children_count(node.identifier) > 1:
            return False
        if self.config.protect_generated and (node.model or node.parameters):
            return False
        return not any(
            identifier in self.bookmarks
            for identifier in self.subtree_identifiers(node.identifier)
        )

    def _append_typed(self, parent: Optional[str], text: str) -> None:
        absorb = self.config.coalesce_typing and self._absorbs_typing(parent)

        identifier = self.add_node(
            WeaveNode(identifier=new_identifier(), content=TextContent(text), parent=parent)
        )
        if absorb:
            identifier = self.merge_node(parent, identifier) or identifier
        self.current_node = identifier

    def _absorbs_typing(self, identifier: Optional[str]) -> bool:
        node = self.get_node(identifier)
        return (
            node is not None
            and node.parent is not None
            and isinstance(node.content, TextContent)
            and len(node.content) > 0
            and node.model is None
            and not node.parameters
            and node.identifier not in self.bookmarks
            and self.get_node_children_count(node.identifier) == 0
        )

    # ------------------------------------------------------------------
    # Structural operations
    # ------------------------------------------------------------------

    def split_node(self, identifier: str, index: int) -> Optional[str]:
        """
        Split a node in two at a character index.

        The node keeps the prefix; a new child holds the suffix and adopts
        the node's children. If the node was current, the suffix becomes
        current so the visible text is unchanged. If the truncated node now
        matches one of its siblings, it is folded into that sibling.

        Args:
            identifier: Node to split
            index: 0 < index < len(content); token content only splits on
                token boundaries

        Returns:
            Identifier of the suffix node, or None if nothing was split
        """
        node = self.get_node(identifier)
        if node is None:
            return None
        parts = split_content(node.content, index)
        if parts is None:
            return None

        prefix, suffix = parts
        children = list(self.node_children.get(identifier, ()))

        node.content = prefix
        suffix_node = WeaveNode(
            identifier=identifier_like(identifier),
            content=suffix,
            model=node.model,
            parent=identifier,
            parameters=copy_parameters(node.parameters),
        )
        self._insert(suffix_node)
        self._register_model(suffix_node, None)

        for child in children:
            self._reparent(child, suffix_node.identifier)

        if self.current_node == identifier:
            self.current_node = suffix_node.identifier

        suffix_identifier = suffix_node.identifier
        duplicate = self._find_duplicate_child(node)
        if duplicate is not None:
            absorbed = self._fold_node(identifier, duplicate)
            suffix_identifier = absorbed.get(suffix_identifier, suffix_identifier)

        logger.debug(f"Split node {identifier} at {index} -> {suffix_identifier}")
        return suffix_identifier

    def is_node_mergeable(self, primary: str, secondary: str) -> bool:
        """
        True if secondary can be folded into its parent primary in place.

        Requires: secondary is primary's only child, same model, same
        content kind, structurally equal parameters.
        """
        primary_node = self.get_node(primary)
        secondary_node = self.get_node(secondary)
        if primary_node is None or secondary_node is None:
            return False
        return (
            secondary_node.parent == primary_node.identifier
            and self.get_node_children_count(primary) == 1
            and primary_node.model == secondary_node.model
            and same_kind(primary_node.content, secondary_node.content)
            and parameters_equal(primary_node.parameters, secondary_node.parameters)
        )

    def merge_node(self, primary: str, secondary: str) -> Optional[str]:
        """
        Merge a node (secondary) into its parent (primary).

        When mergeable, secondary takes the concatenated content, primary's
        parent, bookmark and current-node pointer, and primary is removed.
        A result identical to one of its new siblings is folded into it.

        Otherwise, if secondary is still a child of primary, a new node with
        the combined content is added next to primary and both inputs are
        kept. The new node keeps the model and parameters only where both
        inputs agree. Token sequences from different models are flattened
        to text.

        Returns:
            Identifier of the node holding the merged content, or None
        """
        primary_node = self.get_node(primary)
        secondary_node = self.get_node(secondary)
        if primary_node is None or secondary_node is None:
            return None

        if self.is_node_mergeable(primary, secondary):
            secondary_node.content = concat_content(
                primary_node.content, secondary_node.content
            )
            self._reparent(secondary, primary_node.parent)
            if primary in self.bookmarks:
                self.bookmarks.add(secondary)
            if self.current_node == primary:
                self.current_node = secondary
            self.remove_node(primary)

            duplicate = self._find_duplicate_child(secondary_node)
            if duplicate is not None:
                self._fold_node(secondary, duplicate)
                return duplicate
            return secondary

        if secondary_node.parent != primary:
            return None

        same_model = primary_node.model == secondary_node.model
        if (
            isinstance(primary_node.content, TokenContent)
            and isinstance(secondary_node.content, TokenContent)
            and not same_model
        ):
            content = TextContent(
                get_node_content(primary_node.content)
                + get_node_content(secondary_node.content)
            )
        else:
            content = concat_content(primary_node.content, secondary_node.content)

        parameters = None
        if parameters_equal(primary_node.parameters, secondary_node.parameters):
            parameters = copy_parameters(secondary_node.parameters)

        merged = self.add_node(
            WeaveNode(
                identifier=identifier_like(secondary),
                content=content,
                model=secondary_node.model if same_model else None,
                parent=primary_node.parent,
                parameters=parameters,
            )
        )
        if self.current_node in (primary, secondary):
            self.current_node = merged
        return merged

    def split_at_position(self, content: str, position: int) -> Optional[str]:
        """Split the active-path node under a buffer offset (cursor)."""
        located = self.get_active_identifier(content, position)
        if located is None:
            return None
        return self.split_node(*located)

    def merge_with_parent(self, identifier: str) -> Optional[str]:
        node = self.get_node(identifier)
        if node is None or node.parent is None:
            return None
        return self.merge_node(node.parent, identifier)

    def toggle_bookmark(self, identifier: str) -> Optional[bool]:
        """Flip a node's bookmark. Returns the new state, None if missing."""
        if identifier not in self.nodes:
            return None
        if identifier in self.bookmarks:
            self.bookmarks.discard(identifier)
            return False
        self.bookmarks.add(identifier)
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_child_node(self, parent: Optional[str] = None) -> Optional[str]:
        """Add an empty node under parent (or a new root) and select it."""
        if parent is not None and parent not in self.nodes:
            return None
        identifier = self.add_node(
            WeaveNode(identifier=new_identifier(), content=TextContent(""), parent=parent)
        )
        self.current_node = identifier
        return identifier

    def add_sibling_node(self, target: str) -> Optional[str]:
        """Add an empty node next to target and select it."""
        node = self.get_node(target)
        if node is None:
            return None
        return self.add_child_node(node.parent)

    def switch_to_node(self, identifier: str) -> bool:
        if identifier not in self.nodes:
            return False
        self.current_node = identifier
        return True

    def delete_node(self, identifier: str) -> bool:
        return self.remove_node(identifier)

    def delete_node_children(self, identifier: str) -> int:
        """Remove every child subtree of a node. Returns how many children."""
        children = self.get_node_children(identifier)
        for child in children:
            self.remove_node(child.identifier)
        return len(children)

    def delete_node_siblings(self, identifier: str, exclude_target: bool = True) -> int:
        """Remove a node's siblings (and the node itself unless excluded)."""
        removed = 0
        for sibling in self.get_siblings(identifier):
            if exclude_target and sibling.identifier == identifier:
                continue
            if self.remove_node(sibling.identifier):
                removed += 1
        return removed

    def move_to_parent(self) -> bool:
        node = self.get_node(self.current_node)
        if node is None or node.parent is None:
            return False
        self.current_node = node.parent
        return True

    def move_to_child(self) -> bool:
        if self.current_node is None:
            return False
        children = self.get_node_children(self.current_node)
        if not children:
            return False
        self.current_node = children[0].identifier
        return True

    def move_to_previous_sibling(self) -> bool:
        return self._move_to_sibling(-1)

    def move_to_next_sibling(self) -> bool:
        return self._move_to_sibling(1)

    def _move_to_sibling(self, step: int) -> bool:
        if self.current_node is None:
            return False
        siblings = [node.identifier for node in self.get_siblings(self.current_node)]
        index = siblings.index(self.current_node) + step
        if not 0 <= index < len(siblings):
            return False
        self.current_node = siblings[index]
        return True

    def search(self, query: str) -> List[WeaveNode]:
        """Nodes whose text contains query (case-insensitive), oldest first."""
        needle = query.strip().lower()
        if not needle:
            return []
        return [node for node in self.get_all_nodes() if needle in node.text.lower()]
