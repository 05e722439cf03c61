"""
Node and model label records.

Nodes never hold references to other nodes, only identifiers. The store
owns the parent -> children index.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from weavetree.common import (
    NodeContent,
    Parameters,
    TokenContent,
    get_node_content,
    parameters_key,
)


@dataclass
class ModelLabel:
    """Display metadata for the model that produced a node."""

    label: str
    color: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"label": self.label, "color": self.color}


UNKNOWN_MODEL_LABEL = ModelLabel(label="Unknown")


@dataclass
class WeaveNode:
    """
    A content-bearing unit of the weave.

    Attributes:
        identifier: Time-ordered unique id (ULID string)
        content: Plain text or probability-tagged tokens
        model: Identifier of the model that produced the content
        parent: Identifier of the parent node (None for roots)
        parameters: Free-form generation settings
    """

    identifier: str
    content: NodeContent
    model: Optional[str] = None
    parent: Optional[str] = None
    parameters: Optional[Parameters] = None

    @property
    def text(self) -> str:
        return get_node_content(self.content)

    def is_single_token(self) -> bool:
        return (
            isinstance(self.content, TokenContent) and self.content.is_single_token()
        )

    def dedup_key(self) -> Tuple[NodeContent, Optional[str], str]:
        """Siblings sharing this key are the same node."""
        return (self.content, self.model, parameters_key(self.parameters))


def sibling_sort_key(node: WeaveNode, models: Mapping[str, ModelLabel]) -> tuple:
    """
    Ranking of sibling nodes.

    Model label first, then single-token alternatives by descending
    probability, then everything else, then chronological.
    """
    if node.model is None:
        label = ""
    else:
        label = models.get(node.model, UNKNOWN_MODEL_LABEL).label

    if node.is_single_token():
        probability = node.content.tokens[0][0]
        return (label, node.model or "", 0, -probability, node.identifier)
    return (label, node.model or "", 1, 0.0, node.identifier)
