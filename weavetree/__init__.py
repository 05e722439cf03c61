"""
Weavetree: branching-text documents for loom-style writing.

A document is a tree of text segments. Any root-to-node path spells one
variant of the text; siblings are alternative continuations, typically
competing language model completions.
"""

__version__ = "0.1.0"

from .common import NodeContent, TextContent, TokenContent, get_node_content
from .config import (
    GenerationConfig,
    LoomConfig,
    PersistenceConfig,
    SyncConfig,
    load_config,
)
from .weave import (
    UNKNOWN_MODEL_LABEL,
    AbstractBuffer,
    ModelLabel,
    StringBuffer,
    UnknownNodeError,
    WeaveDocument,
    WeaveFormatError,
    WeaveNode,
    load_document,
    save_document,
    update_document,
)

__all__ = [
    # Content
    "NodeContent",
    "TextContent",
    "TokenContent",
    "get_node_content",
    # Config
    "GenerationConfig",
    "LoomConfig",
    "PersistenceConfig",
    "SyncConfig",
    "load_config",
    # Weave
    "AbstractBuffer",
    "ModelLabel",
    "StringBuffer",
    "UNKNOWN_MODEL_LABEL",
    "UnknownNodeError",
    "WeaveDocument",
    "WeaveFormatError",
    "WeaveNode",
    "load_document",
    "save_document",
    "update_document",
]
