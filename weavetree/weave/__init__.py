"""
Branching text documents.

Key concepts:
- WeaveNode: a segment of text (or probability-tagged tokens)
- WeaveStore: node arena with parent/child, root, model and bookmark indices
- WeaveDocument: navigation, structural edits, buffer synchronization
- format: embedding a document in a buffer's front matter

Usage:
    document = WeaveDocument("Hello")
    document.set_active_content("Hello world")
    suffix = document.split_node(document.current_node, 3)
"""

from .document import WeaveDocument
from .format import (
    AbstractBuffer,
    StringBuffer,
    WeaveFormatError,
    decode_blob,
    deserialize_document,
    encode_blob,
    load_document,
    override_buffer_content,
    save_document,
    serialize_document,
    update_document,
)
from .node import UNKNOWN_MODEL_LABEL, ModelLabel, WeaveNode
from .store import UnknownNodeError, WeaveStore

__all__ = [
    "AbstractBuffer",
    "ModelLabel",
    "StringBuffer",
    "UNKNOWN_MODEL_LABEL",
    "UnknownNodeError",
    "WeaveDocument",
    "WeaveFormatError",
    "WeaveNode",
    "WeaveStore",
    "decode_blob",
    "deserialize_document",
    "encode_blob",
    "load_document",
    "override_buffer_content",
    "save_document",
    "serialize_document",
    "update_document",
]
