"""
Shared building blocks.

- Node content (plain text vs. probability-tagged tokens)
- Parameter map canonicalization and schema base class
- Time-ordered identifiers
"""

from .content import (
    NodeContent,
    TextContent,
    Token,
    TokenContent,
    concat_content,
    content_from_dict,
    content_to_dict,
    get_node_content,
    same_kind,
    split_content,
)
from .identifiers import identifier_like, new_identifier
from .schema_utils import (
    Parameters,
    SchemaClass,
    copy_parameters,
    parameters_equal,
    parameters_key,
)

__all__ = [
    "NodeContent",
    "Parameters",
    "SchemaClass",
    "TextContent",
    "Token",
    "TokenContent",
    "concat_content",
    "content_from_dict",
    "content_to_dict",
    "copy_parameters",
    "get_node_content",
    "identifier_like",
    "new_identifier",
    "parameters_equal",
    "parameters_key",
    "same_kind",
    "split_content",
]
