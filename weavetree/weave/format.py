"""
Persistence of weave documents inside a text buffer.

The whole node store is serialized to JSON and embedded in the buffer's
YAML front matter, either as-is or zlib-compressed and base64-encoded:

    ---
    title: My story
    TapestryLoomWeaveCompressed: eJy...
    ---
    Once upon a time...

The front matter belongs to the buffer; only the text after it is synced
against the weave.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
import zlib
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from weavetree.common import content_from_dict, content_to_dict
from weavetree.config import PersistenceConfig, SyncConfig

from .document import WeaveDocument
from .node import ModelLabel, WeaveNode

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1

_FRONT_MATTER = re.compile(
    r"\A---[ \t]*\r?\n(.*?)^---[ \t]*(?:\r?\n|\Z)", re.DOTALL | re.MULTILINE
)


class WeaveFormatError(ValueError):
    """Raised when a persisted weave cannot be decoded."""


# ============================================================================
# Buffers
# ============================================================================


class AbstractBuffer(ABC):
    """Flat text source/sink the weave is synced against."""

    @abstractmethod
    def get_value(self) -> str:
        pass

    @abstractmethod
    def set_value(self, value: str) -> None:
        pass

    def replace_range(self, start: int, end: int, text: str) -> None:
        value = self.get_value()
        self.set_value(value[:start] + text + value[end:])


class StringBuffer(AbstractBuffer):
    """In-memory buffer."""

    def __init__(self, value: str = ""):
        self.value = value

    def get_value(self) -> str:
        return self.value

    def set_value(self, value: str) -> None:
        self.value = value


# ============================================================================
# Front matter
# ============================================================================


@dataclass
class FrontMatterInfo:
    """
    Location and contents of a buffer's front matter.

    Attributes:
        exists: Whether the buffer starts with a front matter block
        data: Parsed YAML mapping ({} if absent or empty)
        start: Offset where the YAML text starts
        end: Offset where the YAML text ends (before the closing fence)
        content_start: Offset where the body text starts
    """

    exists: bool
    data: Dict[str, Any] = field(default_factory=dict)
    start: int = 0
    end: int = 0
    content_start: int = 0


def parse_front_matter(raw: str) -> FrontMatterInfo:
    """
    Locate and parse the YAML front matter of a buffer.

    Raises:
        WeaveFormatError: If the front matter is not a valid YAML mapping
    """
    match = _FRONT_MATTER.match(raw)
    if match is None:
        return FrontMatterInfo(exists=False)

    try:
        data = yaml.safe_load(match.group(1))
    except yaml.YAMLError as e:
        raise WeaveFormatError(f"Invalid front matter: {e}") from e
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise WeaveFormatError("Front matter is not a mapping")

    return FrontMatterInfo(
        exists=True,
        data=data,
        start=match.start(1),
        end=match.end(1),
        content_start=match.end(),
    )


def get_buffer_content(buffer: AbstractBuffer) -> str:
    """Body text of a buffer (front matter skipped)."""
    raw = buffer.get_value()
    match = _FRONT_MATTER.match(raw)
    return raw[match.end():] if match else raw


def _write_front_matter(
    buffer: AbstractBuffer, data: Dict[str, Any], body: Optional[str] = None
) -> None:
    raw = buffer.get_value()
    info = parse_front_matter(raw)
    dumped = yaml.safe_dump(data, sort_keys=False, allow_unicode=True, width=4096)

    if body is not None:
        buffer.set_value("---\n" + dumped + "---\n" + body)
    elif info.exists:
        buffer.replace_range(info.start, info.end, dumped)
    else:
        buffer.set_value("---\n" + dumped + "---\n" + raw)


# ============================================================================
# Serialization
# ============================================================================


def serialize_document(document: WeaveDocument) -> Dict[str, Any]:
    """Convert a document's node store to a JSON-serializable dict."""
    return {
        "version": FORMAT_VERSION,
        "nodes": {
            node.identifier: {
                "content": content_to_dict(node.content),
                "model": node.model,
                "parent": node.parent,
                "parameters": node.parameters,
            }
            for node in document.get_all_nodes()
        },
        "roots": sorted(document.root_nodes),
        "children": {
            identifier: sorted(children)
            for identifier, children in sorted(document.node_children.items())
        },
        "models": {
            model: label.to_dict() for model, label in sorted(document.models.items())
        },
        "bookmarks": sorted(document.bookmarks),
        "current": document.current_node,
    }


def deserialize_document(
    data: Any, config: Optional[SyncConfig] = None
) -> WeaveDocument:
    """
    Rebuild a document from serialize_document() output.

    Validates the whole structure before building anything, so a corrupt
    payload never yields a partially constructed document.

    Raises:
        WeaveFormatError: On any malformed or inconsistent payload
    """
    try:
        return _deserialize(data, config)
    except WeaveFormatError:
        raise
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise WeaveFormatError(f"Malformed weave data: {e!r}") from e


def _deserialize(data: Any, config: Optional[SyncConfig]) -> WeaveDocument:
    if not isinstance(data, dict):
        raise WeaveFormatError("Weave data must be a mapping")
    if data.get("version") != FORMAT_VERSION:
        raise WeaveFormatError(f"Unsupported weave version: {data.get('version')!r}")

    nodes: Dict[str, WeaveNode] = {}
    for identifier, raw in data["nodes"].items():
        parameters = raw.get("parameters")
        if parameters is not None:
            parameters = {str(k): str(v) for k, v in parameters.items()}
        nodes[identifier] = WeaveNode(
            identifier=identifier,
            content=content_from_dict(raw["content"]),
            model=raw.get("model"),
            parent=raw.get("parent"),
            parameters=parameters,
        )

    # Derive the child index from parent links and check it matches
    children: Dict[str, set] = {identifier: set() for identifier in nodes}
    roots = set()
    for node in nodes.values():
        if node.parent is None:
            roots.add(node.identifier)
        elif node.parent not in nodes:
            raise WeaveFormatError(
                f"Node {node.identifier} references missing parent {node.parent}"
            )
        else:
            children[node.parent].add(node.identifier)

    if set(data["roots"]) != roots:
        raise WeaveFormatError("Root set does not match parent links")
    for identifier, stored in data["children"].items():
        if set(stored) != children.get(identifier, set()):
            raise WeaveFormatError(f"Child index of {identifier} does not match parent links")

    # Breadth-first from the roots; anything unreached sits on a cycle
    order = []
    queue = deque(sorted(roots))
    while queue:
        identifier = queue.popleft()
        order.append(identifier)
        queue.extend(sorted(children[identifier]))
    if len(order) != len(nodes):
        raise WeaveFormatError("Weave contains a parent cycle")

    bookmarks = set(data.get("bookmarks") or [])
    if not bookmarks <= set(nodes):
        raise WeaveFormatError("Bookmarks reference missing nodes")
    current = data.get("current")
    if current is not None and current not in nodes:
        raise WeaveFormatError(f"Current node {current} does not exist")

    labels = {
        model: ModelLabel(label=str(raw["label"]), color=raw.get("color"))
        for model, raw in (data.get("models") or {}).items()
    }

    document = WeaveDocument(config=config)
    for identifier in order:
        node = nodes[identifier]
        document._insert(node)
        document._register_model(node, labels.get(node.model) if node.model else None)
    document.bookmarks = bookmarks
    document.current_node = current
    return document


def encode_blob(document: WeaveDocument, compressed: bool) -> str:
    """Serialize a document to an opaque string."""
    payload = json.dumps(serialize_document(document), ensure_ascii=False)
    if not compressed:
        return payload
    deflated = zlib.compress(payload.encode("utf-8"))
    return base64.b64encode(deflated).decode("ascii")


def decode_blob(
    blob: Any, compressed: bool, config: Optional[SyncConfig] = None
) -> WeaveDocument:
    """
    Inverse of encode_blob().

    Raises:
        WeaveFormatError: If the blob is corrupt
    """
    if not isinstance(blob, str):
        raise WeaveFormatError(f"Weave blob must be a string, got {type(blob).__name__}")
    try:
        if compressed:
            payload = zlib.decompress(base64.b64decode(blob, validate=True)).decode("utf-8")
        else:
            payload = blob
        data = json.loads(payload)
    except (binascii.Error, zlib.error, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WeaveFormatError(f"Corrupt weave blob: {e}") from e
    return deserialize_document(data, config)


# ============================================================================
# Buffer round trip
# ============================================================================


def load_document(
    buffer: AbstractBuffer,
    config: Optional[PersistenceConfig] = None,
    sync_config: Optional[SyncConfig] = None,
) -> WeaveDocument:
    """
    Load the weave embedded in a buffer, or start one from its text.

    An embedded weave is resynced against the buffer body (edits made
    while the weave was not loaded) and saved back if that changed it.

    Raises:
        WeaveFormatError: If the embedded weave is corrupt. The buffer is
            left untouched.
    """
    config = config or PersistenceConfig()
    raw = buffer.get_value()
    info = parse_front_matter(raw)
    content = raw[info.content_start:]

    if config.compressed_key in info.data:
        document = decode_blob(info.data[config.compressed_key], True, sync_config)
    elif config.uncompressed_key in info.data:
        document = decode_blob(info.data[config.uncompressed_key], False, sync_config)
    else:
        logger.info("No embedded weave found, starting from buffer text")
        return WeaveDocument(content, config=sync_config)

    logger.info(f"Loaded weave with {len(document)} nodes")
    if document.set_active_content(content):
        save_document(buffer, document, config)
    return document


def update_document(
    buffer: AbstractBuffer,
    document: WeaveDocument,
    config: Optional[PersistenceConfig] = None,
) -> bool:
    """Resync a loaded document with the buffer body; save if changed."""
    updated = document.set_active_content(get_buffer_content(buffer))
    if updated:
        save_document(buffer, document, config)
    return updated


def save_document(
    buffer: AbstractBuffer,
    document: WeaveDocument,
    config: Optional[PersistenceConfig] = None,
) -> bool:
    """
    Embed the document in the buffer's front matter.

    Skipped (returns False) when the buffer body no longer matches the
    document's active content, i.e. the buffer was edited after the last
    sync and a fresh update is due.
    """
    config = config or PersistenceConfig()
    info = parse_front_matter(buffer.get_value())
    content = buffer.get_value()[info.content_start:]

    if document.get_active_content().strip() != content.strip():
        logger.debug("Buffer changed since last sync, skipping save")
        return False

    data = dict(info.data)
    _store_blob(data, document, config)
    _write_front_matter(buffer, data)
    return True


def override_buffer_content(
    buffer: AbstractBuffer,
    document: WeaveDocument,
    config: Optional[PersistenceConfig] = None,
) -> None:
    """Rewrite the buffer body from the document's active path."""
    config = config or PersistenceConfig()
    data = dict(parse_front_matter(buffer.get_value()).data)
    _store_blob(data, document, config)
    _write_front_matter(buffer, data, body=document.get_active_content())


def _store_blob(
    data: Dict[str, Any], document: WeaveDocument, config: PersistenceConfig
) -> None:
    if config.compressed:
        data[config.compressed_key] = encode_blob(document, compressed=True)
        data.pop(config.uncompressed_key, None)
    else:
        data[config.uncompressed_key] = encode_blob(document, compressed=False)
        data.pop(config.compressed_key, None)
