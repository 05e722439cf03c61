"""
Tests for weave persistence.

Tests for weavetree/weave/format.py
"""

from __future__ import annotations

import base64
import json
import zlib

import pytest
import yaml

from weavetree.config import COMPRESSED_FRONT_MATTER_KEY, UNCOMPRESSED_FRONT_MATTER_KEY
from weavetree.config import PersistenceConfig
from weavetree.weave import (
    StringBuffer,
    WeaveDocument,
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
from weavetree.weave.format import get_buffer_content, parse_front_matter


def front_matter(buffer: StringBuffer) -> dict:
    return parse_front_matter(buffer.get_value()).data


class TestSerialization:
    """Test serialize/deserialize round trips."""

    def test_round_trip_preserves_store(self, branching_document):
        restored = deserialize_document(serialize_document(branching_document))

        assert set(restored.nodes) == set(branching_document.nodes)
        assert restored.root_nodes == branching_document.root_nodes
        assert restored.node_children == branching_document.node_children
        assert restored.models == branching_document.models
        assert restored.bookmarks == branching_document.bookmarks
        assert restored.current_node == branching_document.current_node
        for identifier, node in branching_document.nodes.items():
            assert restored.get_node(identifier) == node
            assert restored.get_active_content(identifier) == (
                branching_document.get_active_content(identifier)
            )

    def test_round_trip_through_json(self, chain_document):
        """Test the serialized form survives JSON encoding."""
        payload = json.loads(json.dumps(serialize_document(chain_document)))
        restored = deserialize_document(payload)
        assert restored.get_active_content() == "Once upon a time"

    @pytest.mark.parametrize("compressed", [True, False])
    def test_blob_round_trip(self, branching_document, compressed):
        restored = decode_blob(encode_blob(branching_document, compressed), compressed)
        assert restored.get_active_content() == branching_document.get_active_content()
        assert restored.models == branching_document.models

    def test_compressed_blob_is_deflated_base64(self, chain_document):
        blob = encode_blob(chain_document, compressed=True)
        payload = json.loads(zlib.decompress(base64.b64decode(blob)))
        assert payload["current"] == chain_document.current_node


class TestCorruptData:
    """Test deserialization failures."""

    def test_bad_base64(self):
        with pytest.raises(WeaveFormatError):
            decode_blob("not base64!!", compressed=True)

    def test_bad_zlib(self):
        with pytest.raises(WeaveFormatError):
            decode_blob(base64.b64encode(b"plain bytes").decode(), compressed=True)

    def test_bad_json(self):
        with pytest.raises(WeaveFormatError):
            decode_blob("{nope", compressed=False)

    def test_non_string_blob(self):
        with pytest.raises(WeaveFormatError):
            decode_blob(42, compressed=False)

    def test_missing_field(self, chain_document):
        data = serialize_document(chain_document)
        del data["roots"]
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_dangling_parent(self, chain_document):
        data = serialize_document(chain_document)
        identifier = next(iter(data["nodes"]))
        data["nodes"][identifier]["parent"] = "missing"
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_child_index_mismatch(self, chain_document):
        data = serialize_document(chain_document)
        root = data["roots"][0]
        data["children"][root] = []
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_cycle(self):
        data = {
            "version": 1,
            "nodes": {
                "a": {"content": {"text": "a"}, "model": None, "parent": "b", "parameters": None},
                "b": {"content": {"text": "b"}, "model": None, "parent": "a", "parameters": None},
            },
            "roots": [],
            "children": {"a": ["b"], "b": ["a"]},
            "models": {},
            "bookmarks": [],
            "current": None,
        }
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_unknown_current(self, chain_document):
        data = serialize_document(chain_document)
        data["current"] = "missing"
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_bad_token_probability(self):
        data = {
            "version": 1,
            "nodes": {
                "a": {"content": {"tokens": [[2.0, "a"]]}, "model": None, "parent": None},
            },
            "roots": ["a"],
            "children": {"a": []},
            "models": {},
            "bookmarks": [],
            "current": "a",
        }
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)

    def test_unsupported_version(self, chain_document):
        data = serialize_document(chain_document)
        data["version"] = 99
        with pytest.raises(WeaveFormatError):
            deserialize_document(data)


class TestFrontMatter:
    """Test front matter parsing."""

    def test_no_front_matter(self, plain_buffer):
        info = parse_front_matter(plain_buffer.get_value())
        assert not info.exists
        assert get_buffer_content(plain_buffer) == "Once upon a time"

    def test_with_front_matter(self, front_matter_buffer):
        info = parse_front_matter(front_matter_buffer.get_value())
        assert info.exists
        assert info.data == {"title": "Story", "tags": ["draft"]}
        assert get_buffer_content(front_matter_buffer) == "Once upon a time"

    def test_invalid_yaml(self):
        with pytest.raises(WeaveFormatError):
            parse_front_matter("---\ntitle: [unclosed\n---\nbody")

    def test_non_mapping(self):
        with pytest.raises(WeaveFormatError):
            parse_front_matter("---\n- a\n- b\n---\nbody")


class TestBufferRoundTrip:
    """Test load/save/update against a buffer."""

    def test_load_without_weave(self, plain_buffer):
        document = load_document(plain_buffer)
        assert document.get_active_content() == "Once upon a time"
        assert plain_buffer.get_value() == "Once upon a time"

    def test_save_embeds_compressed_blob(self, front_matter_buffer):
        document = load_document(front_matter_buffer)
        assert save_document(front_matter_buffer, document)

        data = front_matter(front_matter_buffer)
        assert data["title"] == "Story"
        assert COMPRESSED_FRONT_MATTER_KEY in data
        assert UNCOMPRESSED_FRONT_MATTER_KEY not in data
        assert get_buffer_content(front_matter_buffer) == "Once upon a time"

    def test_save_uncompressed(self, plain_buffer):
        config = PersistenceConfig(compressed=False)
        document = load_document(plain_buffer, config)
        save_document(plain_buffer, document, config)

        data = front_matter(plain_buffer)
        assert json.loads(data[UNCOMPRESSED_FRONT_MATTER_KEY])["version"] == 1

    def test_reload_restores_tree(self, plain_buffer):
        document = load_document(plain_buffer)
        root = document.current_node
        document.split_node(root, 4)
        save_document(plain_buffer, document)

        restored = load_document(plain_buffer)
        assert set(restored.nodes) == set(document.nodes)
        assert restored.current_node == document.current_node

    def test_save_skipped_when_buffer_changed(self, plain_buffer):
        """Test a stale document never overwrites newer buffer text."""
        document = load_document(plain_buffer)
        plain_buffer.set_value("Once upon a time, there was")
        assert not save_document(plain_buffer, document)
        assert plain_buffer.get_value() == "Once upon a time, there was"

    def test_update_syncs_and_saves(self, plain_buffer):
        document = load_document(plain_buffer)
        save_document(plain_buffer, document)
        plain_buffer.set_value(plain_buffer.get_value() + ", there was")

        assert update_document(plain_buffer, document)
        assert document.get_active_content() == "Once upon a time, there was"
        assert load_document(plain_buffer).get_active_content() == (
            "Once upon a time, there was"
        )

    def test_load_resyncs_offline_edits(self, plain_buffer):
        """Test edits made while unloaded are absorbed on load."""
        document = load_document(plain_buffer)
        save_document(plain_buffer, document)
        plain_buffer.set_value(plain_buffer.get_value() + " again")

        reloaded = load_document(plain_buffer)
        assert reloaded.get_active_content() == "Once upon a time again"
        assert len(reloaded) == 2

    def test_corrupt_blob_leaves_buffer_untouched(self):
        raw = f"---\n{COMPRESSED_FRONT_MATTER_KEY}: garbage!!\n---\nbody"
        buffer = StringBuffer(raw)
        with pytest.raises(WeaveFormatError):
            load_document(buffer)
        assert buffer.get_value() == raw

    def test_override_rewrites_body(self, plain_buffer):
        document = load_document(plain_buffer)
        save_document(plain_buffer, document)
        document.set_active_content("Something else")

        override_buffer_content(plain_buffer, document)
        assert get_buffer_content(plain_buffer) == "Something else"
        assert load_document(plain_buffer).get_active_content() == "Something else"

    def test_front_matter_is_valid_yaml(self, front_matter_buffer):
        document = load_document(front_matter_buffer)
        save_document(front_matter_buffer, document)
        raw = front_matter_buffer.get_value()
        header = raw.split("---\n")[1]
        assert isinstance(yaml.safe_load(header), dict)
