"""
End-to-end tests: a buffer edited, grown and persisted across sessions.

Exercises weavetree and generation together the way an editor would.
"""

from __future__ import annotations

import asyncio

import pytest

from generation import BranchGenerator, DocumentSession, GenerationContext
from weavetree.config import GenerationConfig, LoomConfig, PersistenceConfig
from weavetree.weave import (
    StringBuffer,
    deserialize_document,
    load_document,
    save_document,
    serialize_document,
)
from weavetree.weave.format import get_buffer_content


@pytest.mark.integration
class TestEditingSession:
    """Test a full editing and generation session."""

    def test_write_generate_choose_reload(self, scripted_provider):
        buffer = StringBuffer("---\ntitle: Tale\n---\nOnce")
        provider = scripted_provider([])
        provider.script = [
            provider.tokens([(0.7, " upon")], alternatives=[(0.7, " upon"), (0.2, " more")]),
            provider.text(" there was"),
        ]
        config = LoomConfig(generation=GenerationConfig(requests=2))
        session = DocumentSession(
            buffer, config, generator=BranchGenerator([provider], config.generation)
        )

        async def run():
            await session.load()
            added = await session.generate()

            # Pick the most likely alternative and write it into the buffer
            document = session.document
            document.move_to_child()
            chosen = document.get_active_content()
            await session.override()

            buffer.set_value(buffer.get_value() + " a time")
            await session.update()
            await session.drop()
            return added, chosen

        added, chosen = asyncio.run(run())

        assert len(added) == 3
        assert chosen == "Once upon"

        reloaded = load_document(buffer)
        assert reloaded.get_active_content() == chosen + " a time"
        assert get_buffer_content(buffer) == chosen + " a time"
        assert reloaded.get_node_children_count(reloaded.get_root_nodes()[0].identifier) == 3

    def test_bookmarked_branch_survives_rewrites(self):
        buffer = StringBuffer("Chapter one")
        session = DocumentSession(buffer)

        async def run():
            await session.load()
            document = session.document
            await session.save()
            buffer.set_value(buffer.get_value() + ": the storm")
            await session.update()
            document.toggle_bookmark(document.current_node)
            storm = document.current_node

            buffer.set_value(buffer.get_value().replace(": the storm", ": the calm"))
            await session.update()
            return document, storm

        document, storm = asyncio.run(run())

        assert storm in document
        assert document.get_active_content() == "Chapter one: the calm"
        assert len(document.get_node_children(document.get_root_nodes()[0].identifier)) == 2


@pytest.mark.integration
class TestProperties:
    """Test document-level guarantees over a grown tree."""

    @pytest.fixture
    def grown_document(self, hello_document, scripted_provider):
        provider = scripted_provider([])
        provider.script = [
            provider.text(" world"),
            provider.tokens(
                [(0.5, " there"), (0.4, " friend")],
                alternatives=[(0.5, " there"), (0.3, " you")],
            ),
            provider.text("!"),
            provider.text("?"),
            provider.text("."),
            provider.text("..."),
        ]
        generator = BranchGenerator([provider], GenerationConfig(requests=2, depth=2))
        asyncio.run(
            generator.generate(hello_document, hello_document.current_node, GenerationContext())
        )
        return hello_document

    def test_every_node_round_trips(self, grown_document):
        restored = deserialize_document(serialize_document(grown_document))
        for node in grown_document.get_all_nodes():
            assert restored.get_active_content(node.identifier) == (
                grown_document.get_active_content(node.identifier)
            )

    def test_resync_is_noop_everywhere(self, grown_document):
        for node in grown_document.get_all_nodes():
            grown_document.current_node = node.identifier
            before = len(grown_document)
            assert not grown_document.set_active_content(grown_document.get_active_content())
            assert len(grown_document) == before

    def test_split_merge_restores_every_text_node(self, grown_document):
        for node in list(grown_document.get_all_nodes()):
            if node.identifier not in grown_document or len(node.content) < 2:
                continue
            original = node.content
            suffix = grown_document.split_node(node.identifier, 1)
            if suffix is None:
                continue
            if grown_document.is_node_mergeable(node.identifier, suffix):
                merged = grown_document.merge_node(node.identifier, suffix)
                assert grown_document.get_node(merged).content == original

    def test_uncompressed_persistence(self, grown_document):
        buffer = StringBuffer(grown_document.get_active_content())
        config = PersistenceConfig(compressed=False)

        assert save_document(buffer, grown_document, config)
        restored = load_document(buffer, config)
        assert set(restored.nodes) == set(grown_document.nodes)
