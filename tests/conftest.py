"""
Pytest configuration and shared fixtures for weavetree tests.

Provides small documents, buffers, and scripted completion providers.
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Union

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from generation.provider import AbstractCompletionProvider, CompletionResult
from weavetree.common import TextContent, TokenContent, new_identifier
from weavetree.weave import ModelLabel, StringBuffer, WeaveDocument, WeaveNode

# =============================================================================
# Node Fixtures
# =============================================================================


@pytest.fixture
def make_node():
    """Factory for nodes with fresh identifiers."""

    def _make(
        text: Union[str, Sequence] = "",
        parent: Optional[str] = None,
        model: Optional[str] = None,
        parameters: Optional[Dict[str, str]] = None,
    ) -> WeaveNode:
        if isinstance(text, str):
            content = TextContent(text)
        else:
            content = TokenContent(tuple(text))
        return WeaveNode(
            identifier=new_identifier(),
            content=content,
            model=model,
            parent=parent,
            parameters=parameters,
        )

    return _make


# =============================================================================
# Document Fixtures
# =============================================================================


@pytest.fixture
def hello_document() -> WeaveDocument:
    """Document with one root holding "Hello"."""
    return WeaveDocument("Hello")


@pytest.fixture
def chain_document(make_node) -> WeaveDocument:
    """Active path A -> B -> C spelling "Once upon a time"."""
    document = WeaveDocument()
    a = document.add_node(make_node("Once"))
    b = document.add_node(make_node(" upon", parent=a))
    c = document.add_node(make_node(" a time", parent=b))
    document.current_node = c
    return document


@pytest.fixture
def branching_document(make_node) -> WeaveDocument:
    """
    Root with two text branches and three token alternatives.

        "The"
        ├── " cat"
        ├── " dog"  (bookmarked, current)
        └── " a" / " an" / " one"  (gpt, p=0.9/0.5/0.1)
    """
    document = WeaveDocument()
    root = document.add_node(make_node("The"))
    document.add_node(make_node(" cat", parent=root))
    dog = document.add_node(make_node(" dog", parent=root))
    label = ModelLabel(label="gpt", color="#00ff00")
    for prob, token in [(0.1, " one"), (0.9, " a"), (0.5, " an")]:
        document.add_node(make_node([(prob, token)], parent=root, model="gpt"), label)
    document.bookmarks.add(dog)
    document.current_node = dog
    return document


# =============================================================================
# Buffer Fixtures
# =============================================================================


@pytest.fixture
def plain_buffer() -> StringBuffer:
    """Buffer without front matter."""
    return StringBuffer("Once upon a time")


@pytest.fixture
def front_matter_buffer() -> StringBuffer:
    """Buffer with unrelated front matter."""
    return StringBuffer("---\ntitle: Story\ntags:\n  - draft\n---\nOnce upon a time")


# =============================================================================
# Provider Fixtures
# =============================================================================


class ScriptedProvider(AbstractCompletionProvider):
    """
    Provider returning queued results (or raising queued exceptions).

    Each complete() call pops the next item; delays let tests control the
    order in which concurrent requests resolve.
    """

    def __init__(
        self,
        script: List[Union[CompletionResult, Exception]],
        model: str = "scripted",
        label: Optional[ModelLabel] = None,
        delays: Optional[List[float]] = None,
    ):
        super().__init__(model, label)
        self.script = list(script)
        self.delays = list(delays or [])
        self.prompts: List[str] = []
        self.parameters: List[Dict[str, str]] = []

    async def complete(self, prompt, parameters):
        self.prompts.append(prompt)
        self.parameters.append(parameters)
        item = self.script.pop(0) if self.script else self.text("")
        delay = self.delays.pop(0) if self.delays else 0.0
        await asyncio.sleep(delay)
        if isinstance(item, Exception):
            raise item
        return item

    def text(self, text: str) -> CompletionResult:
        return CompletionResult(model=self.model, label=self.label, text=text)

    def tokens(self, pairs, alternatives=None) -> CompletionResult:
        return CompletionResult(
            model=self.model,
            label=self.label,
            tokens=list(pairs),
            alternatives=list(alternatives) if alternatives is not None else None,
        )


@pytest.fixture
def scripted_provider():
    """Factory for ScriptedProvider instances."""

    def _make(script=None, **kwargs) -> ScriptedProvider:
        return ScriptedProvider(script or [], **kwargs)

    return _make


# =============================================================================
# Markers
# =============================================================================


def pytest_configure(config):
    """Configure custom markers."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line(
        "markers", "requires_model: marks tests that require downloading models"
    )
