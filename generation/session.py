"""
Document session: one buffer, one document, one gate.

Load, update, save and drop are serialized by an asyncio.Lock so a save
can never interleave with a reload. Generation runs outside the lock
(appends are atomic on the loop thread) and saves through it afterwards.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from weavetree.config import LoomConfig
from weavetree.weave import (
    AbstractBuffer,
    WeaveDocument,
    WeaveFormatError,
    load_document,
    override_buffer_content,
    save_document,
    update_document,
)

from .context import GenerationContext
from .generator import BranchGenerator

logger = logging.getLogger(__name__)


class DocumentSession:
    """
    Owns the document loaded from a buffer.

    Failures never escape as exceptions: corrupt blobs and failed requests
    are reported through the notice callback.
    """

    def __init__(
        self,
        buffer: AbstractBuffer,
        config: Optional[LoomConfig] = None,
        generator: Optional[BranchGenerator] = None,
        notice: Optional[Callable[[str], None]] = None,
    ):
        self.buffer = buffer
        self.config = config or LoomConfig()
        self.generator = generator
        self.notice = notice
        self.document: Optional[WeaveDocument] = None
        self._lock = asyncio.Lock()

    @property
    def loaded(self) -> bool:
        return self.document is not None

    def notify(self, message: str) -> None:
        logger.warning(message)
        if self.notice is not None:
            self.notice(message)

    async def load(self) -> bool:
        """Load (or reload) the document from the buffer."""
        async with self._lock:
            try:
                self.document = load_document(
                    self.buffer, self.config.persistence, self.config.sync
                )
            except WeaveFormatError as e:
                self.document = None
                self.notify(f"Unable to load weave: {e}")
                return False
            return True

    async def update(self) -> bool:
        """Resync with the buffer after an edit. Returns True on change."""
        async with self._lock:
            if self.document is None:
                return False
            return update_document(self.buffer, self.document, self.config.persistence)

    async def save(self) -> bool:
        async with self._lock:
            if self.document is None:
                return False
            return save_document(self.buffer, self.document, self.config.persistence)

    async def override(self) -> bool:
        """Rewrite the buffer body from the document's active path."""
        async with self._lock:
            if self.document is None:
                return False
            override_buffer_content(self.buffer, self.document, self.config.persistence)
            return True

    async def drop(self) -> None:
        """Save and unload."""
        async with self._lock:
            if self.document is not None:
                save_document(self.buffer, self.document, self.config.persistence)
            self.document = None

    async def generate(
        self,
        parent: Optional[str] = None,
        context: Optional[GenerationContext] = None,
        depth: Optional[int] = None,
    ) -> List[str]:
        """
        Grow the tree under parent (default: current node) and save.

        Returns:
            Identifiers added; empty if nothing is loaded or no generator
        """
        if self.document is None or self.generator is None:
            return []
        document = self.document
        if parent is None:
            parent = document.current_node

        if context is None:
            context = GenerationContext(
                debounce_seconds=self.config.generation.debounce_seconds
            )
        on_error = context.on_error

        def report(error: BaseException) -> None:
            self.notify(f"Generation request failed: {error!r}")
            if on_error is not None:
                on_error(error)

        context.on_error = report
        try:
            added = await self.generator.generate(document, parent, context, depth)
        finally:
            context.on_error = on_error

        async with self._lock:
            if self.document is document:
                save_document(self.buffer, document, self.config.persistence)
        return added
