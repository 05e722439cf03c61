"""
Branch generation: grow the weave with model completions.

Every request of a generation run resolves independently and appends to
the shared document as soon as it arrives. Appends are plain synchronous
calls on the event loop thread, so each one is atomic with respect to the
others and to buffer synchronization.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import Dict, List, Optional, Sequence

from weavetree.common import TokenContent, copy_parameters, new_identifier
from weavetree.config import GenerationConfig
from weavetree.weave import UnknownNodeError, WeaveDocument, WeaveNode

from .context import GenerationContext
from .provider import AbstractCompletionProvider, CompletionResult

logger = logging.getLogger(__name__)


def apply_result(
    document: WeaveDocument,
    parent: Optional[str],
    result: CompletionResult,
    parameters: Optional[Dict[str, str]] = None,
) -> List[str]:
    """
    Append one completion under parent.

    With more than one alternative first token, one single-token sibling is
    added per alternative. The full completion is added as its own node
    unless it is just one of those single tokens. Every node is built before
    the first one is added, so a malformed result leaves the document as it
    was.

    Returns:
        Identifiers that now hold the result (deduplicated, in order)

    Raises:
        UnknownNodeError: If parent no longer exists
        ValueError: If the result holds invalid content
    """
    alternatives = result.alternatives or []
    fan_out = len(alternatives) > 1

    contents = []
    if fan_out:
        contents.extend(
            TokenContent(((probability, token),)) for probability, token in alternatives
        )
    if not fan_out or not result.is_single_token():
        content = result.content()
        if len(content) == 0:
            logger.debug(f"Skipping empty completion from {result.model}")
        else:
            contents.append(content)

    nodes = [
        WeaveNode(
            identifier=new_identifier(),
            content=content,
            model=result.model,
            parent=parent,
            parameters=copy_parameters(parameters),
        )
        for content in contents
    ]
    if nodes and parent is not None and parent not in document:
        raise UnknownNodeError(parent)

    identifiers = [document.add_node(node, result.label) for node in nodes]
    return list(dict.fromkeys(identifiers))


class BranchGenerator:
    """
    Runs concurrent completion requests and appends their results.

    Usage:
        generator = BranchGenerator([provider], GenerationConfig(requests=3))
        added = asyncio.run(generator.generate(document, document.current_node))
    """

    def __init__(
        self,
        providers: Sequence[AbstractCompletionProvider],
        config: Optional[GenerationConfig] = None,
    ):
        self.providers = list(providers)
        self.config = config or GenerationConfig()

    async def generate(
        self,
        document: WeaveDocument,
        parent: Optional[str],
        context: Optional[GenerationContext] = None,
        depth: Optional[int] = None,
        parameters: Optional[Dict[str, str]] = None,
    ) -> List[str]:
        """
        Generate children under parent.

        Args:
            document: Document to grow
            parent: Node to continue from (None continues from nothing and
                adds roots)
            context: Observers and cancellation channel for this run
            depth: Levels to generate; each level continues every node the
                previous level added (default: config.depth)
            parameters: Generation parameters (default: config.parameters),
                copied onto every node

        Returns:
            Identifiers of all nodes that hold results of this run
        """
        if context is None:
            context = GenerationContext(debounce_seconds=self.config.debounce_seconds)
        depth = depth if depth is not None else self.config.depth
        parameters = copy_parameters(
            parameters if parameters is not None else self.config.parameters
        ) or {}

        try:
            added = await self._generate_level(document, parent, depth, context, parameters)
        finally:
            context.flush()

        logger.info(
            f"Generation finished: {len(added)} nodes added, {len(context.errors)} failures"
        )
        return added

    async def _generate_level(
        self,
        document: WeaveDocument,
        parent: Optional[str],
        depth: int,
        context: GenerationContext,
        parameters: Dict[str, str],
    ) -> List[str]:
        if depth < 1 or context.cancelled:
            return []
        if parent is not None and parent not in document:
            error = UnknownNodeError(parent)
            logger.warning(f"Cannot generate under missing node {parent}")
            context.report_error(error)
            return []

        prompt = document.get_active_content(parent)
        results = await asyncio.gather(
            *(
                self._consume(provider, document, parent, prompt, depth, context, parameters)
                for provider in self.providers
            )
        )
        return [identifier for identifiers in results for identifier in identifiers]

    async def _consume(
        self,
        provider: AbstractCompletionProvider,
        document: WeaveDocument,
        parent: Optional[str],
        prompt: str,
        depth: int,
        context: GenerationContext,
        parameters: Dict[str, str],
    ) -> List[str]:
        count = self.config.requests
        added: List[str] = []
        deeper = []
        finished = 0

        context.requests_started(count)
        try:
            async with aclosing(provider.generate(prompt, count, parameters)) as outcomes:
                async for outcome in outcomes:
                    finished += 1
                    context.requests_finished()
                    if context.cancelled:
                        break
                    if not outcome.success:
                        context.report_error(outcome.error)
                        continue

                    try:
                        identifiers = apply_result(document, parent, outcome.result, parameters)
                    except UnknownNodeError as e:
                        # Parent removed while the request was in flight
                        logger.warning(f"Rejected completion for missing node {parent}")
                        context.report_error(e)
                        continue
                    except Exception as e:
                        logger.warning(
                            f"Rejected malformed completion from {provider.model}: {e}"
                        )
                        context.report_error(e)
                        continue

                    for identifier in identifiers:
                        logger.debug(f"Added generated node {identifier}")
                        context.node_added(identifier)
                    added.extend(identifiers)

                    if depth > 1:
                        deeper.extend(
                            asyncio.ensure_future(
                                self._generate_level(
                                    document, identifier, depth - 1, context, parameters
                                )
                            )
                            for identifier in identifiers
                        )
        except BaseException:
            for future in deeper:
                future.cancel()
            raise
        finally:
            context.requests_finished(count - finished)

        for identifiers in await asyncio.gather(*deeper):
            added.extend(identifiers)
        return added
