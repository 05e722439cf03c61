"""
Completion provider contract.

A provider turns a prompt into completions. Each completion is either plain
text, a token sequence with per-token probabilities, or either of those
plus a ranked list of alternative first tokens ("logit" results).
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Dict, List, Mapping, Optional, Sequence

import numpy as np

from weavetree.common import NodeContent, TextContent, Token, TokenContent
from weavetree.weave import ModelLabel

logger = logging.getLogger(__name__)

# Smallest probability a token may carry; underflowed values are raised to it
MIN_PROBABILITY = float(np.finfo(np.float64).tiny)


@dataclass
class CompletionResult:
    """
    One completion returned by a provider.

    Attributes:
        model: Identifier of the model that produced it
        label: Display label for the model
        text: Plain-text completion
        tokens: Token completion as (probability, token) pairs
        alternatives: Candidate first tokens as (probability, token) pairs
    """

    model: str
    label: ModelLabel
    text: Optional[str] = None
    tokens: Optional[List[Token]] = None
    alternatives: Optional[List[Token]] = None

    def content(self) -> NodeContent:
        """Node content holding the full completion."""
        if self.tokens is not None:
            return TokenContent.from_pairs(self.tokens)
        return TextContent(self.text or "")

    def is_single_token(self) -> bool:
        return self.text is None and self.tokens is not None and len(self.tokens) == 1

    @classmethod
    def from_logprobs(
        cls,
        model: str,
        label: ModelLabel,
        tokens: Sequence[str],
        token_logprobs: Sequence[float],
        top_logprobs: Optional[Mapping[str, float]] = None,
    ) -> CompletionResult:
        """
        Build a result from an OpenAI-style logprobs payload.

        Args:
            model: Model identifier
            label: Model display label
            tokens: Completion tokens
            token_logprobs: Log probability of each token
            top_logprobs: Candidate first tokens -> log probability

        Returns:
            CompletionResult with probabilities and alternatives sorted
            by descending probability
        """
        if len(tokens) != len(token_logprobs):
            raise ValueError(
                f"Got {len(tokens)} tokens but {len(token_logprobs)} logprobs"
            )
        probs = np.clip(
            np.exp(np.asarray(token_logprobs, dtype=np.float64)), MIN_PROBABILITY, 1.0
        )
        pairs = [(float(p), str(t)) for p, t in zip(probs, tokens)]

        alternatives = None
        if top_logprobs:
            candidates = list(top_logprobs.items())
            alt_probs = np.clip(
                np.exp(np.asarray([lp for _, lp in candidates], dtype=np.float64)),
                MIN_PROBABILITY,
                1.0,
            )
            order = np.argsort(-alt_probs, kind="stable")
            alternatives = [(float(alt_probs[i]), str(candidates[i][0])) for i in order]

        return cls(model=model, label=label, tokens=pairs, alternatives=alternatives)


@dataclass
class CompletionOutcome:
    """Result of one request: a completion or the error that ended it."""

    result: Optional[CompletionResult] = None
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None


class AbstractCompletionProvider(ABC):
    """
    Base class for completion providers.

    Subclasses implement complete(); generate() fans one prompt out into
    concurrent requests and yields each outcome as it resolves.
    """

    def __init__(self, model: str, label: Optional[ModelLabel] = None):
        self.model = model
        self.label = label or ModelLabel(label=model)

    @abstractmethod
    async def complete(
        self, prompt: str, parameters: Dict[str, str]
    ) -> CompletionResult:
        """Run a single completion request."""
        pass

    async def generate(
        self, prompt: str, count: int, parameters: Dict[str, str]
    ) -> AsyncIterator[CompletionOutcome]:
        """
        Run count requests concurrently, yielding outcomes in completion order.

        A failing request yields an outcome carrying its error; it never
        aborts the other requests. Closing the iterator early cancels the
        requests still in flight.
        """
        tasks = [
            asyncio.ensure_future(self.complete(prompt, dict(parameters)))
            for _ in range(count)
        ]
        try:
            for future in asyncio.as_completed(tasks):
                try:
                    yield CompletionOutcome(result=await future)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(f"Completion request to {self.model} failed: {e!r}")
                    yield CompletionOutcome(error=e)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
