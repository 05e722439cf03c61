"""
Completion provider backed by a local Transformers model.

Sampling runs in a worker thread so requests never block the event loop.
Requests against one model are serialized; the model is not re-entrant.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

import numpy as np
import torch

from weavetree.common import Token
from weavetree.weave import ModelLabel

from .model import ModelWrapper
from .provider import MIN_PROBABILITY, AbstractCompletionProvider, CompletionResult

logger = logging.getLogger(__name__)


@dataclass
class SamplingSettings:
    """
    Sampling settings parsed from a node's free-form parameters.

    Attributes:
        max_tokens: Maximum number of tokens per completion
        temperature: Softmax temperature; 0 means greedy
        top_k: Sample only among the k most likely tokens (0 = off)
        top_p: Nucleus sampling threshold (1.0 = off)
        alternatives: Number of ranked first-token candidates to report
        seed: Seed for the sampler
    """

    max_tokens: int = 16
    temperature: float = 1.0
    top_k: int = 0
    top_p: float = 1.0
    alternatives: int = 0
    seed: Optional[int] = None

    @classmethod
    def from_parameters(cls, parameters: Mapping[str, str]) -> SamplingSettings:
        """
        Raises:
            ValueError: If a known parameter does not parse or is out of range
        """
        settings = cls()
        for name, convert in (
            ("max_tokens", int),
            ("temperature", float),
            ("top_k", int),
            ("top_p", float),
            ("alternatives", int),
            ("seed", int),
        ):
            if name in parameters:
                setattr(settings, name, convert(parameters[name]))

        if settings.max_tokens < 1:
            raise ValueError(f"max_tokens must be >= 1, got {settings.max_tokens}")
        if settings.temperature < 0:
            raise ValueError(f"temperature must be >= 0, got {settings.temperature}")
        if not 0 < settings.top_p <= 1:
            raise ValueError(f"top_p must be in (0, 1], got {settings.top_p}")
        return settings


def filter_distribution(probs: np.ndarray, top_k: int, top_p: float) -> np.ndarray:
    """Apply top-k then nucleus filtering and renormalize."""
    if top_k > 0:
        top_k_indices = np.argsort(probs)[-top_k:]
        filtered = np.zeros_like(probs)
        filtered[top_k_indices] = probs[top_k_indices]
        probs = filtered / np.sum(filtered)

    if 0 < top_p < 1:
        sorted_indices = np.argsort(probs)[::-1]
        cutoff_index = np.searchsorted(np.cumsum(probs[sorted_indices]), top_p) + 1
        kept = sorted_indices[:cutoff_index]
        filtered = np.zeros_like(probs)
        filtered[kept] = probs[kept]
        probs = filtered / np.sum(filtered)

    return probs


class LocalCompletionProvider(AbstractCompletionProvider):
    """
    Samples completions token by token from a ModelWrapper.

    Every completion carries per-token probabilities under the unscaled
    model distribution. When the "alternatives" parameter is positive the
    ranked first-token candidates are reported too.
    """

    def __init__(
        self,
        wrapper: ModelWrapper,
        model: Optional[str] = None,
        label: Optional[ModelLabel] = None,
    ):
        super().__init__(model or wrapper.model_name, label)
        self.wrapper = wrapper
        self._lock = threading.Lock()

    async def complete(
        self, prompt: str, parameters: Dict[str, str]
    ) -> CompletionResult:
        settings = SamplingSettings.from_parameters(parameters)
        return await asyncio.to_thread(self._sample, prompt, settings)

    def _sample(self, prompt: str, settings: SamplingSettings) -> CompletionResult:
        rng = np.random.default_rng(settings.seed)

        with self._lock:
            generated = self.wrapper.tokenize_prompt(prompt)
            past = None
            tokens: List[Token] = []
            alternatives: Optional[List[Token]] = None

            for step in range(settings.max_tokens):
                logits, past = self.wrapper.get_next_token_logits(generated, past)
                raw = self.wrapper.compute_distribution(logits[0]).cpu().numpy()
                raw = raw.astype(np.float64)

                if step == 0 and settings.alternatives > 0:
                    alternatives = self._top_tokens(raw, settings.alternatives)

                token_id = self._choose(logits[0], raw, settings, rng)
                if token_id == self.wrapper.eos_token_id:
                    break

                prob = min(1.0, max(float(raw[token_id]), MIN_PROBABILITY))
                tokens.append((prob, self.wrapper.decode_token(token_id)))
                generated = torch.cat(
                    [generated, torch.tensor([[token_id]], device=generated.device)],
                    dim=-1,
                )

        logger.debug(f"{self.model} sampled {len(tokens)} tokens")
        return CompletionResult(
            model=self.model, label=self.label, tokens=tokens, alternatives=alternatives
        )

    def _choose(
        self,
        logits: torch.Tensor,
        raw: np.ndarray,
        settings: SamplingSettings,
        rng: np.random.Generator,
    ) -> int:
        if settings.temperature == 0:
            return int(np.argmax(raw))

        probs = raw
        if settings.temperature != 1.0:
            probs = self.wrapper.compute_distribution(logits, settings.temperature)
            probs = probs.cpu().numpy().astype(np.float64)

        probs = filter_distribution(probs, settings.top_k, settings.top_p)
        return int(rng.choice(len(probs), p=probs / probs.sum()))

    def _top_tokens(self, raw: np.ndarray, count: int) -> List[Token]:
        indices = np.argsort(raw)[::-1][:count]
        return [
            (min(1.0, float(raw[i])), self.wrapper.decode_token(int(i)))
            for i in indices
            if raw[i] > 0
        ]
