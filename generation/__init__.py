"""
Branch generation for weave documents.

- Completion providers (contract + local Transformers-backed provider)
- BranchGenerator: concurrent requests appended to the document as they land
- GenerationContext: per-run observers, cancellation and request accounting
- DocumentSession: serialized load/update/save around one buffer

generation.local and generation.model need torch and transformers and are
not imported here; import them directly.
"""

from .context import Debouncer, GenerationContext
from .generator import BranchGenerator, apply_result
from .provider import AbstractCompletionProvider, CompletionOutcome, CompletionResult
from .session import DocumentSession

__all__ = [
    "AbstractCompletionProvider",
    "BranchGenerator",
    "CompletionOutcome",
    "CompletionResult",
    "Debouncer",
    "DocumentSession",
    "GenerationContext",
    "apply_result",
]
