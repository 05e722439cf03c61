"""
Per-run generation state and observers.

A GenerationContext is passed to every generation call instead of keeping
process-wide counters, so concurrent runs (and tests) never share state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Coalesces bursts of trigger() calls into one callback.

    The callback fires once, delay seconds after the last trigger. Must be
    triggered from inside a running event loop.
    """

    def __init__(self, callback: Callable[[], None], delay: float):
        self.callback = callback
        self.delay = delay
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        if self.delay <= 0:
            self.callback()
            return
        self.cancel()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._fire)

    def flush(self) -> None:
        """Fire now if a call is pending."""
        if self._handle is not None:
            self.cancel()
            self.callback()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        self.callback()


@dataclass
class GenerationContext:
    """
    Observers and counters for one generation run.

    Attributes:
        on_change: Called (debounced) after nodes were added
        on_status: Called with the number of requests in flight
        on_error: Called with each failed request's error
        on_node_added: Called with each added node's identifier
        debounce_seconds: Delay used to coalesce on_change calls
    """

    on_change: Optional[Callable[[], None]] = None
    on_status: Optional[Callable[[int], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
    on_node_added: Optional[Callable[[str], None]] = None
    debounce_seconds: float = 0.1

    active_requests: int = field(default=0, init=False)
    errors: List[BaseException] = field(default_factory=list, init=False)
    added: List[str] = field(default_factory=list, init=False)
    _cancelled: bool = field(default=False, init=False, repr=False)
    _debouncer: Optional[Debouncer] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        self._debouncer = Debouncer(self._notify_change, self.debounce_seconds)

    # ------------------------------------------------------------------
    # Request accounting
    # ------------------------------------------------------------------

    def requests_started(self, count: int) -> None:
        self.active_requests += count
        self._notify_status()

    def requests_finished(self, count: int = 1) -> None:
        self.active_requests = max(0, self.active_requests - count)
        self._notify_status()

    def report_error(self, error: BaseException) -> None:
        self.errors.append(error)
        if self.on_error is not None:
            self.on_error(error)

    def node_added(self, identifier: str) -> None:
        self.added.append(identifier)
        if self.on_node_added is not None:
            self.on_node_added(identifier)
        self._debouncer.trigger()

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Stop scheduling requests and drop results still in flight."""
        if not self._cancelled:
            logger.info("Generation cancelled")
        self._cancelled = True

    def flush(self) -> None:
        """Deliver a pending change notification immediately."""
        self._debouncer.flush()

    def _notify_change(self) -> None:
        if self.on_change is not None:
            self.on_change()

    def _notify_status(self) -> None:
        if self.on_status is not None:
            self.on_status(self.active_requests)
