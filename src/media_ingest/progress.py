"""Dispatch progress events to caller-supplied sinks without letting them stall the pipeline."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

ProgressSink = Callable[..., Any]


class ProgressReporter:
    """Wraps a sync or async progress sink.

    Async sinks are bounded by ``timeout``; a sink that raises or times out
    is logged and the event is dropped. The pipeline never sees the failure.
    """

    def __init__(
        self,
        sink: ProgressSink | None,
        logger: logging.Logger,
        *,
        timeout: float = 1.0,
    ) -> None:
        self.sink = sink
        self.logger = logger
        self.timeout = timeout
        self.dropped = 0

    async def emit(self, *args: Any) -> None:
        """Send one event to the sink."""
        if self.sink is None:
            return

        try:
            result = self.sink(*args)
            if inspect.isawaitable(result):
                await asyncio.wait_for(result, timeout=self.timeout)
        except TimeoutError:
            self.dropped += 1
            self.logger.warning("Progress sink timed out after %.1fs, event dropped", self.timeout)
        except Exception:
            self.dropped += 1
            self.logger.warning("Progress sink raised, event dropped", exc_info=True)
