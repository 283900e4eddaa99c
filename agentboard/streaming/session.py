"""A single live subscription that turns file changes into push events."""
from __future__ import annotations

import asyncio
import itertools
import logging
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

from agentboard.observability import record_stream_event, start_span
from agentboard.streaming.encoder import encode_comment, encode_event
from agentboard.streaming.watch_registry import FileWatchRegistry, WatchSubscription
from agentboard.validation import SchemaViolation

logger = logging.getLogger("agentboard.stream")

SnapshotLoader = Callable[[Path], Awaitable[Any]]
Encoder = Callable[[Any], str]

_session_ids = itertools.count(1)


class StreamSession:
    """Sends the current snapshot on open, then one snapshot per observed change.

    A failed read (the writer raced us, or a metadata file is temporarily
    invalid) is logged and skipped; the stream stays open. `close()` may be
    called any number of times: it unsubscribes once and cancels a pending read.
    """

    def __init__(
        self,
        registry: FileWatchRegistry,
        path: Path,
        loader: SnapshotLoader,
        *,
        name: str = "stream",
        encoder: Encoder = encode_event,
        keepalive_seconds: Optional[float] = None,
    ):
        self.id = next(_session_ids)
        self.name = name
        self.path = path
        self.events_sent = 0
        self._registry = registry
        self._loader = loader
        self._encoder = encoder
        self._keepalive_seconds = keepalive_seconds if keepalive_seconds and keepalive_seconds > 0 else None
        self._subscription: Optional[WatchSubscription] = None
        self._pending_read: Optional[asyncio.Future] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def events(self) -> AsyncIterator[str]:
        if self._closed:
            return
        if self._registry.closed:
            logger.info(f"Session {self.id} ({self.name}) refused for {self.path}: watch registry is shut down")
            self.close()
            return
        # Subscribe before the first read. A write that lands before the native
        # watch is running is picked up by the resync the watch emits once armed.
        self._subscription = self._registry.subscribe(self.path)
        logger.info(f"Session {self.id} ({self.name}) opened for {self.path}")
        try:
            event = await self._snapshot()
            if event is not None:
                yield event

            while not self._closed:
                changed = await self._subscription.wait(timeout=self._keepalive_seconds)
                if self._closed or self._subscription.closed:
                    break
                if not changed:
                    yield encode_comment()
                    continue
                event = await self._snapshot()
                if event is not None:
                    yield event
        finally:
            self.close()

    async def _snapshot(self) -> Optional[str]:
        with start_span("agentboard.stream.snapshot", {"stream": self.name, "path": str(self.path)}):
            read = asyncio.ensure_future(self._loader(self.path))
            self._pending_read = read
            try:
                await asyncio.wait({read})
            finally:
                if not read.done():
                    read.cancel()
                self._pending_read = None

            if read.cancelled():
                return None
            try:
                payload = read.result()
            except SchemaViolation as exc:
                logger.warning(f"Session {self.id}: {self.path} failed validation, skipping push: {exc}")
                record_stream_event(self.name, "schema_violation")
                return None
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning(f"Session {self.id}: read of {self.path} failed, skipping push: {exc}")
                record_stream_event(self.name, "read_error")
                return None

            self.events_sent += 1
            record_stream_event(self.name, "sent")
            return self._encoder(payload)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pending_read is not None and not self._pending_read.done():
            self._pending_read.cancel()
        if self._subscription is not None:
            self._registry.unsubscribe(self._subscription)
        logger.info(f"Session {self.id} ({self.name}) closed after {self.events_sent} event(s)")
