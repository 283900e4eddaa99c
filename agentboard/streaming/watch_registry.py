"""Reference-counted file watches shared by every stream session.

One canonical path owns at most one native watch (a background task running
`watchfiles.awatch`), however many sessions subscribe to it. A change on the
path is fanned out to every subscription; the last unsubscribe tears the watch
down. All mutations of the path table are synchronous, so they are atomic with
respect to the event loop.
"""
from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Optional

from watchfiles import Change, awatch

from agentboard.config import BoardConfig
from agentboard.observability import record_watch_delta

logger = logging.getLogger("agentboard.watcher")

WatchFactory = Callable[[Path, asyncio.Event], AsyncIterator[Any]]

_subscription_ids = itertools.count(1)


def canonical_path(path: Path | str) -> Path:
    return Path(path).expanduser().resolve(strict=False)


async def _stopped_within(stop_event: asyncio.Event, seconds: float) -> bool:
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=max(0.0, seconds))
        return True
    except asyncio.TimeoutError:
        return False


async def watch_file_changes(
    path: Path,
    stop_event: asyncio.Event,
    *,
    debounce_ms: int = 200,
    step_ms: int = 50,
    timeout_ms: int = 1000,
    retry_seconds: float = 1.0,
    retry_max_seconds: float = 30.0,
    force_polling: bool = False,
) -> AsyncIterator[set[tuple[Change, str]]]:
    """Yield batches of changes to `path` until `stop_event` is set.

    The parent directory is watched and filtered down to `path`, so a file that
    does not exist yet (or is replaced by rename) is still watchable. While the
    parent directory is missing, or the watch cannot be armed, arming is retried
    with exponential backoff. Never raises into the caller.

    Every time the native watch comes up, one synthetic change is yielded as
    soon as it is running (at the latest after `timeout_ms`), so callers re-read
    whatever was written before the watch could see it.
    """
    target = str(path)
    delay = retry_seconds

    while not stop_event.is_set():
        if not path.parent.is_dir():
            logger.debug(f"Watch target directory {path.parent} missing, retrying in {delay:.1f}s")
            if await _stopped_within(stop_event, delay):
                return
            delay = min(delay * 2, retry_max_seconds)
            continue

        try:
            armed = False
            async for changes in awatch(
                path.parent,
                watch_filter=lambda _change, changed_path: changed_path == target,
                debounce=debounce_ms,
                step=step_ms,
                stop_event=stop_event,
                rust_timeout=timeout_ms,
                yield_on_timeout=True,
                recursive=False,
                force_polling=force_polling,
            ):
                if not changes:
                    if armed:
                        continue
                    changes = {(Change.modified, target)}
                armed = True
                delay = retry_seconds
                yield changes
        except OSError as exc:
            logger.warning(f"Watch on {path} failed ({exc}), retrying in {delay:.1f}s")

        if stop_event.is_set():
            return
        if await _stopped_within(stop_event, delay):
            return
        delay = min(delay * 2, retry_max_seconds)


class WatchSubscription:
    """One subscriber's handle on a watched path.

    Notifications that arrive before the subscriber consumes the previous one
    collapse into a single pending flag: the subscriber re-reads once and sees
    the latest content.
    """

    def __init__(self, path: Path, registry: "FileWatchRegistry"):
        self.id = next(_subscription_ids)
        self.path = path
        self.notifications = 0
        self._registry = registry
        self._changed = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def notify(self) -> None:
        if self._closed:
            return
        self.notifications += 1
        self._changed.set()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait for the next change. False on timeout; True on change or close."""
        if self._closed:
            return True
        try:
            if timeout is None:
                await self._changed.wait()
            else:
                await asyncio.wait_for(self._changed.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        self._changed.clear()
        return True

    def close(self) -> None:
        self._registry.unsubscribe(self)

    def _mark_closed(self) -> None:
        self._closed = True
        self._changed.set()


@dataclass
class _WatchedPath:
    path: Path
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    subscribers: dict[int, WatchSubscription] = field(default_factory=dict)
    task: Optional[asyncio.Task] = None


class FileWatchRegistry:
    """Maps canonical paths to a single shared native watch."""

    def __init__(self, config: Optional[BoardConfig] = None, watch_factory: Optional[WatchFactory] = None):
        self._config = config or BoardConfig()
        self._watch_factory = watch_factory or functools.partial(
            watch_file_changes,
            debounce_ms=self._config.watch_debounce_ms,
            step_ms=self._config.watch_step_ms,
            timeout_ms=self._config.watch_timeout_ms,
            retry_seconds=self._config.watch_retry_seconds,
            retry_max_seconds=self._config.watch_retry_max_seconds,
            force_polling=self._config.watch_force_polling,
        )
        self._paths: dict[Path, _WatchedPath] = {}
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def watch_count(self) -> int:
        """Number of native watches currently armed."""
        return len(self._paths)

    def subscriber_count(self, path: Path | str) -> int:
        watched = self._paths.get(canonical_path(path))
        return len(watched.subscribers) if watched else 0

    def subscribe(self, path: Path | str) -> WatchSubscription:
        if self._closed:
            raise RuntimeError("FileWatchRegistry is closed")
        canonical = canonical_path(path)
        watched = self._paths.get(canonical)
        if watched is None:
            watched = _WatchedPath(path=canonical)
            watched.task = asyncio.get_running_loop().create_task(
                self._run(watched), name=f"watch:{canonical}"
            )
            self._paths[canonical] = watched
            record_watch_delta(1)
            logger.info(f"Watch armed for {canonical}")

        subscription = WatchSubscription(canonical, self)
        watched.subscribers[subscription.id] = subscription
        logger.debug(f"Subscription {subscription.id} added for {canonical} ({len(watched.subscribers)} total)")
        return subscription

    def unsubscribe(self, subscription: WatchSubscription) -> None:
        """Drop a subscription. Safe to call any number of times."""
        subscription._mark_closed()
        watched = self._paths.get(subscription.path)
        if watched is None or watched.subscribers.pop(subscription.id, None) is None:
            return
        logger.debug(
            f"Subscription {subscription.id} removed for {subscription.path} ({len(watched.subscribers)} left)"
        )
        if not watched.subscribers:
            self._release(watched)

    def _release(self, watched: _WatchedPath) -> None:
        if self._paths.get(watched.path) is watched:
            del self._paths[watched.path]
        watched.stop_event.set()
        if watched.task is not None and not watched.task.done():
            watched.task.cancel()
        record_watch_delta(-1)
        logger.info(f"Watch released for {watched.path}")

    def _dispatch(self, watched: _WatchedPath) -> None:
        for subscription in list(watched.subscribers.values()):
            subscription.notify()

    async def _run(self, watched: _WatchedPath) -> None:
        retry = self._config.watch_retry_seconds
        while not watched.stop_event.is_set():
            try:
                async for _changes in self._watch_factory(watched.path, watched.stop_event):
                    if watched.stop_event.is_set():
                        return
                    self._dispatch(watched)
                if watched.stop_event.is_set():
                    return
                logger.warning(f"Watch loop for {watched.path} ended early, restarting in {retry:.1f}s")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(f"Watch loop for {watched.path} crashed, restarting in {retry:.1f}s")
            if await _stopped_within(watched.stop_event, retry):
                return

    async def close(self) -> None:
        """Release every watch. Used on application shutdown."""
        self._closed = True
        tasks = []
        for watched in list(self._paths.values()):
            for subscription in list(watched.subscribers.values()):
                subscription._mark_closed()
            watched.subscribers.clear()
            self._release(watched)
            if watched.task is not None:
                tasks.append(watched.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
