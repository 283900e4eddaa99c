import asyncio
import tempfile
import unittest
from pathlib import Path

from agentboard.config import BoardConfig
from agentboard.streaming.watch_registry import FileWatchRegistry, canonical_path, watch_file_changes


class _ManualWatcher:
    """Watch backend driven by the test instead of the filesystem."""

    def __init__(self) -> None:
        self.armed: list[Path] = []
        self.stopped: list[Path] = []
        self._queues: dict[Path, asyncio.Queue] = {}

    def __call__(self, path: Path, stop_event: asyncio.Event):
        return self._watch(path, stop_event)

    async def _watch(self, path: Path, stop_event: asyncio.Event):
        queue: asyncio.Queue = asyncio.Queue()
        self._queues[path] = queue
        self.armed.append(path)
        try:
            while not stop_event.is_set():
                yield await queue.get()
        finally:
            self.stopped.append(path)
            self._queues.pop(path, None)

    def fire(self, path) -> None:
        canonical = canonical_path(path)
        self._queues[canonical].put_nowait({("modified", str(canonical))})


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class FileWatchRegistryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name)
        self.path = self.root / "tasks.json"
        self.watcher = _ManualWatcher()
        self.registry = FileWatchRegistry(BoardConfig(data_dir=self.root), watch_factory=self.watcher)

    async def asyncTearDown(self) -> None:
        await self.registry.close()

    async def test_one_native_watch_per_canonical_path(self) -> None:
        first = self.registry.subscribe(self.path)
        second = self.registry.subscribe(self.root / "nested" / ".." / "tasks.json")
        await _settle()

        self.assertEqual(first.path, second.path)
        self.assertEqual(self.registry.watch_count, 1)
        self.assertEqual(self.registry.subscriber_count(self.path), 2)
        self.assertEqual(self.watcher.armed, [canonical_path(self.path)])

    async def test_change_is_fanned_out_to_every_subscriber(self) -> None:
        first = self.registry.subscribe(self.path)
        second = self.registry.subscribe(self.path)
        other = self.registry.subscribe(self.root / "repos.json")
        await _settle()

        self.watcher.fire(self.path)

        self.assertTrue(await asyncio.wait_for(first.wait(), timeout=1))
        self.assertTrue(await asyncio.wait_for(second.wait(), timeout=1))
        self.assertFalse(await other.wait(timeout=0.05))
        self.assertEqual(self.registry.watch_count, 2)

    async def test_last_unsubscribe_releases_native_watch(self) -> None:
        first = self.registry.subscribe(self.path)
        second = self.registry.subscribe(self.path)
        await _settle()

        self.registry.unsubscribe(first)
        self.assertEqual(self.registry.watch_count, 1)
        self.assertEqual(self.registry.subscriber_count(self.path), 1)

        second.close()
        self.assertEqual(self.registry.watch_count, 0)
        self.assertEqual(self.registry.subscriber_count(self.path), 0)
        await _settle()
        self.assertEqual(self.watcher.stopped, [canonical_path(self.path)])

    async def test_unsubscribe_is_idempotent(self) -> None:
        first = self.registry.subscribe(self.path)
        second = self.registry.subscribe(self.path)
        await _settle()

        self.registry.unsubscribe(first)
        self.registry.unsubscribe(first)
        first.close()

        self.assertEqual(self.registry.subscriber_count(self.path), 1)
        self.assertFalse(second.closed)

    async def test_resubscribe_after_release_arms_a_new_watch(self) -> None:
        self.registry.subscribe(self.path).close()
        await _settle()
        subscription = self.registry.subscribe(self.path)
        await _settle()

        self.assertEqual(self.registry.watch_count, 1)
        self.assertEqual(len(self.watcher.armed), 2)
        self.watcher.fire(self.path)
        self.assertTrue(await asyncio.wait_for(subscription.wait(), timeout=1))

    async def test_burst_of_changes_coalesces_into_one_pending_wakeup(self) -> None:
        subscription = self.registry.subscribe(self.path)
        await _settle()

        self.watcher.fire(self.path)
        self.watcher.fire(self.path)
        self.watcher.fire(self.path)
        await _settle()

        self.assertEqual(subscription.notifications, 3)
        self.assertTrue(await subscription.wait(timeout=1))
        self.assertFalse(await subscription.wait(timeout=0.05))

    async def test_unsubscribe_wakes_a_waiting_subscriber(self) -> None:
        subscription = self.registry.subscribe(self.path)
        await _settle()

        waiter = asyncio.ensure_future(subscription.wait())
        await _settle()
        subscription.close()

        self.assertTrue(await asyncio.wait_for(waiter, timeout=1))
        self.assertTrue(subscription.closed)

    async def test_close_releases_everything(self) -> None:
        first = self.registry.subscribe(self.path)
        second = self.registry.subscribe(self.root / "repos.json")
        await _settle()

        await self.registry.close()

        self.assertEqual(self.registry.watch_count, 0)
        self.assertTrue(first.closed)
        self.assertTrue(second.closed)
        self.assertEqual(len(self.watcher.stopped), 2)
        with self.assertRaises(RuntimeError):
            self.registry.subscribe(self.path)

    async def test_crashing_backend_is_restarted(self) -> None:
        calls: list[Path] = []

        async def flaky(path: Path, stop_event: asyncio.Event):
            calls.append(path)
            if len(calls) == 1:
                raise RuntimeError("inotify limit reached")
            yield {("modified", str(path))}
            await stop_event.wait()

        registry = FileWatchRegistry(BoardConfig(watch_retry_seconds=0.01), watch_factory=flaky)
        self.addAsyncCleanup(registry.close)
        subscription = registry.subscribe(self.path)

        self.assertTrue(await asyncio.wait_for(subscription.wait(), timeout=2))
        self.assertEqual(len(calls), 2)
        self.assertEqual(registry.watch_count, 1)


class WatchFileChangesTests(unittest.IsolatedAsyncioTestCase):
    """Exercise the real watchfiles backend in polling mode."""

    def setUp(self) -> None:
        tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(tmpdir.cleanup)
        self.root = Path(tmpdir.name).resolve()

    def _config(self) -> BoardConfig:
        return BoardConfig(
            data_dir=self.root,
            tasks_dir=self.root,
            watch_debounce_ms=100,
            watch_step_ms=20,
            watch_timeout_ms=100,
            watch_retry_seconds=0.05,
            watch_retry_max_seconds=0.2,
            watch_force_polling=True,
        )

    def _changes(self, path: Path, stop_event: asyncio.Event):
        return watch_file_changes(
            path,
            stop_event,
            debounce_ms=100,
            step_ms=20,
            timeout_ms=100,
            retry_seconds=0.05,
            retry_max_seconds=0.1,
            force_polling=True,
        )

    async def test_watch_emits_one_resync_once_armed(self) -> None:
        stop_event = asyncio.Event()
        path = self.root / "tasks.json"
        changes = self._changes(path, stop_event)
        try:
            batch = await asyncio.wait_for(changes.__anext__(), timeout=5)
        finally:
            stop_event.set()
            await changes.aclose()

        self.assertEqual([changed_path for _change, changed_path in batch], [str(path)])

    async def test_file_that_does_not_exist_yet_is_watchable(self) -> None:
        registry = FileWatchRegistry(self._config())
        self.addAsyncCleanup(registry.close)
        path = self.root / "agent.log"
        first = registry.subscribe(path)
        second = registry.subscribe(path)
        self.assertEqual(registry.watch_count, 1)

        # The first wakeup is the resync emitted once the watch is running.
        self.assertTrue(await first.wait(timeout=5))
        self.assertTrue(await second.wait(timeout=5))

        path.write_text('{"type": "user"}\n', encoding="utf-8")

        self.assertTrue(await first.wait(timeout=5))
        self.assertTrue(await second.wait(timeout=5))

        first.close()
        second.close()
        self.assertEqual(registry.watch_count, 0)

    async def test_missing_parent_directory_is_retried(self) -> None:
        stop_event = asyncio.Event()
        path = self.root / "7" / "agent.log"
        changes = self._changes(path, stop_event)

        async def _create_later() -> None:
            await asyncio.sleep(0.2)
            path.parent.mkdir()
            path.write_text("{}\n", encoding="utf-8")

        creator = asyncio.ensure_future(_create_later())
        try:
            batch = await asyncio.wait_for(changes.__anext__(), timeout=5)
        finally:
            stop_event.set()
            await creator
            await changes.aclose()

        self.assertTrue(any(changed_path == str(path) for _change, changed_path in batch))


if __name__ == "__main__":
    unittest.main()
