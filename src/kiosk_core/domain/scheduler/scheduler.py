"""
Content scheduler.

Decides what the display shows and for how long. All state changes run as
commands on a single asyncio queue, so external controls (pause, next,
broadcast, playlist updates), timer expiries and render outcomes never
interleave. Handlers are plain synchronous methods; anything slow
(cache waits, navigation, screenshots) runs in a detached task that reports
back by posting another command.

Timers carry a generation number. Re-arming or cancelling a timer bumps the
generation, so an expiry that was already queued when it got cancelled is
recognised as stale and ignored.
"""

import asyncio
import time
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, Protocol

from loguru import logger

from kiosk_core.core.config import SchedulerConfig
from kiosk_core.domain.cache import CacheStatus, ContentCache
from kiosk_core.domain.session.faults import FaultKind, classify_failure

from .broadcast import build_broadcast_target
from .models import (
    BroadcastContent,
    BroadcastOverride,
    PlaybackState,
    PlaylistSnapshot,
    ScheduledItem,
)
from .rules import (
    compute_rotation_delay,
    playlist_changed,
    resolve_source,
    select_next,
)

Publisher = Callable[[str, dict], Awaitable[None]]

STATE_EVENT = "playback:state:update"
SCREENSHOT_EVENT = "screenshot:upload"


class Renderer(Protocol):
    """What the scheduler needs from the session."""

    @property
    def current_url(self) -> str: ...

    async def navigate(self, url: str) -> None: ...

    async def capture_frame(self, quality: int = 80) -> str: ...


class ContentScheduler:
    """Rotates a playlist on the display, with broadcast overrides."""

    def __init__(
        self,
        renderer: Renderer,
        server_url: str,
        cache: Optional[ContentCache] = None,
        config: Optional[SchedulerConfig] = None,
        publish: Optional[Publisher] = None,
        clock: Callable[[], datetime] = datetime.now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self._renderer = renderer
        self._server_url = server_url
        self._cache = cache
        self._config = config or SchedulerConfig()
        self._publish = publish
        self._clock = clock
        self._monotonic = monotonic

        self._queue: Optional[asyncio.Queue] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

        # Playlist and rotation position
        self._playlist_id: Optional[int] = None
        self._items: tuple[ScheduledItem, ...] = ()
        self._cursor = 0
        self._current_index: Optional[int] = None
        self._current_url: Optional[str] = None

        # Playback flags
        self._running = False
        self._paused = False
        self._stalled = False
        self._item_started_at: Optional[float] = None
        self._item_delay_ms: Optional[int] = None
        self._remaining_ms: Optional[int] = None  # Frozen while paused

        # Timers and in-flight work
        self._rotation_task: Optional[asyncio.Task] = None
        self._rotation_gen = 0
        self._broadcast_task: Optional[asyncio.Task] = None
        self._broadcast_gen = 0
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._render_task: Optional[asyncio.Task] = None
        self._display_gen = 0
        self._cache_sync: Optional[asyncio.Task] = None

        # Broadcast override and work deferred until it ends
        self._broadcast: Optional[BroadcastOverride] = None
        self._pending_load: Optional[tuple[int, tuple[ScheduledItem, ...]]] = None
        self._pending_start = False
        self._pending_from_cursor = False

    # ------------------------------------------------------------------
    # Public commands

    async def load_playlist(self, playlist_id: int, items: Iterable[ScheduledItem]) -> None:
        await self._submit(self._do_load, playlist_id, tuple(items))

    async def start(self) -> None:
        await self._submit(self._do_start)

    async def stop(self) -> None:
        await self._submit(self._do_stop)

    async def pause(self) -> None:
        await self._submit(self._do_pause)

    async def resume(self) -> None:
        await self._submit(self._do_resume)

    async def next(self) -> None:
        await self._submit(self._do_next)

    async def previous(self) -> None:
        await self._submit(self._do_previous)

    async def start_broadcast(self, content: BroadcastContent, duration_ms: int = 0) -> bool:
        return await self._submit(self._do_start_broadcast, content, duration_ms)

    async def end_broadcast(self) -> None:
        await self._submit(self._do_end_broadcast)

    async def snapshot(self) -> PlaylistSnapshot:
        return await self._submit(self._do_snapshot)

    async def restore(self, snapshot: PlaylistSnapshot, resume: bool = True) -> None:
        await self._submit(self._do_restore, snapshot, resume)

    async def redisplay_broadcast(self) -> bool:
        """Render the active broadcast again, e.g. on a freshly restarted session.

        Returns False when no broadcast is active.
        """
        return await self._submit(self._do_redisplay_broadcast)

    async def get_state(self) -> PlaybackState:
        return await self._submit(self._build_state)

    async def shutdown(self) -> None:
        """Cancel every timer and the command loop."""
        tasks = list(self._tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._loop_task = None
        self._queue = None

    # ------------------------------------------------------------------
    # Command loop

    def _ensure_loop(self) -> None:
        if self._loop_task is None or self._loop_task.done():
            self._queue = asyncio.Queue()
            self._loop_task = asyncio.create_task(self._run(), name="scheduler-commands")

    async def _submit(self, handler, *args):
        self._ensure_loop()
        future = asyncio.get_running_loop().create_future()
        await self._queue.put((handler, args, future))
        return await future

    def _post(self, handler, *args) -> None:
        if self._queue is not None:
            self._queue.put_nowait((handler, args, None))

    async def _run(self) -> None:
        while True:
            handler, args, future = await self._queue.get()
            try:
                result = handler(*args)
            except Exception as exc:
                logger.exception(f"Scheduler command {handler.__name__} failed")
                if future is not None and not future.done():
                    future.set_exception(exc)
            else:
                if future is not None and not future.done():
                    future.set_result(result)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _post_after(self, delay_seconds: float, handler, *args) -> None:
        await asyncio.sleep(delay_seconds)
        self._post(handler, *args)

    # ------------------------------------------------------------------
    # Timers

    def _arm_rotation(self, delay_ms: int) -> None:
        self._cancel_rotation()
        self._rotation_task = self._spawn(
            self._post_after(delay_ms / 1000, self._on_rotation_due, self._rotation_gen)
        )

    def _cancel_rotation(self) -> None:
        self._rotation_gen += 1
        if self._rotation_task is not None:
            self._rotation_task.cancel()
            self._rotation_task = None

    def _on_rotation_due(self, generation: int) -> None:
        if generation != self._rotation_gen:
            logger.debug("Ignoring stale rotation timer")
            return
        self._rotation_task = None
        if not self._running or self._paused or self._broadcast is not None:
            return
        self._execute_next_item()

    def _cancel_broadcast_timer(self) -> None:
        self._broadcast_gen += 1
        if self._broadcast_task is not None:
            self._broadcast_task.cancel()
            self._broadcast_task = None

    def _on_broadcast_due(self, generation: int) -> None:
        if generation != self._broadcast_gen:
            return
        self._broadcast_task = None
        logger.info("Broadcast duration expired, ending broadcast")
        self._do_end_broadcast()

    def _start_heartbeat(self) -> None:
        if self._heartbeat_task is None:
            self._heartbeat_task = self._spawn(self._heartbeat())

    def _stop_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    async def _heartbeat(self) -> None:
        while True:
            await asyncio.sleep(self._config.heartbeat_interval)
            self._post(self._emit_state)

    def _cancel_render(self) -> None:
        self._display_gen += 1
        if self._render_task is not None:
            self._render_task.cancel()
            self._render_task = None

    def _start_timing(self, delay_ms: Optional[int]) -> None:
        self._item_started_at = self._monotonic()
        self._item_delay_ms = delay_ms

    def _time_remaining_ms(self) -> int:
        if self._item_started_at is None or self._item_delay_ms is None:
            return 0
        elapsed_ms = (self._monotonic() - self._item_started_at) * 1000
        return max(0, int(self._item_delay_ms - elapsed_ms))

    # ------------------------------------------------------------------
    # Handlers

    def _do_load(self, playlist_id: int, items: tuple[ScheduledItem, ...]) -> None:
        items = tuple(sorted(items, key=lambda item: item.order_index))
        if self._broadcast is not None:
            logger.info(f"Broadcast active, deferring playlist {playlist_id} until it ends")
            self._pending_load = (playlist_id, items)
            return

        self._sync_cache(items)
        old_items = self._items
        current = None
        if self._current_index is not None and self._current_index < len(old_items):
            current = old_items[self._current_index]

        self._playlist_id = playlist_id
        self._items = items
        logger.info(f"Loaded playlist {playlist_id} with {len(items)} items")

        if not self._running:
            self._cursor = 0
            self._current_index = None
            self._emit_state()
            return

        new_index = None
        if current is not None:
            new_index = next(
                (i for i, item in enumerate(items) if item.id == current.id), None
            )
        same_content = new_index is not None and items[new_index].source_ref == current.source_ref

        if same_content and not playlist_changed(old_items, items):
            logger.info("Playlist content unchanged, continuing rotation")
            self._current_index = new_index
            self._cursor = (new_index + 1) % len(items)
            self._emit_state()
            return

        logger.info("Playlist changed, restarting rotation")
        self._do_stop()
        self._do_start()

    def _sync_cache(self, items: tuple[ScheduledItem, ...]) -> None:
        if self._cache is None:
            return
        urls = [
            resolve_source(item.source_ref, self._server_url)
            for item in items
            if item.source_ref
        ]
        previous = self._cache_sync
        self._cache_sync = self._spawn(self._run_cache_sync(previous, urls))

    async def _run_cache_sync(self, previous: Optional[asyncio.Task], urls: list[str]) -> None:
        # Loads reconcile in arrival order
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        await asyncio.to_thread(self._request_and_reconcile, urls)

    def _request_and_reconcile(self, urls: list[str]) -> None:
        try:
            for url in urls:
                self._cache.request_cache(url)
            self._cache.reconcile(urls)
        except OSError as e:
            logger.error(f"Cache maintenance failed: {e}")

    def _do_start(self, from_cursor: bool = False) -> None:
        if self._broadcast is not None:
            if not self._running:
                logger.info("Broadcast active, start deferred until it ends")
                self._pending_start = True
                self._pending_from_cursor = from_cursor
            return
        if self._running:
            logger.debug("Playlist already running")
            return
        if not self._items:
            logger.warning("Cannot start: playlist is empty")
            return

        self._running = True
        self._paused = False
        self._remaining_ms = None
        if not from_cursor:
            self._cursor = 0
        logger.info(f"Starting playlist {self._playlist_id} ({len(self._items)} items)")
        self._start_heartbeat()
        self._execute_next_item()

    def _do_stop(self) -> None:
        was_running = self._running
        self._running = False
        self._paused = False
        self._stalled = False
        self._pending_start = False
        self._remaining_ms = None
        self._cancel_rotation()
        self._cancel_render()
        self._stop_heartbeat()
        self._current_index = None
        self._current_url = None
        self._item_started_at = None
        self._item_delay_ms = None
        if was_running:
            logger.info("Playlist stopped")
        self._emit_state()

    def _do_pause(self) -> None:
        if self._broadcast is not None:
            logger.warning("Cannot pause during a broadcast")
            return
        if not self._running or self._paused:
            return
        self._paused = True
        self._remaining_ms = (
            self._time_remaining_ms() if self._rotation_task is not None else None
        )
        self._cancel_rotation()
        logger.info(f"Playlist paused ({self._remaining_ms}ms remaining)")
        self._emit_state()

    def _do_resume(self) -> None:
        if self._broadcast is not None:
            logger.warning("Cannot resume during a broadcast")
            return
        if not self._running or not self._paused:
            return
        self._paused = False
        remaining, self._remaining_ms = self._remaining_ms, None
        logger.info("Playlist resumed")

        if remaining is None:
            # Nothing was counting down (permanent item)
            self._emit_state()
        elif remaining > 0:
            self._arm_rotation(remaining)
            self._start_timing(remaining)
            self._emit_state()
        else:
            self._execute_next_item()

    def _do_next(self) -> None:
        if not self._can_step("next"):
            return
        self._cancel_rotation()
        self._paused = False
        self._remaining_ms = None
        self._execute_next_item()

    def _do_previous(self) -> None:
        if not self._can_step("previous"):
            return
        self._cancel_rotation()
        self._paused = False
        self._remaining_ms = None
        # The cursor already points past the current item
        self._cursor = (self._cursor - 2) % len(self._items)
        self._execute_next_item()

    def _can_step(self, direction: str) -> bool:
        if self._broadcast is not None:
            logger.warning(f"Cannot skip {direction} during a broadcast")
            return False
        if not self._running or not self._items:
            logger.warning(f"Cannot skip {direction}: playlist is not running")
            return False
        return True

    def _execute_next_item(self) -> None:
        if not self._items:
            logger.warning("Playlist is empty, nothing to display")
            self._emit_state()
            return

        index, self._cursor = select_next(self._items, self._cursor, self._clock())
        if index is None:
            if not self._stalled:
                logger.warning(
                    f"No playlist item is displayable right now, "
                    f"retrying in {self._config.stall_retry}s"
                )
            self._stalled = True
            retry_ms = int(self._config.stall_retry * 1000)
            self._arm_rotation(retry_ms)
            self._start_timing(retry_ms)
            self._emit_state()
            return

        self._stalled = False
        delay_ms = compute_rotation_delay(
            self._items[index],
            len(self._items),
            self._clock(),
            self._config.fallback_duration,
        )
        self._show_item(index, delay_ms)

    def _show_item(self, index: int, delay_ms: Optional[int]) -> None:
        """Render the item at index; rotate after delay_ms (None = never)."""
        item = self._items[index]
        self._cancel_render()
        self._current_index = index
        url = resolve_source(item.source_ref, self._server_url) if item.source_ref else ""
        self._current_url = url or None

        if delay_ms is None:
            self._cancel_rotation()
            logger.info(f"Displaying permanent item {item.id}")
        else:
            self._arm_rotation(delay_ms)
            logger.info(
                f"Displaying item {index + 1}/{len(self._items)} (id={item.id}) "
                f"for {delay_ms / 1000:.1f}s"
            )
        self._start_timing(delay_ms)
        self._render_task = self._spawn(
            self._render_item(item, index, url, self._display_gen)
        )
        self._emit_state()

    def _on_render_failed(self, generation: int, index: int, kind: FaultKind) -> None:
        if generation != self._display_gen or not self._running:
            return
        if self._broadcast is not None or self._paused:
            return

        if kind == FaultKind.SESSION_CLOSED:
            delay = self._config.closed_retry
            self._cursor = index
        elif kind in (FaultKind.SURFACE_CRASHED, FaultKind.FATAL):
            delay = self._config.crash_retry
            self._cursor = index
        else:
            delay = self._config.error_retry

        retry_ms = int(delay * 1000)
        if self._cursor == index:
            logger.warning(f"Retrying item {self._items[index].id} in {delay}s ({kind.value})")
        else:
            logger.warning(f"Skipping item {self._items[index].id} in {delay}s ({kind.value})")
        self._arm_rotation(retry_ms)
        self._start_timing(retry_ms)
        self._emit_state()

    def _do_start_broadcast(self, content: BroadcastContent, duration_ms: int) -> bool:
        target = build_broadcast_target(content, self._server_url)
        if target is None:
            logger.error(f"Broadcast ({content.kind}) has nothing to display, ignoring")
            return False

        if self._broadcast is None:
            if self._paused:
                remaining = self._remaining_ms
            elif self._rotation_task is not None:
                remaining = self._time_remaining_ms()
            else:
                remaining = None
            self._broadcast = BroadcastOverride(
                content=content,
                duration_ms=duration_ms,
                target_url=target,
                saved=PlaylistSnapshot(self._playlist_id, self._items, self._cursor),
                saved_current_index=self._current_index,
                saved_remaining_ms=remaining,
                was_running=self._running,
                was_paused=self._paused,
                started_at=self._clock(),
            )
        else:
            logger.info("Replacing the active broadcast")
            self._broadcast.content = content
            self._broadcast.duration_ms = duration_ms
            self._broadcast.target_url = target

        logger.info(f"Starting broadcast ({content.kind}), duration {duration_ms}ms")
        self._cancel_rotation()
        self._cancel_render()
        self._cancel_broadcast_timer()
        self._render_task = self._spawn(self._render_broadcast(target, content.kind))
        if duration_ms > 0:
            self._broadcast_task = self._spawn(
                self._post_after(duration_ms / 1000, self._on_broadcast_due, self._broadcast_gen)
            )
        self._emit_state()
        return True

    def _do_end_broadcast(self) -> None:
        override = self._broadcast
        if override is None:
            logger.warning("Not currently broadcasting")
            return

        logger.info("Ending broadcast, restoring playlist")
        self._cancel_broadcast_timer()
        self._cancel_render()
        self._broadcast = None

        saved = override.saved
        self._playlist_id = saved.playlist_id
        self._items = saved.items
        self._cursor = saved.cursor
        self._current_index = override.saved_current_index

        pending_load, self._pending_load = self._pending_load, None
        pending_start, self._pending_start = self._pending_start, False

        if self._running and override.was_running:
            self._resume_after_broadcast(override.saved_remaining_ms)
        else:
            self._emit_state()

        if pending_load is not None:
            self._do_load(*pending_load)
        if pending_start:
            self._do_start(from_cursor=self._pending_from_cursor)

    def _resume_after_broadcast(self, remaining_ms: Optional[int]) -> None:
        index = self._current_index
        if index is None or index >= len(self._items):
            if self._paused:
                self._emit_state()
            else:
                self._execute_next_item()
            return

        if self._paused:
            # Put the item back on screen, keep the frozen remaining time
            self._show_item(index, None)
        elif remaining_ms is not None and remaining_ms <= 0:
            self._execute_next_item()
        else:
            self._show_item(index, remaining_ms)

    def _do_redisplay_broadcast(self) -> bool:
        override = self._broadcast
        if override is None or override.target_url is None:
            return False
        self._cancel_render()
        self._render_task = self._spawn(
            self._render_broadcast(override.target_url, override.content.kind)
        )
        return True

    def _do_snapshot(self) -> PlaylistSnapshot:
        if self._broadcast is not None:
            saved = self._broadcast.saved
            current = self._broadcast.saved_current_index
        else:
            saved = PlaylistSnapshot(self._playlist_id, self._items, self._cursor)
            current = self._current_index
        # Resume on the item that was showing
        cursor = current if current is not None else saved.cursor
        return PlaylistSnapshot(saved.playlist_id, saved.items, cursor)

    def _do_restore(self, snapshot: PlaylistSnapshot, resume: bool) -> None:
        self._do_stop()
        cursor = snapshot.cursor % len(snapshot.items) if snapshot.items else 0
        if self._broadcast is not None:
            # Handed back to the display when the broadcast ends
            self._broadcast.saved = PlaylistSnapshot(snapshot.playlist_id, snapshot.items, cursor)
            self._broadcast.saved_current_index = None
        self._playlist_id = snapshot.playlist_id
        self._items = snapshot.items
        self._cursor = cursor
        logger.info(f"Restored playlist {snapshot.playlist_id} at position {self._cursor}")
        if resume:
            self._do_start(from_cursor=True)

    # ------------------------------------------------------------------
    # Detached work

    async def _render_item(
        self, item: ScheduledItem, index: int, url: str, generation: int
    ) -> None:
        if not url:
            logger.error(f"Item {item.id} has no content source")
            self._post(self._on_render_failed, generation, index, FaultKind.OTHER)
            return

        target = await self._resolve_through_cache(url)
        try:
            await self._renderer.navigate(target)
        except Exception as exc:
            kind = classify_failure(exc)
            logger.error(f"Failed to display item {item.id}: {exc}")
            self._post(self._on_render_failed, generation, index, kind)
            return

        await self._capture_after_rotation()

    async def _resolve_through_cache(self, url: str) -> str:
        """Prefer the local copy of cacheable media, waiting for it up to cache_wait."""
        cache = self._cache
        if cache is None or not cache.is_cacheable(url):
            return url

        deadline = self._monotonic() + self._config.cache_wait
        while True:
            status = cache.get_status(url)
            if status == CacheStatus.READY:
                path = cache.get_local_path(url)
                if path is not None:
                    logger.info(f"Playing cached copy of {url}")
                    return path.as_uri()
                cache.request_cache(url)
            elif status == CacheStatus.ERROR:
                logger.warning(f"Caching failed for {url}, streaming from server")
                return url
            elif status == CacheStatus.NOT_CACHED:
                cache.request_cache(url)

            if self._monotonic() >= deadline:
                logger.warning(
                    f"Timed out after {self._config.cache_wait}s waiting for {url}, "
                    "streaming from server"
                )
                return url
            await asyncio.sleep(self._config.cache_poll)

    async def _capture_after_rotation(self) -> None:
        if self._publish is None:
            return
        await asyncio.sleep(self._config.screenshot_delay)
        try:
            frame = await self._renderer.capture_frame()
            await self._publish(
                SCREENSHOT_EVENT,
                {"image": frame, "currentUrl": self._renderer.current_url},
            )
        except Exception as e:
            logger.warning(f"Post-rotation screenshot failed: {e}")

    async def _render_broadcast(self, target: str, kind: str) -> None:
        try:
            await self._renderer.navigate(target)
            logger.info(f"Displaying broadcast {kind}")
        except Exception as e:
            logger.error(f"Failed to display broadcast {kind}: {e}")

    # ------------------------------------------------------------------
    # State

    def _build_state(self) -> PlaybackState:
        item = None
        if self._current_index is not None and self._current_index < len(self._items):
            item = self._items[self._current_index]

        if self._broadcast is not None:
            remaining = 0
            content = self._broadcast.content
            current_url = content.url if content.kind == "url" else None
        else:
            if self._paused:
                remaining = self._remaining_ms or 0
            elif self._running:
                remaining = self._time_remaining_ms()
            else:
                remaining = 0
            current_url = self._current_url

        return PlaybackState(
            is_running=self._running,
            is_paused=self._paused,
            is_broadcasting=self._broadcast is not None,
            is_stalled=self._stalled,
            current_item_id=item.id if item else None,
            current_item_index=self._current_index if item else None,
            playlist_id=self._playlist_id,
            total_items=len(self._items),
            current_url=current_url,
            time_remaining_ms=remaining,
        )

    def _emit_state(self) -> None:
        if self._publish is None:
            return
        payload = self._build_state().to_payload()
        self._spawn(self._publish_quietly(STATE_EVENT, payload))

    async def _publish_quietly(self, event: str, payload: dict) -> None:
        try:
            await self._publish(event, payload)
        except Exception as e:
            logger.warning(f"Failed to publish {event}: {e}")
