"""Per-connection push stream of document changes.

A :class:`ChangeStream` owns one :class:`~specwatch.watcher.FileWatcher`
subscription and one heartbeat task for the lifetime of a connection. It
moves through ``CONNECTING -> OPEN -> STREAMING -> CLOSED``:

* entering ``OPEN`` sends a single ``initial_state`` message built from both
  parsers;
* while ``STREAMING`` every watcher snapshot is forwarded immediately, with a
  ``heartbeat`` message every ``heartbeat_interval`` seconds;
* :meth:`ChangeStream.close` runs the teardown exactly once, after which no
  further write is attempted.

Messages are Server-Sent Events frames: ``data: {"type", "timestamp", "data"}``
followed by a blank line.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set

from .config import SyncConfig
from .models import ActivityEntry, ActivityLevel, ChangeEvent, EventType, utc_timestamp
from .parsers import ActivityLogParser, TaskBoardParser
from .sync_logging import log_stream_event
from .watcher import FileWatcher, WatchEvent, WatchRole

logger = logging.getLogger("specwatch.stream")

Send = Callable[[str], Awaitable[None]]

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class StreamState(str, Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


def format_sse(event: ChangeEvent) -> str:
    return f"data: {json.dumps(event.to_dict())}\n\n"


def build_snapshot(config: SyncConfig) -> Dict[str, Any]:
    """Current state of both documents, as sent in ``initial_state``."""
    feed = ActivityLogParser.parse(config.activity_log_path)
    board = TaskBoardParser.parse(config.task_board_path)
    return {
        "activities": [entry.to_dict() for entry in feed.entries],
        "prdStatus": board.to_dict(),
    }


def error_activity(message: str) -> List[Dict[str, str]]:
    """A one-entry activity payload reporting a stream-side failure."""
    entry = ActivityEntry(
        id=f"error-{uuid.uuid4().hex}",
        timestamp=utc_timestamp(),
        message=message,
        level=ActivityLevel.ERROR,
    )
    return [entry.to_dict()]


class ChangeStream:
    """One client's push session.

    Pass ``send`` to write frames to a transport directly; without it frames
    are queued and drained through :meth:`frames`, which suits streaming HTTP
    responses.
    """

    def __init__(
        self,
        config: SyncConfig,
        send: Optional[Send] = None,
        *,
        watcher_factory: Callable[[SyncConfig], FileWatcher] = FileWatcher,
    ):
        self.config = config
        self.connection_id = uuid.uuid4().hex
        self.state = StreamState.CONNECTING
        self.open_since: Optional[str] = None
        self._send = send
        self._outbox: Optional[asyncio.Queue] = None
        self._watcher_factory = watcher_factory
        self._watcher: Optional[FileWatcher] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._pending: Set[asyncio.Future] = set()
        self._seen_corrections: Set[str] = set()

    @property
    def closed(self) -> bool:
        return self.state is StreamState.CLOSED

    @property
    def watcher(self) -> Optional[FileWatcher]:
        return self._watcher

    async def open(self) -> None:
        if self.state is not StreamState.CONNECTING:
            raise RuntimeError(f"Stream {self.connection_id} cannot open from state {self.state.value}")

        self._loop = asyncio.get_running_loop()
        if self._send is None:
            self._outbox = asyncio.Queue()
        self.state = StreamState.OPEN
        self.open_since = utc_timestamp()
        log_stream_event("opened", self.connection_id)

        await self._send_initial_state()
        if self.closed:
            return

        watcher = self._watcher_factory(self.config)
        watcher.on(WatchRole.ACTIVITY, self._on_watch_event)
        watcher.on(WatchRole.PRD, self._on_watch_event)
        watcher.on(WatchRole.ERROR, self._on_watch_event)
        self._watcher = watcher
        try:
            watcher.start()
        except Exception as e:
            logger.error(f"[{self.connection_id}] Could not start file watcher: {e}", exc_info=True)
            await self._write_quietly(ChangeEvent(EventType.ACTIVITY, error_activity(f"Stream error: {e}")))

        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self.state = StreamState.STREAMING

    async def _send_initial_state(self) -> None:
        try:
            snapshot = build_snapshot(self.config)
        except Exception as e:
            logger.error(f"[{self.connection_id}] Failed to build snapshot: {e}", exc_info=True)
            await self._write_quietly(ChangeEvent(EventType.ACTIVITY, error_activity(f"Stream error: {e}")))
            return

        self._seen_corrections.update(
            entry["id"] for entry in snapshot["activities"]
            if entry["level"] == ActivityLevel.CORRECTION.value
        )
        await self._write_quietly(ChangeEvent(EventType.INITIAL_STATE, snapshot))

    # ------------------------------------------------------------------
    # Watcher bridge
    # ------------------------------------------------------------------

    def _on_watch_event(self, event: WatchEvent) -> None:
        # Called on the observer thread.
        loop = self._loop
        if self.closed or loop is None:
            return
        try:
            loop.call_soon_threadsafe(self._dispatch, event)
        except RuntimeError:
            # Event loop already shut down.
            pass

    def _dispatch(self, event: WatchEvent) -> None:
        if self.closed:
            return
        task = asyncio.ensure_future(self.forward(event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def forward(self, event: WatchEvent) -> None:
        """Send the messages a watcher event translates to."""
        try:
            messages = self.messages_for(event)
        except Exception as e:
            logger.error(f"[{self.connection_id}] Malformed {event.role.value} snapshot: {e}", exc_info=True)
            messages = [ChangeEvent(EventType.ACTIVITY, error_activity(f"Stream error: {e}"))]
        for message in messages:
            await self._write_quietly(message)

    def messages_for(self, event: WatchEvent) -> List[ChangeEvent]:
        if event.role is WatchRole.ACTIVITY:
            entries = event.data.entries
            messages = [ChangeEvent(EventType.ACTIVITY, [entry.to_dict() for entry in entries])]
            window: Set[str] = set()
            for entry in entries:
                if entry.level is not ActivityLevel.CORRECTION:
                    continue
                window.add(entry.id)
                if entry.id not in self._seen_corrections:
                    messages.append(ChangeEvent(EventType.CORRECTION, entry.to_dict()))
            # Only corrections still in the display window are remembered.
            self._seen_corrections = window
            return messages
        if event.role is WatchRole.PRD:
            return [ChangeEvent(EventType.PRD_UPDATE, event.data.to_dict())]

        logger.warning(f"[{self.connection_id}] File watcher diagnostic for {event.path}: {event.data.message}")
        return []

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def _write(self, event: ChangeEvent) -> bool:
        if self.closed:
            return False
        frame = format_sse(event)
        if self._outbox is not None:
            self._outbox.put_nowait(frame)
        else:
            await self._send(frame)
        return True

    async def _write_quietly(self, event: ChangeEvent) -> bool:
        try:
            return await self._write(event)
        except Exception as e:
            logger.warning(f"[{self.connection_id}] Failed to send {event.type.value}: {e}")
            return False

    async def _heartbeat_loop(self) -> None:
        while not self.closed:
            await asyncio.sleep(self.config.heartbeat_interval)
            if self.closed:
                break
            try:
                await self._write(ChangeEvent(EventType.HEARTBEAT, None))
            except Exception as e:
                # Peer is gone; the disconnect signal will close the session.
                logger.debug(f"[{self.connection_id}] Heartbeat failed: {e}")

    async def frames(self) -> AsyncIterator[str]:
        """Yield queued frames until the stream closes."""
        if self._outbox is None:
            raise RuntimeError("frames() is only available for streams opened without a send callable")
        try:
            while True:
                frame = await self._outbox.get()
                if frame is None:
                    break
                yield frame
        finally:
            self.close()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop heartbeats, drop the watcher subscription and stop writing."""
        if self.closed:
            return
        self.state = StreamState.CLOSED

        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        if self._watcher is not None:
            self._watcher.close()
            self._watcher = None

        if self._outbox is not None:
            self._outbox.put_nowait(None)

        logger.info(f"[{self.connection_id}] Client disconnected, resources released")
        log_stream_event("closed", self.connection_id, open_since=self.open_since)
