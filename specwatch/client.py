"""Remote consumer of the change stream.

:class:`ClientSync` keeps a bounded copy of what the dashboard needs (the
latest activity window and the latest task board snapshot) and reconnects
with exponential backoff whenever the transport fails.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import httpx

from .models import ActivityEntry, ChangeEvent, ErrorCode, EventType, TaskBoardStatus

logger = logging.getLogger("specwatch.client")

MAX_ACTIVITIES = 100
BASE_DELAY = 1.0
MAX_DELAY = 30.0


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"
    RECONNECTING = "reconnecting"


def backoff_delay(attempt: int, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY) -> float:
    """Seconds to wait before reconnect ``attempt``: 1, 2, 4, ... capped at 30."""
    return min(base_delay * (2 ** attempt), max_delay)


def parse_sse_line(line: str) -> Optional[ChangeEvent]:
    """Decode one ``data:`` line; other SSE fields and comments are ignored."""
    if not line.startswith("data:"):
        return None
    payload = line[len("data:"):].strip()
    if not payload:
        return None
    try:
        return ChangeEvent.from_dict(json.loads(payload))
    except (ValueError, KeyError, TypeError) as e:
        logger.error(f"Failed to parse stream message: {e}")
        return None


@dataclass(slots=True)
class SyncState:
    """Local view of the stream; memory stays bounded."""

    activities: List[ActivityEntry] = field(default_factory=list)
    task_board: Optional[TaskBoardStatus] = None
    connection: ConnectionState = ConnectionState.DISCONNECTED
    error: Optional[str] = None
    reconnect_attempts: int = 0
    last_heartbeat: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        return self.connection is ConnectionState.CONNECTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activities": [entry.to_dict() for entry in self.activities],
            "task_board": self.task_board.to_dict() if self.task_board else None,
            "connection": self.connection.value,
            "error": self.error,
            "reconnect_attempts": self.reconnect_attempts,
            "last_heartbeat": self.last_heartbeat,
        }


def _activities(payload: Any) -> List[ActivityEntry]:
    return [ActivityEntry.from_dict(item) for item in payload or []]


def reduce_event(state: SyncState, event: ChangeEvent) -> None:
    """Apply one stream message to ``state`` in place.

    Payloads are decoded before anything is assigned, so a malformed message
    raises without leaving ``state`` half-updated.
    """
    if event.type is EventType.INITIAL_STATE:
        data = event.data or {}
        activities = _activities(data.get("activities"))[-MAX_ACTIVITIES:]
        board = data.get("prdStatus")
        task_board = TaskBoardStatus.from_dict(board) if board is not None else state.task_board
        state.activities = activities
        state.task_board = task_board
    elif event.type is EventType.ACTIVITY:
        state.activities = _activities(event.data)[-MAX_ACTIVITIES:]
    elif event.type is EventType.CORRECTION:
        state.activities = (state.activities + [ActivityEntry.from_dict(event.data)])[-MAX_ACTIVITIES:]
    elif event.type is EventType.PRD_UPDATE:
        state.task_board = TaskBoardStatus.from_dict(event.data)
    elif event.type is EventType.HEARTBEAT:
        state.last_heartbeat = event.timestamp


class ClientSync:
    """Follow a change stream URL, reconnecting on transport errors."""

    def __init__(
        self,
        url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        on_change: Optional[Callable[[SyncState], None]] = None,
    ):
        self.url = url
        self.headers = {"Accept": "text/event-stream", **(headers or {})}
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.state = SyncState()
        self.last_delay: Optional[float] = None
        self._client = client
        self._owns_client = client is None
        self._on_change = on_change
        self._alive = True
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None

    @property
    def alive(self) -> bool:
        return self._alive

    def _notify(self) -> None:
        if self._on_change is not None:
            try:
                self._on_change(self.state)
            except Exception as e:
                logger.error(f"State listener failed: {e}", exc_info=True)

    def apply(self, event: ChangeEvent) -> None:
        """Reduce ``event`` into local state; ignored after teardown."""
        if not self._alive:
            return
        try:
            reduce_event(self.state, event)
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            logger.error(f"Skipping malformed {event.type.value} message: {e!r}")
            return
        self._notify()

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def start(self) -> asyncio.Task:
        """Begin streaming in the background on the running loop."""
        if not self._alive:
            raise RuntimeError("ClientSync has been closed")
        self._task = asyncio.create_task(self.connect())
        return self._task

    async def connect(self) -> None:
        """Stream until the connection drops, then schedule a reconnect."""
        if not self._alive:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))

        self.state.connection = ConnectionState.CONNECTING
        try:
            async with self._client.stream("GET", self.url, headers=self.headers) as response:
                response.raise_for_status()
                self._on_open()
                async for line in response.aiter_lines():
                    if not self._alive:
                        return
                    event = parse_sse_line(line)
                    if event is not None:
                        self.apply(event)
        except httpx.HTTPError as e:
            self.handle_transport_error(e)
            return
        self.handle_transport_error(None)

    def _on_open(self) -> None:
        if not self._alive:
            return
        self.state.connection = ConnectionState.CONNECTED
        self.state.error = None
        self.state.reconnect_attempts = 0
        logger.info(f"Connected to {self.url}")
        self._notify()

    def handle_transport_error(self, error: Optional[Exception]) -> Optional[float]:
        """Mark the connection lost and schedule the next attempt.

        Returns the scheduled delay in seconds, or ``None`` after teardown.
        """
        if not self._alive:
            return None
        message = str(error) if error else "Stream ended"
        logger.error(f"[{ErrorCode.TRANSPORT_ERROR.value}] {self.url}: {message}")

        # A reachable server refusing the stream is an error, anything else a lost connection.
        if isinstance(error, httpx.HTTPStatusError):
            self.state.connection = ConnectionState.ERROR
        else:
            self.state.connection = ConnectionState.DISCONNECTED
        self.state.error = message
        self.state.reconnect_attempts += 1
        delay = backoff_delay(self.state.reconnect_attempts, self.base_delay, self.max_delay)
        self.last_delay = delay
        self._notify()

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._reconnect)
        self.state.connection = ConnectionState.RECONNECTING
        logger.info(f"Reconnecting in {delay:.1f}s (attempt {self.state.reconnect_attempts})")
        return delay

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._alive:
            self._task = asyncio.ensure_future(self.connect())

    async def close(self) -> None:
        """Tear down: cancel any pending reconnect and close the transport."""
        if not self._alive:
            return
        self._alive = False

        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

        task = self._task
        self._task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.warning(f"Stream task for {self.url} ended with an error: {e!r}")

        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self.state.connection = ConnectionState.DISCONNECTED
        logger.debug(f"ClientSync for {self.url} closed")

    async def __aenter__(self) -> "ClientSync":
        self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
