"""
Player events delivered from background threads to the owning controller.

Two delivery styles share one dispatch path:
- single-slot callbacks (last registration wins), each registration
  returning a `CallbackHandle` that can only clear its own slot
- a `Subscription`, an owned queue of events the controller drains on
  its own thread
"""

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

from loguru import logger

from .models import PlaybackProgress


@dataclass(frozen=True)
class ProgressEvent:
    progress: PlaybackProgress


@dataclass(frozen=True)
class PlaybackEndedEvent:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    error: Exception


PlayerEvent = Union[ProgressEvent, PlaybackEndedEvent, ErrorEvent]

# Queued by close() to wake a blocked reader
_CLOSED = object()


class Subscription:
    """Owned channel of player events.

    Only one subscription is live per player; subscribing again closes the
    previous one. A closed subscription ignores new events, and iteration
    ends once it is closed and drained.
    """

    def __init__(self, maxsize: int = 0):
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def publish(self, event: PlayerEvent) -> bool:
        """Queue an event; drops it when closed or when the queue is full."""
        if self._closed.is_set():
            return False
        try:
            self._queue.put_nowait(event)
        except queue.Full:
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[PlayerEvent]:
        """Next event, or None on timeout / when closed and drained."""
        try:
            event = self._queue.get(block=not self.closed, timeout=timeout)
        except queue.Empty:
            return None
        return None if event is _CLOSED else event

    def close(self) -> None:
        """Close the subscription and wake a reader blocked in `get`."""
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            self._queue.put_nowait(_CLOSED)
        except queue.Full:
            # A full queue never blocks its reader
            pass

    def __iter__(self) -> Iterator[PlayerEvent]:
        while True:
            event = self.get(timeout=0.1)
            if event is not None:
                yield event
            elif self.closed and self._queue.empty():
                return


class CallbackHandle:
    """Ownership token for a registered callback slot."""

    def __init__(self, registry: "EventDispatcher", slot: str, callback: Callable):
        self._registry = registry
        self._slot = slot
        self.callback = callback

    def cancel(self) -> bool:
        """Clear the slot if this handle still owns it."""
        return self._registry.clear(self._slot, self.callback)


class EventDispatcher:
    """Callback slots plus the current subscription, guarded by one lock.

    `emit` snapshots the targets under the lock and invokes them with the
    lock released, so callbacks may call back into the player.
    """

    SLOTS = ("progress", "end", "error")

    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks: dict[str, Optional[Callable]] = dict.fromkeys(self.SLOTS)
        self._subscription: Optional[Subscription] = None

    def register(self, slot: str, callback: Callable) -> CallbackHandle:
        if slot not in self._callbacks:
            raise KeyError(slot)
        with self._lock:
            self._callbacks[slot] = callback
        return CallbackHandle(self, slot, callback)

    def clear(self, slot: str, callback: Callable) -> bool:
        with self._lock:
            if self._callbacks.get(slot) is callback:
                self._callbacks[slot] = None
                return True
        return False

    def subscribe(self, maxsize: int = 0) -> Subscription:
        subscription = Subscription(maxsize=maxsize)
        with self._lock:
            previous, self._subscription = self._subscription, subscription
        if previous is not None:
            previous.close()
        return subscription

    def emit(self, event: PlayerEvent) -> None:
        slot, args = _callback_args(event)
        with self._lock:
            callback = self._callbacks[slot]
            subscription = self._subscription

        if callback is not None:
            try:
                callback(*args)
            except Exception:
                logger.exception(f"Player {slot} callback failed")
        if subscription is not None:
            subscription.publish(event)


def _callback_args(event: PlayerEvent) -> tuple[str, tuple[Any, ...]]:
    if isinstance(event, ProgressEvent):
        return "progress", (event.progress,)
    if isinstance(event, PlaybackEndedEvent):
        return "end", ()
    return "error", (event.error,)
