from __future__ import annotations

import queue
import threading
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class RendezvousClosed(RuntimeError):
    """Raised when putting into, or taking from, a closed rendezvous."""


class Rendezvous(Generic[T]):
    """
    Single-slot blocking hand-off between one producer and one consumer.

    `put()` returns only after the consumer has taken the item *and* called
    `done()`, so at most one item is ever in flight and the producer never
    runs ahead of the consumer. This keeps the two sides in strict lock-step
    even though they live on different threads.
    """

    def __init__(self, poll_timeout: float = 0.05) -> None:
        self._slot: "queue.Queue[T]" = queue.Queue(maxsize=1)
        self._consumed = threading.Event()
        self._closed = threading.Event()
        self._poll_timeout = float(poll_timeout)

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def put(self, item: T) -> None:
        """Hand `item` to the consumer and block until it has been processed."""
        if self._closed.is_set():
            raise RendezvousClosed("rendezvous is closed")
        self._consumed.clear()
        self._slot.put(item)
        while not self._consumed.wait(self._poll_timeout):
            if self._closed.is_set():
                raise RendezvousClosed("consumer went away before finishing the item")

    def take(self) -> Optional[T]:
        """
        Block until an item is available and return it.

        Returns None once the rendezvous is closed and no item is pending.
        """
        while True:
            try:
                return self._slot.get(timeout=self._poll_timeout)
            except queue.Empty:
                if self._closed.is_set():
                    return None

    def done(self) -> None:
        """Signal that the item returned by the last `take()` is fully processed."""
        self._consumed.set()

    def close(self) -> None:
        """Release both sides; pending and future calls stop blocking."""
        self._closed.set()


__all__ = ["Rendezvous", "RendezvousClosed"]
