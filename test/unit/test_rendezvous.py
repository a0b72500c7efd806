"""
Unit tests for the single-slot Rendezvous hand-off.

The producer must never run ahead of the consumer: `put()` only returns
once the consumer has finished with the item.
"""
from __future__ import annotations

import threading
import time

import pytest

from shared.rendezvous import Rendezvous, RendezvousClosed


def test_put_blocks_until_done():
    channel: Rendezvous[int] = Rendezvous(poll_timeout=0.01)
    returned = threading.Event()

    def producer():
        channel.put(1)
        returned.set()

    t = threading.Thread(target=producer)
    t.start()
    assert channel.take() == 1
    # Taken but not yet processed: the producer is still blocked
    assert not returned.wait(0.1)
    channel.done()
    assert returned.wait(1.0)
    t.join(1.0)


def test_items_arrive_in_order_one_at_a_time():
    channel: Rendezvous[int] = Rendezvous(poll_timeout=0.01)
    in_flight = []
    max_in_flight = []
    received = []

    def producer():
        for i in range(50):
            in_flight.append(i)
            channel.put(i)
        channel.close()

    t = threading.Thread(target=producer)
    t.start()
    while True:
        item = channel.take()
        if item is None:
            break
        max_in_flight.append(len(in_flight) - len(received))
        received.append(item)
        channel.done()
    t.join(1.0)
    assert received == list(range(50))
    assert max(max_in_flight) == 1


def test_take_returns_none_after_close():
    channel: Rendezvous[int] = Rendezvous(poll_timeout=0.01)
    channel.close()
    assert channel.closed
    assert channel.take() is None


def test_close_releases_blocked_producer():
    channel: Rendezvous[int] = Rendezvous(poll_timeout=0.01)
    errors = []

    def producer():
        try:
            channel.put(1)
        except RendezvousClosed as exc:
            errors.append(exc)

    t = threading.Thread(target=producer)
    t.start()
    time.sleep(0.05)
    channel.close()
    t.join(1.0)
    assert not t.is_alive()
    assert len(errors) == 1


def test_put_on_closed_channel_raises():
    channel: Rendezvous[int] = Rendezvous()
    channel.close()
    with pytest.raises(RendezvousClosed):
        channel.put(1)
