import sys
import threading
from pathlib import Path

import pytest
import redis

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from services.broadcast_bus import BusError, MemoryBroadcastBus, RedisBroadcastBus


def test_memory_bus_fans_out_to_every_listener_in_order():
    bus = MemoryBroadcastBus()
    first = bus.listen()
    second = bus.listen()

    assert bus.publish("a") == 2
    bus.publish("b")
    bus.close()

    assert list(first) == ["a", "b"]
    assert list(second) == ["a", "b"]
    assert bus.listener_count == 0


def test_memory_bus_drops_oldest_for_slow_listener():
    bus = MemoryBroadcastBus(maxsize=2)
    stream = bus.listen()
    for payload in ("1", "2", "3"):
        bus.publish(payload)
    bus.close()

    # El centinela de cierre desplaza al más antiguo que quedaba.
    assert list(stream) == ["3"]


def test_memory_bus_rejects_publish_after_close():
    bus = MemoryBroadcastBus()
    bus.close()

    with pytest.raises(BusError):
        bus.publish("late")
    assert list(bus.listen()) == []


def test_memory_bus_close_wakes_blocked_listener():
    bus = MemoryBroadcastBus()
    stream = bus.listen()
    received = []
    worker = threading.Thread(target=lambda: received.extend(stream))
    worker.start()

    bus.publish("x")
    bus.close()
    worker.join(timeout=2)

    assert not worker.is_alive()
    assert received == ["x"]


class DummyPubSub:
    def __init__(self, client):
        self.client = client
        self.subscribed = []
        self.closed = False

    def subscribe(self, channel):
        if self.client.fail_subscribe:
            self.client.fail_subscribe -= 1
            raise redis.exceptions.ConnectionError("connection refused")
        self.subscribed.append(channel)

    def get_message(self, timeout=0.0):
        if not self.client.script:
            self.client.bus.close()
            return None
        step = self.client.script.pop(0)
        if isinstance(step, Exception):
            raise step
        return step

    def close(self):
        self.closed = True


class DummyRedis:
    def __init__(self, script=None):
        self.script = list(script or [])
        self.published = []
        self.pubsubs = []
        self.fail_publish = False
        self.fail_subscribe = 0
        self.bus = None

    def publish(self, channel, payload):
        if self.fail_publish:
            raise redis.exceptions.ConnectionError("down")
        payload.encode("utf-8")
        self.published.append((channel, payload))
        return 3

    def pubsub(self, ignore_subscribe_messages=False):
        pubsub = DummyPubSub(self)
        self.pubsubs.append(pubsub)
        return pubsub

    def ping(self):
        return True

    def close(self):
        pass


def test_redis_bus_publish_uses_channel():
    client = DummyRedis()
    bus = RedisBroadcastBus(client, "chat:channel")

    assert bus.publish('{"x":1}') == 3
    assert client.published == [("chat:channel", '{"x":1}')]


def test_redis_bus_publish_failure_raises_bus_error():
    client = DummyRedis()
    client.fail_publish = True

    with pytest.raises(BusError):
        RedisBroadcastBus(client, "chat:channel").publish("x")


def test_redis_bus_listen_yields_messages_and_resubscribes(caplog):
    sleeps = []
    client = DummyRedis(
        script=[
            None,
            {"type": "message", "data": "one"},
            redis.exceptions.ConnectionError("connection reset"),
            {"type": "message", "data": "two"},
        ]
    )
    bus = RedisBroadcastBus(client, "chat:channel", reconnect_delay=0.5, sleep=sleeps.append)
    client.bus = bus

    assert list(bus.listen()) == ["one", "two"]
    assert sleeps == [0.5]
    assert len(client.pubsubs) == 2
    assert all(p.subscribed == ["chat:channel"] and p.closed for p in client.pubsubs)
    assert "Bus subscription to chat:channel lost" in caplog.text


def test_redis_bus_publish_wraps_encoding_errors():
    bus = RedisBroadcastBus(DummyRedis(), "chat:channel")

    with pytest.raises(BusError, match="PUBLISH chat:channel failed"):
        bus.publish('{"text":"broken \ud83d"}')


def test_redis_bus_subscribes_when_listen_is_called():
    client = DummyRedis()
    bus = RedisBroadcastBus(client, "chat:channel")

    stream = bus.listen()

    # Suscrito antes de consumir el primer elemento.
    assert len(client.pubsubs) == 1
    assert client.pubsubs[0].subscribed == ["chat:channel"]

    bus.close()
    assert list(stream) == []
    assert client.pubsubs[0].closed


def test_redis_bus_retries_failed_initial_subscription():
    sleeps = []
    client = DummyRedis(script=[{"type": "message", "data": "late"}])
    client.fail_subscribe = 2
    bus = RedisBroadcastBus(client, "chat:channel", reconnect_delay=0.25, sleep=sleeps.append)
    client.bus = bus

    stream = bus.listen()

    assert client.pubsubs[0].closed
    assert list(stream) == ["late"]
    assert sleeps == [0.25]
    assert len(client.pubsubs) == 3
    assert client.pubsubs[2].subscribed == ["chat:channel"]
    assert all(p.closed for p in client.pubsubs)
