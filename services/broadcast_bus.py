"""Publish/subscribe bus shared by every server process.

Every process publishes accepted messages here and every process keeps one
standing subscription that feeds its local sockets. With Redis pub/sub each
subscriber receives a channel's messages in publish order, so all processes see
the same relative order.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Callable, Iterator

import redis


logger = logging.getLogger(__name__)


class BusError(RuntimeError):
    """Raised when a payload cannot be published."""


class RedisBroadcastBus:
    """Redis pub/sub on a single well-known channel."""

    def __init__(
        self,
        client: redis.Redis,
        channel: str,
        *,
        reconnect_delay: float = 1.0,
        poll_timeout: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.poll_timeout = poll_timeout
        self._sleep = sleep
        self._closed = threading.Event()

    def publish(self, payload: str) -> int:
        """Publish ``payload`` and return how many subscribers received it."""
        try:
            return self._client.publish(self.channel, payload)
        except (redis.exceptions.RedisError, UnicodeError) as exc:
            raise BusError(f"PUBLISH {self.channel} failed: {exc}") from exc

    def listen(self) -> Iterator[str]:
        """Subscribe now and return an iterator over payloads until :meth:`close`.

        The subscription uses its own connection. When that connection drops,
        the iterator waits ``reconnect_delay`` seconds and subscribes again.
        """
        try:
            pubsub = self._subscribe()
        except redis.exceptions.RedisError as exc:
            logger.warning("Bus subscription to %s failed: %s", self.channel, exc)
            pubsub = None
        return self._drain(pubsub)

    def _subscribe(self):
        pubsub = self._client.pubsub(ignore_subscribe_messages=True)
        try:
            pubsub.subscribe(self.channel)
        except redis.exceptions.RedisError:
            pubsub.close()
            raise
        logger.info("Subscribed to bus channel %s", self.channel)
        return pubsub

    def _drain(self, pubsub) -> Iterator[str]:
        try:
            while not self._closed.is_set():
                try:
                    if pubsub is None:
                        pubsub = self._subscribe()
                    while not self._closed.is_set():
                        item = pubsub.get_message(timeout=self.poll_timeout)
                        if item is None or item.get("type") != "message":
                            continue
                        yield item.get("data")
                except redis.exceptions.RedisError as exc:
                    if pubsub is not None:
                        pubsub.close()
                        pubsub = None
                    if self._closed.is_set():
                        break
                    logger.warning(
                        "Bus subscription to %s lost: %s; retrying in %.1fs",
                        self.channel,
                        exc,
                        self.reconnect_delay,
                    )
                    self._sleep(self.reconnect_delay)
        finally:
            if pubsub is not None:
                pubsub.close()

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.exceptions.RedisError as exc:
            raise BusError(f"Redis bus unreachable: {exc}") from exc

    def close(self) -> None:
        self._closed.set()
        self._client.close()


_CLOSED = object()


class MemoryBroadcastBus:
    """In-process fan-out backed by per-listener queues.

    Several relay contexts may share one instance, which is how tests stand in
    for several server processes attached to the same Redis.
    """

    def __init__(self, maxsize: int = 256) -> None:
        self._listeners: set[queue.Queue] = set()
        self._lock = threading.Lock()
        self._maxsize = maxsize
        self._closed = False

    def publish(self, payload: str) -> int:
        if self._closed:
            raise BusError("bus is closed")
        with self._lock:
            listeners = list(self._listeners)
        for subscriber in listeners:
            try:
                subscriber.put_nowait(payload)
            except queue.Full:
                try:
                    subscriber.get_nowait()
                except queue.Empty:
                    pass
                try:
                    subscriber.put_nowait(payload)
                except queue.Full:
                    # The listener is too slow; drop this payload.
                    logger.warning("Dropping bus payload for a slow listener")
        return len(listeners)

    def subscribe(self) -> queue.Queue:
        """Return a queue that receives future payloads."""
        subscriber: queue.Queue = queue.Queue(maxsize=self._maxsize)
        with self._lock:
            self._listeners.add(subscriber)
        return subscriber

    def unsubscribe(self, subscriber: queue.Queue) -> None:
        with self._lock:
            self._listeners.discard(subscriber)

    def listen(self) -> Iterator[str]:
        """Subscribe now and return an iterator over future payloads."""
        subscriber = self.subscribe()
        if self._closed:
            self.unsubscribe(subscriber)
            return iter(())
        return self._drain(subscriber)

    def _drain(self, subscriber: queue.Queue) -> Iterator[str]:
        try:
            while True:
                payload = subscriber.get()
                if payload is _CLOSED:
                    return
                yield payload
        finally:
            self.unsubscribe(subscriber)

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def ping(self) -> None:
        if self._closed:
            raise BusError("bus is closed")

    def close(self) -> None:
        self._closed = True
        with self._lock:
            listeners = list(self._listeners)
        for subscriber in listeners:
            # El centinela debe entrar aunque la cola esté llena.
            while True:
                try:
                    subscriber.put_nowait(_CLOSED)
                    break
                except queue.Full:
                    try:
                        subscriber.get_nowait()
                    except queue.Empty:
                        pass


def build_bus(config, redis_client: redis.Redis | None = None):
    backend = config.BUS_BACKEND
    if backend == "redis":
        client = redis_client or redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        return RedisBroadcastBus(
            client,
            config.PUBSUB_CHANNEL,
            reconnect_delay=config.BUS_RECONNECT_DELAY,
        )
    if backend == "memory":
        return MemoryBroadcastBus()
    raise RuntimeError(f"BUS_BACKEND desconocido: {backend!r}")
