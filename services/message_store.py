"""Durable, bounded history of chat messages.

Three interchangeable backends share the same small contract:

``append(message)``
    Persist one message at the newest end.
``trim(max_retained)``
    Drop everything except the newest ``max_retained`` messages.
``recent(limit)``
    Return up to ``limit`` newest messages, oldest first.

Backend failures are raised as :class:`StoreError` so callers never have to
know which client library is underneath.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from typing import List

import redis
from mysql.connector.errors import Error as MySQLError

from services.messages import Message, MessageDecodeError


logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Raised when the message store cannot be read or written."""


class RedisListStore:
    """Messages kept as JSON strings in a Redis list, newest on the right."""

    def __init__(self, client: redis.Redis, key: str) -> None:
        self._client = client
        self.key = key

    def append(self, message: Message) -> None:
        try:
            self._client.rpush(self.key, message.to_json())
        except (redis.exceptions.RedisError, UnicodeError) as exc:
            raise StoreError(f"RPUSH {self.key} failed: {exc}") from exc

    def trim(self, max_retained: int) -> None:
        try:
            self._client.ltrim(self.key, -max_retained, -1)
        except (redis.exceptions.RedisError, UnicodeError) as exc:
            raise StoreError(f"LTRIM {self.key} failed: {exc}") from exc

    def recent(self, limit: int) -> List[Message]:
        try:
            raw_items = self._client.lrange(self.key, -limit, -1)
        except (redis.exceptions.RedisError, UnicodeError) as exc:
            raise StoreError(f"LRANGE {self.key} failed: {exc}") from exc

        messages = []
        for raw in raw_items:
            try:
                messages.append(Message.from_json(raw))
            except MessageDecodeError as exc:
                logger.warning("Skipping unreadable entry in %s: %s", self.key, exc)
        return messages

    def ping(self) -> None:
        try:
            self._client.ping()
        except redis.exceptions.RedisError as exc:
            raise StoreError(f"Redis store unreachable: {exc}") from exc

    def close(self) -> None:
        self._client.close()


class SqlMessageStore:
    """Messages kept as rows of the ``messages`` table (see ``services.db``)."""

    def __init__(self, pool) -> None:
        self._pool = pool

    def _run(self, action: str, fn):
        try:
            conn = self._pool.get_connection()
        except MySQLError as exc:
            raise StoreError(f"{action}: no connection available: {exc}") from exc
        try:
            return fn(conn)
        except (MySQLError, UnicodeError) as exc:
            try:
                conn.rollback()
            except MySQLError:
                logger.debug("Rollback failed after %s error", action)
            raise StoreError(f"{action} failed: {exc}") from exc
        finally:
            conn.close()

    def append(self, message: Message) -> None:
        def _insert(conn):
            c = conn.cursor()
            c.execute(
                "INSERT INTO messages (username, text, ts) VALUES (%s, %s, %s)",
                (message.username, message.text, message.ts),
            )
            conn.commit()

        self._run("insert message", _insert)

    def trim(self, max_retained: int) -> None:
        def _trim(conn):
            c = conn.cursor()
            # Fila más antigua que todavía debe conservarse.
            c.execute(
                "SELECT ts, id FROM messages ORDER BY ts DESC, id DESC LIMIT 1 OFFSET %s",
                (max_retained - 1,),
            )
            row = c.fetchone()
            if row is None:
                conn.commit()
                return
            cutoff_ts, cutoff_id = row
            c.execute(
                "DELETE FROM messages WHERE ts < %s OR (ts = %s AND id < %s)",
                (cutoff_ts, cutoff_ts, cutoff_id),
            )
            conn.commit()

        self._run("trim messages", _trim)

    def recent(self, limit: int) -> List[Message]:
        def _select(conn):
            c = conn.cursor()
            c.execute(
                "SELECT username, text, ts FROM messages ORDER BY ts DESC, id DESC LIMIT %s",
                (limit,),
            )
            return c.fetchall()

        rows = list(self._run("select recent messages", _select))
        rows.reverse()
        return [Message(username=u, text=t, ts=int(ts)) for u, t, ts in rows]

    def ping(self) -> None:
        def _ping(conn):
            c = conn.cursor()
            c.execute("SELECT 1")
            c.fetchone()

        self._run("ping", _ping)

    def close(self) -> None:
        # El pool de mysql-connector no expone un cierre global; las conexiones
        # vuelven al pool en cada operación.
        return None


class MemoryMessageStore:
    """Process-local store, handy for development and tests."""

    def __init__(self) -> None:
        self._items: deque = deque()
        self._lock = threading.Lock()

    def append(self, message: Message) -> None:
        with self._lock:
            self._items.append(message)

    def trim(self, max_retained: int) -> None:
        with self._lock:
            while len(self._items) > max_retained:
                self._items.popleft()

    def recent(self, limit: int) -> List[Message]:
        with self._lock:
            items = list(self._items)
        return items[-limit:] if limit > 0 else []

    def ping(self) -> None:
        return None

    def close(self) -> None:
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


def build_store(config, redis_client: redis.Redis | None = None):
    """Instantiate the backend named by ``config.STORE_BACKEND``."""
    backend = config.STORE_BACKEND
    if backend == "redis":
        client = redis_client or redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        return RedisListStore(client, config.MESSAGE_LIST_KEY)
    if backend == "mysql":
        from services import db

        pool = db.create_pool(
            db.settings_from_config(config),
            size=config.DB_POOL_SIZE,
            ensure_database=True,
        )
        db.init_schema(pool)
        return SqlMessageStore(pool)
    if backend == "memory":
        return MemoryMessageStore()
    raise RuntimeError(f"STORE_BACKEND desconocido: {backend!r}")
