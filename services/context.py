"""Process-scoped handles shared by the socket handlers and HTTP routes."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from services.broadcast_bus import BusError, build_bus
from services.connections import ConnectionRegistry
from services.delivery import DeliveryHandler
from services.history import HistoryService
from services.ingest import IngestHandler
from services.message_store import StoreError, build_store
from services.realtime import emit_to_client
from services.results import ResultRecorder


logger = logging.getLogger(__name__)


@dataclass
class RelayContext:
    store: Any
    bus: Any
    registry: ConnectionRegistry
    recorder: ResultRecorder
    ingest: IngestHandler
    history: HistoryService
    delivery: DeliveryHandler
    history_on_connect: int = 20
    _task: Optional[Any] = field(default=None, repr=False)
    _closed: bool = field(default=False, repr=False)

    def start(self, socketio) -> None:
        """Start the delivery loop as a Socket.IO background task."""
        if self._task is not None:
            return
        # listen() se suscribe al llamarse; lo publicado antes de que arranque
        # el hilo queda en la cola de la suscripción.
        stream = self.bus.listen()
        self._task = socketio.start_background_task(self.delivery.run, stream)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for name, handle in (("bus", self.bus), ("store", self.store)):
            try:
                handle.close()
            except Exception:  # noqa: BLE001 - cerrar el resto aunque uno falle
                logger.exception("Error closing %s", name)
        if self._task is not None and hasattr(self._task, "join"):
            self._task.join(timeout=5)
        logger.info("Relay context closed")

    def __enter__(self) -> "RelayContext":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def create_context(
    store,
    bus,
    *,
    max_retained: int = 500,
    default_limit: int = 50,
    history_on_connect: int = 20,
    emit=emit_to_client,
    clock=None,
) -> RelayContext:
    """Wire already-open backends into a context."""
    registry = ConnectionRegistry()
    recorder = ResultRecorder()
    return RelayContext(
        store=store,
        bus=bus,
        registry=registry,
        recorder=recorder,
        ingest=IngestHandler(store, bus, recorder, max_retained=max_retained, clock=clock),
        history=HistoryService(store, default_limit=default_limit, max_limit=max_retained),
        delivery=DeliveryHandler(bus, registry, emit, recorder),
        history_on_connect=history_on_connect,
    )


def build_context(config) -> RelayContext:
    """Open the store and bus named in ``config`` and check they answer.

    Raises ``RuntimeError`` when either backend is unreachable; without them the
    process cannot serve, or when a configured limit is not positive.
    """
    for name in ("MAX_RETAINED", "HISTORY_DEFAULT_LIMIT"):
        value = getattr(config, name)
        if value < 1:
            raise RuntimeError(f"{name} must be at least 1, got {value}")

    try:
        store = build_store(config)
        store.ping()
    except StoreError as exc:
        raise RuntimeError(f"Message store unavailable: {exc}") from exc

    try:
        bus = build_bus(config)
        bus.ping()
    except BusError as exc:
        store.close()
        raise RuntimeError(f"Broadcast bus unavailable: {exc}") from exc

    logger.info(
        "Relay context ready (store=%s, bus=%s)", config.STORE_BACKEND, config.BUS_BACKEND
    )
    return create_context(
        store,
        bus,
        max_retained=config.MAX_RETAINED,
        default_limit=config.HISTORY_DEFAULT_LIMIT,
        history_on_connect=config.HISTORY_ON_CONNECT,
    )
