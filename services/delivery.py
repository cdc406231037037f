"""Standing bus subscription that fans messages out to local sockets."""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from services.connections import ConnectionRegistry
from services.messages import Message, MessageDecodeError
from services.results import Failed, FailureKind, Ok, ResultRecorder


logger = logging.getLogger(__name__)

MESSAGE_EVENT = "message"

Emit = Callable[[str, str, dict], None]


class DeliveryHandler:
    def __init__(
        self,
        bus,
        registry: ConnectionRegistry,
        emit: Emit,
        recorder: ResultRecorder,
    ) -> None:
        self.bus = bus
        self.registry = registry
        self.emit = emit
        self.recorder = recorder

    def deliver(self, raw) -> int:
        """Emit one bus payload to every registered socket.

        Returns how many sockets it was handed to. Malformed payloads are
        dropped; a socket whose emit fails is removed from the registry.
        """
        try:
            message = Message.from_json(raw)
        except MessageDecodeError as exc:
            self.recorder.record(Failed("decode", FailureKind.DECODE, exc))
            return 0

        payload = message.to_dict()
        delivered = 0
        for sid in self.registry.snapshot():
            try:
                self.emit(sid, MESSAGE_EVENT, payload)
                delivered += 1
            except Exception as exc:  # noqa: BLE001 - un socket roto no debe frenar al resto
                self.registry.discard(sid)
                self.recorder.record(Failed("emit", FailureKind.CONNECTION, f"sid={sid}: {exc}"))
        self.recorder.record(Ok("deliver"))
        return delivered

    def run(self, stream: Optional[Iterable] = None) -> None:
        """Consume the bus until it is closed."""
        stream = self.bus.listen() if stream is None else stream
        logger.info("Delivery loop started")
        for raw in stream:
            try:
                self.deliver(raw)
            except Exception:  # noqa: BLE001 - la suscripción nunca debe morir
                logger.exception("Unexpected error delivering bus payload")
        logger.info("Delivery loop stopped")
