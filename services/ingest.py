"""Accept a client message: validate, persist, trim and publish it."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from services.broadcast_bus import BusError
from services.message_store import StoreError
from services.messages import Message, MessageValidationError, now_ms
from services.results import Failed, FailureKind, Ok, OperationResult, ResultRecorder


@dataclass
class SubmitOutcome:
    message: Optional[Message]
    results: List[OperationResult] = field(default_factory=list)

    @property
    def published(self) -> bool:
        return any(r.ok and r.operation == "publish" for r in self.results)

    @property
    def persisted(self) -> bool:
        return any(r.ok and r.operation == "persist" for r in self.results)


class MonotonicClock:
    """Wall clock in milliseconds that never goes backwards."""

    def __init__(self, source: Callable[[], int] = now_ms) -> None:
        self._source = source
        self._last = 0
        self._lock = threading.Lock()

    def __call__(self) -> int:
        with self._lock:
            self._last = max(self._last, self._source())
            return self._last


class IngestHandler:
    """Turn one ``send_message`` payload into a stored and published message.

    The handler never touches any socket: delivery happens only through the
    bus, including delivery back to the sender's own process. A store failure
    is recorded and the message is still published, so live relay keeps
    working when persistence does not.
    """

    def __init__(
        self,
        store,
        bus,
        recorder: ResultRecorder,
        *,
        max_retained: int = 500,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.store = store
        self.bus = bus
        self.recorder = recorder
        self.max_retained = max_retained
        self.clock = clock or MonotonicClock()

    def submit(self, candidate: Any) -> SubmitOutcome:
        try:
            message = Message.from_payload(candidate, now=self.clock())
        except MessageValidationError as exc:
            result = self.recorder.record(Failed("validate", FailureKind.VALIDATION, exc))
            return SubmitOutcome(message=None, results=[result])

        outcome = SubmitOutcome(message=message)
        record = outcome.results.append

        try:
            self.store.append(message)
            record(self.recorder.record(Ok("persist")))
        except StoreError as exc:
            record(self.recorder.record(Failed("persist", FailureKind.STORE, exc)))
        else:
            try:
                self.store.trim(self.max_retained)
                record(self.recorder.record(Ok("trim")))
            except StoreError as exc:
                record(self.recorder.record(Failed("trim", FailureKind.STORE, exc)))

        try:
            self.bus.publish(message.to_json())
            record(self.recorder.record(Ok("publish")))
        except BusError as exc:
            record(self.recorder.record(Failed("publish", FailureKind.BUS, exc)))

        return outcome
