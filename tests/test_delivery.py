import sys
import threading
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from services.broadcast_bus import MemoryBroadcastBus
from services.connections import ConnectionRegistry
from services.context import create_context
from services.delivery import DeliveryHandler
from services.message_store import MemoryMessageStore
from services.messages import Message
from services.results import ResultRecorder


class EmitRecorder:
    def __init__(self, broken=()):
        self.calls = []
        self.broken = set(broken)
        self.lock = threading.Lock()

    def __call__(self, sid, event, payload):
        if sid in self.broken:
            raise ConnectionResetError("socket closed")
        with self.lock:
            self.calls.append((sid, event, payload))


def _handler(sids, emit):
    registry = ConnectionRegistry()
    for sid in sids:
        registry.add(sid)
    return DeliveryHandler(MemoryBroadcastBus(), registry, emit, ResultRecorder())


def test_deliver_emits_to_every_registered_socket():
    emit = EmitRecorder()
    handler = _handler(["s1", "s2"], emit)

    delivered = handler.deliver(Message("Alice", "hi", 10).to_json())

    assert delivered == 2
    assert sorted(sid for sid, _, _ in emit.calls) == ["s1", "s2"]
    assert all(event == "message" for _, event, _ in emit.calls)
    assert all(payload == {"username": "Alice", "text": "hi", "ts": 10} for _, _, payload in emit.calls)


def test_malformed_payload_is_dropped(caplog):
    emit = EmitRecorder()
    handler = _handler(["s1"], emit)

    assert handler.deliver("{not json") == 0
    assert emit.calls == []
    assert handler.recorder.snapshot()["decode"] == 1
    assert "Operation failed: decode" in caplog.text


def test_broken_socket_is_removed_and_others_still_receive():
    emit = EmitRecorder(broken={"dead"})
    handler = _handler(["dead", "alive"], emit)

    assert handler.deliver(Message("a", "b", 1).to_json()) == 1
    assert "dead" not in handler.registry
    assert "alive" in handler.registry
    assert handler.recorder.snapshot()["connection"] == 1


def test_run_keeps_going_after_bad_payloads():
    emit = EmitRecorder()
    handler = _handler(["s1"], emit)

    handler.run(iter(["garbage", Message("a", "one", 1).to_json(), b"\x00", Message("a", "two", 2).to_json()]))

    assert [payload["text"] for _, _, payload in emit.calls] == ["one", "two"]


def test_three_processes_sharing_store_and_bus_each_deliver_once():
    store = MemoryMessageStore()
    bus = MemoryBroadcastBus()
    emitters = {name: EmitRecorder() for name in "ABC"}
    contexts = {
        name: create_context(store, bus, emit=emitters[name]) for name in "ABC"
    }
    for name, ctx in contexts.items():
        ctx.registry.add(f"{name}-client")

    workers = []
    for ctx in contexts.values():
        stream = bus.listen()
        worker = threading.Thread(target=ctx.delivery.run, args=(stream,))
        worker.start()
        workers.append(worker)

    contexts["A"].ingest.submit({"username": "Alice", "text": "hi"})
    bus.close()
    for worker in workers:
        worker.join(timeout=2)

    for name, emit in emitters.items():
        texts = [payload["text"] for sid, _, payload in emit.calls if sid == f"{name}-client"]
        assert texts == ["hi"]
    assert [m.text for m in store.recent(10)] == ["hi"]
