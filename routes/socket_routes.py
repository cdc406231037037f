import logging

from flask import current_app, request
from flask_socketio import disconnect, emit

from services.message_store import StoreError
from services.realtime import socketio
from services.results import Failed, FailureKind

logger = logging.getLogger(__name__)

HISTORY_EVENT = "history"


def _relay():
    return current_app.extensions["relay"]


@socketio.on("connect")
def handle_connect():
    relay = _relay()
    sid = request.sid
    logger.info("Client connected %s", sid, extra={"sid": sid})

    # El snapshot va sólo a este socket y antes de registrarlo, así llega
    # antes que cualquier mensaje en vivo.
    try:
        snapshot = relay.history.snapshot(relay.history_on_connect)
    except StoreError as exc:
        relay.recorder.record(Failed("history_snapshot", FailureKind.STORE, exc))
        snapshot = []
    if snapshot:
        emit(HISTORY_EVENT, snapshot)

    relay.registry.add(sid)


@socketio.on("disconnect")
def handle_disconnect(*_):
    relay = _relay()
    sid = request.sid
    relay.registry.discard(sid)
    logger.info("Client disconnected %s", sid, extra={"sid": sid})


@socketio.on("send_message")
def handle_send_message(data=None):
    # Fire-and-forget: el emisor recibe su propio mensaje vía el bus.
    _relay().ingest.submit(data)


@socketio.on_error_default
def handle_socket_error(exc):
    relay = _relay()
    sid = getattr(request, "sid", None)
    if sid is not None:
        relay.registry.discard(sid)
    relay.recorder.record(Failed("socket", FailureKind.CONNECTION, f"sid={sid}: {exc}"))
    disconnect()
