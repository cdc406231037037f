from __future__ import annotations

import os

from flask_socketio import SocketIO

ALLOWED_ASYNC_MODES = {"eventlet", "gevent", "gevent_uwsgi", "threading"}
ASYNC_MODE = os.getenv("SOCKETIO_ASYNC_MODE", "threading")
if ASYNC_MODE not in ALLOWED_ASYNC_MODES:
    ASYNC_MODE = "threading"
socketio = SocketIO(async_mode=ASYNC_MODE, cors_allowed_origins="*")


def init_app(app):
    socketio.init_app(app)
    return socketio


def _is_socket_ready():
    return socketio.server is not None


def emit_to_client(sid: str, event: str, payload) -> None:
    if not _is_socket_ready():
        raise RuntimeError("Socket.IO server is not initialised")
    socketio.emit(event, payload, to=sid)
