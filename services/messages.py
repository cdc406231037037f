"""The chat message record shared by the store, the bus and the sockets."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from collections.abc import Mapping
from typing import Any


class MessageValidationError(ValueError):
    """Raised when a client payload cannot become a :class:`Message`."""


class MessageDecodeError(ValueError):
    """Raised when a stored or published payload is not a valid message."""


def now_ms() -> int:
    return int(time.time() * 1000)


def _coerce_ts(value: Any) -> int | None:
    """Return ``value`` as positive milliseconds or ``None`` when unusable."""
    if isinstance(value, bool) or not value:
        return None
    if isinstance(value, (int, float)):
        ts = int(value)
    elif isinstance(value, str):
        try:
            ts = int(float(value.strip()))
        except ValueError:
            return None
    else:
        return None
    return ts if ts > 0 else None


@dataclass(frozen=True)
class Message:
    username: str
    text: str
    ts: int

    @classmethod
    def from_payload(cls, payload: Any, now: int) -> "Message":
        """Validate a ``send_message`` payload coming from a client.

        ``username`` and ``text`` must be non-empty strings. A missing or falsy
        ``ts`` (or one that is not a number) is replaced by ``now``.
        """
        if not isinstance(payload, Mapping):
            raise MessageValidationError("payload must be an object")

        username = payload.get("username")
        text = payload.get("text")
        if not isinstance(username, str) or not username:
            raise MessageValidationError("username is required")
        if not isinstance(text, str) or not text:
            raise MessageValidationError("text is required")
        for name, value in (("username", username), ("text", text)):
            try:
                value.encode("utf-8")
            except UnicodeEncodeError as exc:
                raise MessageValidationError(f"{name} is not valid UTF-8: {exc}") from exc

        ts = _coerce_ts(payload.get("ts"))
        return cls(username=username, text=text, ts=ts if ts is not None else now)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "Message":
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise MessageDecodeError(f"payload is not utf-8: {exc}") from exc
        try:
            data = json.loads(raw)
        except (TypeError, json.JSONDecodeError) as exc:
            raise MessageDecodeError(f"payload is not JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise MessageDecodeError("payload must be a JSON object")
        username = data.get("username")
        text = data.get("text")
        ts = data.get("ts")
        if not isinstance(username, str) or not username:
            raise MessageDecodeError("username missing")
        if not isinstance(text, str) or not text:
            raise MessageDecodeError("text missing")
        if isinstance(ts, bool) or not isinstance(ts, int):
            raise MessageDecodeError("ts must be an integer")
        return cls(username=username, text=text, ts=ts)

    def to_dict(self) -> dict:
        return {"username": self.username, "text": self.text, "ts": self.ts}

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, separators=(",", ":"))
