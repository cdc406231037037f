"""Structured outcomes for relay operations and the recorder that logs them."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Dict


logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    VALIDATION = "validation"
    STORE = "store"
    BUS = "bus"
    DECODE = "decode"
    CONNECTION = "connection"


@dataclass(frozen=True)
class OperationResult:
    operation: str
    ok: bool
    kind: FailureKind | None = None
    error: str | None = None


def Ok(operation: str) -> OperationResult:
    return OperationResult(operation=operation, ok=True)


def Failed(operation: str, kind: FailureKind, error: object = None) -> OperationResult:
    return OperationResult(
        operation=operation,
        ok=False,
        kind=kind,
        error=str(error) if error is not None else None,
    )


class ResultRecorder:
    """Log every operation result and keep per-kind failure counters."""

    def __init__(self) -> None:
        self._failures: Counter = Counter()
        self._lock = threading.Lock()

    def record(self, result: OperationResult) -> OperationResult:
        if result.ok:
            logger.debug("Operation ok: %s", result.operation, extra={"operation": result.operation})
            return result

        with self._lock:
            self._failures[result.kind.value] += 1
        # Las validaciones fallidas son esperables; el resto indica un problema de backend.
        level = logging.INFO if result.kind is FailureKind.VALIDATION else logging.ERROR
        logger.log(
            level,
            "Operation failed: %s (%s): %s",
            result.operation,
            result.kind.value,
            result.error,
            extra={"operation": result.operation, "failure_kind": result.kind.value},
        )
        return result

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {kind.value: self._failures.get(kind.value, 0) for kind in FailureKind}
