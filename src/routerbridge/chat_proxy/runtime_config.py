"""Mutable runtime settings shared between request handlers.

Requests take one immutable snapshot at start and use it throughout, so a
concurrent model switch never produces a request with mixed settings.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace

from .errors import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeSnapshot:
    endpoint: str
    model: str
    api_key: str = field(repr=False)
    generation: int = 0


class RuntimeConfigStore:
    def __init__(self, endpoint: str, model: str, api_key: str):
        self._lock = threading.Lock()
        self._snapshot = RuntimeSnapshot(endpoint=endpoint, model=model, api_key=api_key)

    def read(self) -> RuntimeSnapshot:
        with self._lock:
            return self._snapshot

    def update(self, model: str | None) -> RuntimeSnapshot:
        if not isinstance(model, str) or not model.strip():
            raise ValidationError("Model cannot be empty")
        with self._lock:
            previous = self._snapshot.model
            self._snapshot = replace(
                self._snapshot, model=model, generation=self._snapshot.generation + 1
            )
            snapshot = self._snapshot
        logger.info("Model updated: %s -> %s", previous, model)
        return snapshot
