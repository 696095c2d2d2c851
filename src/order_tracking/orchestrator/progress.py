"""Observable progress state for one batch run."""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, List

from ..logging import get_logger

LOG = get_logger("orchestrator-progress")

STATE_IDLE = "idle"
STATE_QUEUED = "queued"
STATE_DONE = "done"
STATE_MATCHING = "matching"
STATE_FINISHED = "finished"

Listener = Callable[[Dict[str, Any]], None]


class BatchProgress:
    """Progress owned by the batch orchestrator.

    Per image the state walks queued -> <OCR stages> -> done; afterwards the
    batch enters matching and finally finished. Every transition notifies the
    subscribers with a snapshot; `snapshot()` serves pollers.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self.state = STATE_IDLE
        self.stage = STATE_IDLE
        self.image_index = 0
        self.image_count = 0
        self.file_name = ""
        self.percent = 0

    def subscribe(self, listener: Listener) -> Listener:
        with self._lock:
            self._listeners.append(listener)
        return listener

    def unsubscribe(self, listener: Listener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "state": self.state,
                "stage": self.stage,
                "image_index": self.image_index,
                "image_count": self.image_count,
                "file_name": self.file_name,
                "percent": self.percent,
            }

    def _set(self, **fields: Any) -> None:
        with self._lock:
            for key, value in fields.items():
                setattr(self, key, value)
            listeners = list(self._listeners)
        snap = self.snapshot()
        LOG.debug(
            f"[{snap['image_index']}/{snap['image_count']}] {snap['state']} {snap['percent']}%"
        )
        for listener in listeners:
            listener(snap)

    def start(self, image_count: int) -> None:
        self._set(state=STATE_QUEUED, stage=STATE_QUEUED, image_index=0, image_count=image_count, file_name="", percent=0)

    def begin_image(self, index: int, file_name: str) -> None:
        self._set(state=STATE_QUEUED, stage=STATE_QUEUED, image_index=index, file_name=file_name, percent=0)

    def update_stage(self, stage: str, percent: int) -> None:
        """OCR progress callback: (stage name, 0-100 intra-image progress)."""
        self._set(state=stage, stage=stage, percent=max(0, min(100, int(percent))))

    def finish_image(self) -> None:
        self._set(state=STATE_DONE, stage=STATE_DONE, percent=100)

    def begin_matching(self) -> None:
        self._set(state=STATE_MATCHING, stage=STATE_MATCHING)

    def finish(self) -> None:
        self._set(state=STATE_FINISHED, stage=STATE_FINISHED)
