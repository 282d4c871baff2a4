"""Validation step tracker — observable progress of a full provider sync."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from iptv_cache.models.xtream import SYNC_STEPS, ValidationStep

logger = logging.getLogger(__name__)

Listener = Callable[["ValidationStepTracker"], None]


class ValidationStepTracker:
    """Holds the phase of the sync in flight.

    ``current_step`` is the running phase while a sync is in progress,
    ``None`` once it completed. When a sync fails, ``current_step`` and
    ``failed_step`` both keep the phase that failed until the next sync
    begins, so callers can report where it stopped.
    """

    def __init__(self):
        self.current_step: Optional[ValidationStep] = None
        self.failed_step: Optional[ValidationStep] = None
        self.in_progress = False
        self.error: Optional[str] = None
        self.started_at: Optional[str] = None
        self.finished_at: Optional[str] = None
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")

    def begin(self) -> None:
        self.current_step = None
        self.failed_step = None
        self.error = None
        self.in_progress = True
        self.started_at = datetime.now().isoformat()
        self.finished_at = None
        self._notify()

    def advance(self, step: ValidationStep) -> None:
        self.current_step = step
        logger.info(f"Sync step: {step.label}")
        self._notify()

    def complete(self) -> None:
        self.current_step = None
        self.in_progress = False
        self.finished_at = datetime.now().isoformat()
        self._notify()

    def fail(self, error: Exception, step: Optional[ValidationStep] = None) -> None:
        if step is not None:
            self.current_step = step
        self.failed_step = self.current_step
        self.error = str(error)
        self.in_progress = False
        self.finished_at = datetime.now().isoformat()
        self._notify()

    @property
    def percent(self) -> int:
        if not self.in_progress:
            return 0 if self.failed_step else (100 if self.finished_at else 0)
        if self.current_step is None:
            return 0
        return int(SYNC_STEPS.index(self.current_step) / len(SYNC_STEPS) * 100)

    def snapshot(self) -> dict:
        return {
            "in_progress": self.in_progress,
            "current_step": self.current_step.value if self.current_step else None,
            "failed_step": self.failed_step.value if self.failed_step else None,
            "error": self.error,
            "percent": self.percent,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
        }
