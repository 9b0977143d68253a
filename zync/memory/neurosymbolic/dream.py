"""Staged maintenance cycle that consolidates memory and links concepts."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, List, Mapping, Optional

from .core import NeuroSymbolicCore
from .schemas import DreamReport, OptimizationReport
from .topology import TopologicalMemory

logger = logging.getLogger(__name__)

INITIATING = "INITIATING_DREAM_STATE"
CLUSTERING = "CLUSTERING_MEMORIES"
GENERATING_INSIGHTS = "GENERATING_INSIGHTS"
CONSOLIDATING = "CONSOLIDATING_KNOWLEDGE"
COMPLETE = "DREAM_COMPLETE"

StatusCallback = Callable[[str], None]


@dataclass
class DreamCycleReport:
    stages: List[str] = field(default_factory=list)
    optimization: Optional[OptimizationReport] = None
    dream: Optional[DreamReport] = None
    errors: List[str] = field(default_factory=list)

    def to_payload(self) -> Mapping[str, Any]:
        return {
            "stages": list(self.stages),
            "optimization": self.optimization.to_payload() if self.optimization else None,
            "dream": self.dream.to_payload() if self.dream else None,
            "errors": list(self.errors),
        }


class DreamService:
    """Run ``optimize`` then ``dream`` as one uninterruptible cycle.

    Cycles can be triggered manually with :meth:`run_cycle` or on a fixed
    interval with :meth:`start`. A cycle that is already running is never
    started twice; :meth:`stop` waits for it to finish.
    """

    def __init__(self, memory: TopologicalMemory, core: NeuroSymbolicCore) -> None:
        self.memory = memory
        self.core = core
        self._cycle_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def is_active(self) -> bool:
        return self._cycle_lock.locked()

    def run_cycle(self, callback: Optional[StatusCallback] = None) -> Optional[DreamCycleReport]:
        """Run one cycle; returns ``None`` when another cycle is in progress."""

        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Dream cycle already running; skipping")
            return None
        try:
            return self._run_stages(callback)
        finally:
            self._cycle_lock.release()

    def _run_stages(self, callback: Optional[StatusCallback]) -> DreamCycleReport:
        report = DreamCycleReport()

        def announce(stage: str) -> None:
            report.stages.append(stage)
            if callback is None:
                return
            try:
                callback(stage)
            except Exception:
                logger.exception("Dream status callback failed at %s", stage)

        logger.info("Initiating dream state")
        announce(INITIATING)

        announce(CLUSTERING)
        try:
            report.optimization = self.memory.optimize()
        except Exception as exc:
            logger.exception("Memory optimization failed")
            report.errors.append(f"{CLUSTERING}: {exc}")

        announce(GENERATING_INSIGHTS)
        try:
            report.dream = self.core.dream()
        except Exception as exc:
            logger.exception("Dreaming failed")
            report.errors.append(f"{GENERATING_INSIGHTS}: {exc}")

        announce(CONSOLIDATING)
        announce(COMPLETE)
        logger.info("Dream cycle complete")
        return report

    def start(self, interval_seconds: float, callback: Optional[StatusCallback] = None) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop,
            args=(interval_seconds, callback),
            name="dream-service",
            daemon=True,
        )
        self._thread.start()

    def _loop(self, interval_seconds: float, callback: Optional[StatusCallback]) -> None:
        while not self._stop_event.wait(interval_seconds):
            self.run_cycle(callback)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Waking up")


__all__ = ["DreamCycleReport", "DreamService"]
