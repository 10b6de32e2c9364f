"""
Per-invocation timing record.

An InvocationTimings is opened when an invocation starts, collects one
entry per pipeline stage it passes through, and is closed exactly once
with the outcome.  Closing it emits a single summary log line, so a failed
invocation still reports how far it got and where the time went.
"""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict, Optional

from curlbridge.core.logging import get_logger

logger = get_logger(__name__)

OUTCOME_PENDING = "pending"
OUTCOME_OK = "ok"
OUTCOME_ERROR = "error"


@dataclass
class InvocationTimings:
    provider_id: str
    request_id: str
    stages: Dict[str, float] = field(default_factory=dict)
    outcome: str = OUTCOME_PENDING
    error_kind: Optional[str] = None
    # last stage entered; on failure this is where it failed
    current_stage: Optional[str] = None
    wall_ms: Optional[float] = None
    _started: float = field(default_factory=time.perf_counter, repr=False)

    @property
    def finished(self) -> bool:
        return self.outcome != OUTCOME_PENDING

    @property
    def total_ms(self) -> float:
        if self.wall_ms is not None:
            return self.wall_ms
        return round((time.perf_counter() - self._started) * 1000, 2)

    @asynccontextmanager
    async def stage(self, name: str) -> AsyncIterator[None]:
        """Time one stage; the entry is written even when the stage raises."""
        self.current_stage = name
        t0 = time.perf_counter()
        try:
            yield
        finally:
            self.stages[name] = round((time.perf_counter() - t0) * 1000, 2)

    def finish(self, error_kind: Optional[str] = None) -> None:
        if self.finished:
            return
        self.wall_ms = round((time.perf_counter() - self._started) * 1000, 2)
        self.outcome = OUTCOME_ERROR if error_kind else OUTCOME_OK
        self.error_kind = error_kind

        payload = {
            "provider_id": self.provider_id,
            "request_id": self.request_id,
            "outcome": self.outcome,
            "latency_total_ms": self.wall_ms,
            **{f"latency_{k}_ms": v for k, v in self.stages.items()},
        }
        if error_kind:
            payload["error_kind"] = error_kind
            payload["failed_stage"] = self.current_stage
        logger.info("Invocation latency report", extra=payload)
