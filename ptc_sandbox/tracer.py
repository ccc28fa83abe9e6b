"""
Call tracer - append-only log of capability invocations for one run
"""

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from .capabilities import CapabilityOrigin
from .serialization import to_serializable

logger = logging.getLogger(__name__)


@dataclass
class CapabilityCallRecord:
    """One observed capability invocation and its outcome"""
    capability: str
    args: Any
    origin: CapabilityOrigin
    run_id: str
    started_at: float
    ended_at: float
    result: Any = None
    error: str | None = None
    source: str | None = None
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")

    def __post_init__(self):
        if self.error is not None and self.result is not None:
            raise ValueError("A call record holds either a result or an error, not both")

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def is_bridged(self) -> bool:
        return self.origin is CapabilityOrigin.BRIDGED

    @property
    def duration_ms(self) -> float:
        return round((self.ended_at - self.started_at) * 1000, 3)

    def to_dict(self) -> dict:
        """Wire form consumed by UI and telemetry layers"""
        data = {
            "id": self.id,
            "toolName": self.capability,
            "args": to_serializable(self.args),
            "isBridged": self.is_bridged,
            "source": self.source,
            "startTime": datetime.fromtimestamp(self.started_at, tz=timezone.utc).isoformat(),
            "durationMs": self.duration_ms,
        }
        if self.error is not None:
            data["errorText"] = self.error
        else:
            data["result"] = to_serializable(self.result)
        return data


class CallTracer:
    """
    Append-only, thread-safe record list for a single run.

    Records are kept in completion order. Once closed the tracer rejects
    further appends, so calls finishing after their run has been finalized
    never show up in any trace.
    """

    def __init__(self, run_id: str):
        self.run_id = run_id
        self._records: list[CapabilityCallRecord] = []
        self._lock = threading.Lock()
        self._closed = False

    def append(self, record: CapabilityCallRecord) -> bool:
        if record.run_id != self.run_id:
            raise ValueError(
                f"Record for run {record.run_id} appended to tracer of run {self.run_id}"
            )
        with self._lock:
            if self._closed:
                logger.debug(
                    f"Dropping late call record {record.capability} for finished run {self.run_id}"
                )
                return False
            self._records.append(record)
            return True

    def close(self) -> list[CapabilityCallRecord]:
        """Stop accepting records and return the final trace"""
        with self._lock:
            self._closed = True
            return list(self._records)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def records(self) -> list[CapabilityCallRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
