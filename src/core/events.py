"""
Structured pipeline events.

Stages emit events (validation outcomes, API calls, stage durations) through
PipelineEventLogger. Emitting never blocks and never raises: events go into
a bounded queue drained by a background QueueListener, and anything that
does not fit is counted in ``dropped_count``.
"""

import json
import logging
import queue
from dataclasses import asdict, dataclass, field
from datetime import datetime
from logging.handlers import QueueListener
from typing import Any, Optional

from src.core.config import EventLogConfig
from src.core.models import utc_now


@dataclass
class PipelineEvent:
    """Well-known event fields plus an open ``extra`` map."""
    event: str
    stage: Optional[str] = None
    duration_ms: Optional[float] = None
    comic_id: Optional[str] = None
    error_code: Optional[str] = None
    success: Optional[bool] = None
    extra: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return {k: v for k, v in data.items() if v is not None and v != {}}


class _ForwardHandler(logging.Handler):
    """Re-dispatch dequeued records through their named logger."""

    def emit(self, record: logging.LogRecord) -> None:
        target = logging.getLogger(record.name)
        if target.isEnabledFor(record.levelno):
            target.handle(record)


class _BlockingSentinelListener(QueueListener):
    # The stock listener uses put_nowait for its stop sentinel, which fails on a full queue
    def enqueue_sentinel(self) -> None:
        self.queue.put(self._sentinel)


class PipelineEventLogger:
    """Non-blocking event emitter with a bounded queue and drop counter."""

    def __init__(self, config: Optional[EventLogConfig] = None):
        self.config = config or EventLogConfig()
        self._queue: queue.Queue = queue.Queue(maxsize=self.config.queue_size)
        self._listener = _BlockingSentinelListener(self._queue, _ForwardHandler())
        self._started = False
        self._closed = False
        self.emitted_count = 0
        self.dropped_count = 0

    def start(self) -> None:
        if not self._started and not self._closed:
            self._listener.start()
            self._started = True

    def close(self) -> None:
        """Drain queued events and stop the listener. Later emits are dropped."""
        self._closed = True
        if self._started:
            self._listener.stop()
            self._started = False

    def emit(
        self,
        event: str,
        *,
        level: int = logging.INFO,
        stage: Optional[str] = None,
        duration_ms: Optional[float] = None,
        comic_id: Optional[str] = None,
        error_code: Optional[str] = None,
        success: Optional[bool] = None,
        **extra: Any,
    ) -> None:
        if self._closed:
            self.dropped_count += 1
            return
        try:
            payload = PipelineEvent(
                event=event,
                stage=stage,
                duration_ms=round(duration_ms, 2) if duration_ms is not None else None,
                comic_id=comic_id,
                error_code=error_code,
                success=success,
                extra=extra,
            ).to_dict()
            record = logging.LogRecord(
                name=self.config.logger_name,
                level=level,
                pathname=__file__,
                lineno=0,
                msg="pipeline_event %s",
                args=(json.dumps(payload, ensure_ascii=False, default=str),),
                exc_info=None,
            )
            record.pipeline_event = payload
            self._queue.put_nowait(record)
            self.emitted_count += 1
        except Exception:
            # Event logging must never fail the pipeline
            self.dropped_count += 1

    def get_status(self) -> dict[str, int]:
        return {
            "emitted": self.emitted_count,
            "dropped": self.dropped_count,
            "queued": self._queue.qsize(),
        }
