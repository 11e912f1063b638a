"""Fire-and-forget query log.

Searches hand entries to BackgroundQueryLog.record(), which only appends to
a bounded in-memory queue. A background task drains the queue into one or
more sinks. A full queue drops its oldest entry; sink failures are logged
and swallowed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, Sequence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueryLogEntry:
    """One served query."""

    query: str
    result_count: int
    method: str
    elapsed_ms: int
    owner_id: str
    timestamp: datetime


class QueryLogSink(Protocol):
    """Destination for query log entries. write() may block."""

    def write(self, entry: QueryLogEntry) -> None: ...


class JsonlQueryLogSink:
    """Appends query log entries to a JSONL file."""

    def __init__(self, log_path: Path) -> None:
        """Initialize the sink.

        Args:
            log_path: JSONL file to append to. Parent directories are created.
        """
        self.log_path = log_path

    def write(self, entry: QueryLogEntry) -> None:
        """Append one entry as a JSON line."""
        record = asdict(entry)
        record["timestamp"] = entry.timestamp.isoformat()
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record) + "\n")


class BackgroundQueryLog:
    """Bounded, non-blocking query log drained by a background task."""

    def __init__(self, sinks: Sequence[QueryLogSink], max_pending: int = 1000) -> None:
        """Initialize the query log.

        Args:
            sinks: Destinations each entry is written to.
            max_pending: Queue bound; the oldest entry is dropped beyond it.
        """
        self._sinks = list(sinks)
        self._pending: deque[QueryLogEntry] = deque(maxlen=max_pending)
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._stopping = False
        self.dropped = 0

    @property
    def pending(self) -> int:
        """Number of entries waiting to be written."""
        return len(self._pending)

    def record(
        self,
        query: str,
        result_count: int,
        method: str,
        elapsed_ms: int,
        owner_id: str,
    ) -> None:
        """Queue an entry. Never blocks and never raises."""
        try:
            if len(self._pending) == self._pending.maxlen:
                self.dropped += 1
                logger.debug("Query log queue full, dropping oldest entry")
            self._pending.append(
                QueryLogEntry(
                    query=query,
                    result_count=result_count,
                    method=method,
                    elapsed_ms=elapsed_ms,
                    owner_id=owner_id,
                    timestamp=datetime.now(timezone.utc),
                )
            )
            self._wakeup.set()
        except Exception as e:
            logger.warning(f"Failed to queue query log entry: {e}")

    def start(self) -> None:
        """Start the background writer on the running event loop."""
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self._run(), name="kura-query-log")

    async def stop(self) -> None:
        """Stop the background writer and flush whatever is still queued."""
        if self._task is not None:
            self._stopping = True
            self._wakeup.set()
            await self._task
            self._task = None
        await self.flush()

    async def flush(self) -> None:
        """Write every queued entry to every sink."""
        while self._pending:
            entry = self._pending.popleft()
            for sink in self._sinks:
                try:
                    await asyncio.to_thread(sink.write, entry)
                except Exception as e:
                    logger.warning(
                        f"Query log sink {type(sink).__name__} failed "
                        f"(owner={entry.owner_id}): {e}"
                    )

    async def _run(self) -> None:
        while not self._stopping:
            await self._wakeup.wait()
            self._wakeup.clear()
            await self.flush()
