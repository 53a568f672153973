"""
Periodic release of write-side resources.

Every cell fill creates style state in the sink.  Once more than
``threshold`` cells were written since the last pass, the reclaimer asks
the sink to compact the rows that are completely written, runs the
garbage collector and starts counting again.
"""

import gc
import logging
import threading

logger = logging.getLogger(__name__)


class ResourceReclaimer:
    """Write counter with a reclamation watermark."""

    def __init__(self, sink, threshold: int = 200000):
        if threshold < 1:
            raise ValueError(f"Reclaim threshold must be positive, got {threshold}")
        self.sink = sink
        self.threshold = threshold
        self.writes_since_reclaim = 0
        self.reclaims = 0
        # Every row up to and including this one is fully written.
        self.completed_through = 0
        self.compacted_through = 0
        self.peak_writes = 0

        self._pending_rows = set()
        self._lock = threading.Lock()

    def row_done(self, row: int, writes: int):
        """Record that ``row`` is fully written with ``writes`` cells."""
        with self._lock:
            self._pending_rows.add(row)
            while self.completed_through + 1 in self._pending_rows:
                self.completed_through += 1
                self._pending_rows.discard(self.completed_through)

            self.writes_since_reclaim += writes
            self.peak_writes = max(self.peak_writes, self.writes_since_reclaim)
            if self.writes_since_reclaim > self.threshold:
                self._reclaim()

    def _reclaim(self):
        first, last = self.compacted_through + 1, self.completed_through
        compact = getattr(self.sink, "compact_range", None)
        if compact is not None and last >= first:
            compact(first, last)
            self.compacted_through = last
        collected = gc.collect()
        logger.debug(f"Reclaimed after {self.writes_since_reclaim} writes "
                     f"(rows {first}-{last} compacted, {collected} objects collected)")
        self.writes_since_reclaim = 0
        self.reclaims += 1
