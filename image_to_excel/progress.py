"""
Throttled progress reporting for a conversion run.

Workers call :meth:`ProgressTracker.report` after every row.  A line is
printed only when the integer percentage has advanced *and* the elapsed
whole second differs from the one of the previous line, so a fast run
prints at most one line per second and never the same percentage twice.
"""

import sys
import threading
import time


class ProgressTracker:
    """Counts processed pixels and prints ``Converting: %N`` lines."""

    def __init__(self, total_pixels: int, clock=time.monotonic, stream=None):
        if total_pixels < 1:
            raise ValueError(f"total_pixels must be positive, got {total_pixels}")
        self.total_pixels = total_pixels
        self.processed = 0
        self.percentage = 0
        self.previous_percentage = 0
        self.reported = []

        self._clock = clock
        self._stream = stream
        self._start = clock()
        self._last_report_second = None
        self._lock = threading.Lock()

    @property
    def elapsed(self) -> float:
        return self._clock() - self._start

    def report(self, increment: int):
        """Add ``increment`` processed pixels and print a line if the gate opens."""
        with self._lock:
            self.processed += increment
            self.percentage = min(100, self.processed * 100 // self.total_pixels)
            elapsed = self.elapsed
            second = int(elapsed)
            if self.percentage > self.previous_percentage and second != self._last_report_second:
                self.previous_percentage = self.percentage
                self._last_report_second = second
                self._emit(self.percentage, elapsed)

    def finish(self):
        """Print the 100% line if the time gate swallowed it."""
        with self._lock:
            if self.percentage == 100 and self.previous_percentage < 100:
                self.previous_percentage = 100
                self._emit(100, self.elapsed)

    def _emit(self, percentage, elapsed):
        self.reported.append(percentage)
        minutes, seconds = divmod(int(elapsed), 60)
        stream = self._stream or sys.stdout
        print(f"\tConverting: %{percentage} (elapsed: {minutes}m {seconds}s)",
              file=stream, flush=True)
