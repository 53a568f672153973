"""
Pixel-to-cell conversion engine.

Rows are computed by a pool of producer threads and pushed into a bounded
queue as ``(row, [(address, r, g, b), ...])`` batches.  The calling thread
is the only consumer and performs every sink write, so a sink that is not
thread safe (openpyxl, a COM host) is only ever touched from one thread.
A sink that declares ``thread_safe = True`` is written directly by the
producers instead.
"""

import logging
import os
import queue
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np

from .config import DEFAULT_CONFIG
from .image_source import check_pixel_count
from .progress import ProgressTracker
from .reclaimer import ResourceReclaimer
from .sink import CellWriteError, WorkbookSink
from .sizing import GridBounds, adjust_image_size, column_letters

logger = logging.getLogger(__name__)

_PUT_TIMEOUT = 0.1


class ConversionAborted(Exception):
    """A fatal error stopped the conversion; wraps the first one seen."""


class ConversionResult:
    """Outcome of one run plus the anomalies it hit."""

    def __init__(self, rows, cols, rightmost_column):
        self.rows = rows
        self.cols = cols
        self.rightmost_column = rightmost_column
        self.cells_written = 0
        self.failed_cells = 0
        self.missing_pixels = 0
        self.reclaims = 0
        self.pixel_count_mismatch = False
        self.output_path = None
        self.elapsed = 0.0

    @property
    def ok(self) -> bool:
        return not (self.failed_cells or self.missing_pixels or self.pixel_count_mismatch)

    def summary(self) -> str:
        lines = [
            f"Grid: {self.cols} columns (A:{self.rightmost_column}) x {self.rows} rows",
            f"Cells written: {self.cells_written}",
            f"Reclamation passes: {self.reclaims}",
            f"Elapsed: {self.elapsed:.1f}s",
        ]
        if self.pixel_count_mismatch:
            lines.append("Anomaly: decoded pixel count did not match width x height")
        if self.missing_pixels:
            lines.append(f"Anomaly: {self.missing_pixels} cells had no source pixel")
        if self.failed_cells:
            lines.append(f"Anomaly: {self.failed_cells} cell writes failed")
        if self.output_path:
            lines.append(f"Output: {self.output_path}")
        return "\n".join(lines)

    def __repr__(self):
        return (f"ConversionResult(rows={self.rows}, cols={self.cols}, "
                f"cells_written={self.cells_written}, failed_cells={self.failed_cells})")


# ---------------------------------------------------------------------------
# Row processing
# ---------------------------------------------------------------------------

def build_row(pixels, width: int, row: int, letters):
    """Return the ``(address, r, g, b)`` records for one 1-based ``row``.

    ``letters[j]`` is the column address of column ``j + 1``.  Pixels past
    the end of ``pixels`` are skipped rather than indexed.
    """
    start = (row - 1) * width
    row_pixels = np.asarray(pixels[start:start + width]).reshape(-1, 3).tolist()
    suffix = str(row)
    return [
        (letters[j] + suffix, r & 0xFF, g & 0xFF, b & 0xFF)
        for j, (r, g, b) in enumerate(row_pixels)
    ]


class RowProcessor:
    """Writes every pixel of an image to a sink exactly once."""

    def __init__(self, sink, tracker: ProgressTracker, reclaimer: ResourceReclaimer,
                 workers=None, queue_size: int = 64):
        self.sink = sink
        self.tracker = tracker
        self.reclaimer = reclaimer
        self.workers = max(1, workers or os.cpu_count() or 1)
        self.queue_size = max(1, queue_size)

        self.cells_written = 0
        self.failed_cells = 0
        self.missing_pixels = 0

        self._abort = threading.Event()
        self._error = None
        self._lock = threading.Lock()

    def run(self, image):
        """Process all rows of ``image``; raises ConversionAborted on a fatal error."""
        width, height = image.width, image.height
        letters = [column_letters(j) for j in range(1, width + 1)]

        if getattr(self.sink, "thread_safe", False):
            self._run_direct(image, letters)
        else:
            self._run_queued(image, letters)

        if self._error is not None:
            raise ConversionAborted(str(self._error)) from self._error
        logger.debug(f"Processed {height} rows of {width} cells")

    def _rows_for(self, worker: int, height: int):
        return range(worker + 1, height + 1, self.workers)

    def _fail(self, exc):
        with self._lock:
            if self._error is None:
                self._error = exc
        self._abort.set()

    # -- thread safe sink: producers write themselves -----------------------

    def _run_direct(self, image, letters):
        def work(worker):
            try:
                for row in self._rows_for(worker, image.height):
                    if self._abort.is_set():
                        return
                    self._write_row(row, build_row(image.pixels, image.width, row, letters),
                                    image.width)
            except Exception as exc:
                self._fail(exc)
            except BaseException:
                self._abort.set()
                raise

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            try:
                list(pool.map(work, range(self.workers)))
            finally:
                self._abort.set()

    # -- single consumer -----------------------------------------------------

    def _run_queued(self, image, letters):
        channel = queue.Queue(maxsize=self.queue_size)

        def put(item) -> bool:
            while not self._abort.is_set():
                try:
                    channel.put(item, timeout=_PUT_TIMEOUT)
                    return True
                except queue.Full:
                    continue
            return False

        def produce(worker):
            try:
                for row in self._rows_for(worker, image.height):
                    if not put((row, build_row(image.pixels, image.width, row, letters))):
                        return
            except BaseException as exc:
                self._fail(exc)
            finally:
                put(None)

        with ThreadPoolExecutor(max_workers=self.workers) as pool:
            for worker in range(self.workers):
                pool.submit(produce, worker)

            finished = 0
            try:
                while finished < self.workers and not self._abort.is_set():
                    try:
                        item = channel.get(timeout=_PUT_TIMEOUT)
                    except queue.Empty:
                        continue
                    if item is None:
                        finished += 1
                        continue
                    row, cells = item
                    try:
                        self._write_row(row, cells, image.width)
                    except Exception as exc:
                        self._fail(exc)
            finally:
                # Producers blocked on a full queue only stop once this is set.
                self._abort.set()

    def _write_row(self, row, cells, width):
        failed = 0
        for address, r, g, b in cells:
            try:
                self.sink.set_cell_color(address, r, g, b)
            except CellWriteError as exc:
                failed += 1
                logger.warning(f"Cell write failed: {exc}")

        with self._lock:
            self.cells_written += len(cells) - failed
            self.failed_cells += failed
            self.missing_pixels += width - len(cells)

        self.tracker.report(width)
        self.reclaimer.row_done(row, len(cells))


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

def default_output_path(image_path) -> str:
    root, _ = os.path.splitext(image_path)
    return root + ".xlsx"


def convert_image(image, config=None, sink=None, output_path=None,
                  progress_stream=None) -> ConversionResult:
    """Render ``image`` as colored cells and return the run's result.

    ``image`` must expose ``width``, ``height``, ``pixels`` and
    ``resize(new_height, new_width)``.  When ``sink`` is omitted a
    :class:`WorkbookSink` is built from ``config`` and saved to
    ``output_path`` (or ``config['output_path']``).
    """
    config = {**DEFAULT_CONFIG, **(config or {})}
    output_path = output_path or config["output_path"]
    if sink is None and not output_path:
        raise ValueError("An output path is required to save the workbook")
    start = time.monotonic()

    mismatch = not check_pixel_count(image)

    bounds = GridBounds(config["max_rows"], config["max_cols"])
    target = adjust_image_size(image, bounds)
    rightmost = column_letters(target.cols)
    logger.info(f"Target grid: {target.cols} columns (A:{rightmost}) x {target.rows} rows")

    if sink is None:
        sink = WorkbookSink(
            target.rows, target.cols,
            column_width=config["column_width"],
            zoom=config["zoom"],
            open_after_save=config["open_after_save"],
        )

    result = ConversionResult(target.rows, target.cols, rightmost)
    result.pixel_count_mismatch = mismatch

    tracker = ProgressTracker(image.width * image.height, stream=progress_stream)
    reclaimer = ResourceReclaimer(sink, config["reclaim_threshold"])
    processor = RowProcessor(sink, tracker, reclaimer,
                             workers=config["workers"], queue_size=config["queue_size"])

    print("Converting image...", file=progress_stream, flush=True)
    processor.run(image)
    tracker.finish()

    result.cells_written = processor.cells_written
    result.failed_cells = processor.failed_cells
    result.missing_pixels = processor.missing_pixels
    result.reclaims = reclaimer.reclaims

    logger.info("Adjusting layout...")
    sink.finalize_layout()
    result.output_path = sink.present(output_path)
    result.elapsed = time.monotonic() - start
    return result
