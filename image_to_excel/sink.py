"""
openpyxl-backed cell sink.

The workbook lives in memory until :meth:`WorkbookSink.present` saves it.
openpyxl worksheets are not safe to mutate from several threads, so the
sink advertises ``thread_safe = False`` and the converter funnels every
write through a single consumer thread.
"""

import logging
import os
import subprocess
import sys

from openpyxl import Workbook
from openpyxl.drawing.spreadsheet_drawing import OneCellAnchor, TwoCellAnchor
from openpyxl.drawing.xdr import XDRPositiveSize2D
from openpyxl.styles import PatternFill
from openpyxl.utils.units import pixels_to_EMU

from .sizing import EXCEL_MAX_ROWS, EXCEL_MAX_COLUMNS

logger = logging.getLogger(__name__)

# Excel default row height in points for a column width of 2 characters
# is roughly 15; 2 chars at the default font render ~ 14.4pt wide.
POINTS_PER_CHARACTER = 7.2


class SinkUnavailable(Exception):
    """The spreadsheet host could not be initialised."""


class CellWriteError(Exception):
    """A single cell write was rejected."""


class SaveError(Exception):
    """The finished workbook could not be written to disk."""


def rgb_to_hex(r, g, b) -> str:
    """Encode RGB channels as openpyxl's ``RRGGBB`` color string."""
    return f"{int(r) & 0xFF:02X}{int(g) & 0xFF:02X}{int(b) & 0xFF:02X}"


class WorkbookSink:
    """Writes cell fill colors into a fresh single-sheet workbook."""

    thread_safe = False

    def __init__(self, rows: int, cols: int, sheet_title: str = "Image",
                 column_width: float = 2, zoom: int = 10, open_after_save: bool = False):
        if rows > EXCEL_MAX_ROWS or cols > EXCEL_MAX_COLUMNS:
            raise SinkUnavailable(
                f"A {cols}x{rows} grid exceeds the worksheet limits "
                f"({EXCEL_MAX_COLUMNS}x{EXCEL_MAX_ROWS}).")
        try:
            self.wb = Workbook()
            self.ws = self.wb.active
            self.ws.title = sheet_title
        except Exception as exc:
            raise SinkUnavailable(
                f"Workbook could not be created ({exc}). "
                f"Check that openpyxl is installed and up to date.") from exc

        self.rows = rows
        self.cols = cols
        self.column_width = column_width
        self.zoom = zoom
        self.open_after_save = open_after_save
        self.compacted_through = 0
        self._fill_cache = {}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_cell_color(self, address: str, r, g, b):
        color = rgb_to_hex(r, g, b)
        fill = self._fill_cache.get(color)
        if fill is None:
            fill = PatternFill(start_color=color, end_color=color, fill_type="solid")
            self._fill_cache[color] = fill
        try:
            self.ws[address].fill = fill
        except (ValueError, TypeError, KeyError, AttributeError) as exc:
            raise CellWriteError(f"Could not color cell {address}: {exc}") from exc

    def compact_range(self, first_row: int, last_row: int):
        """Release per-write formatting state for rows already written.

        Fills applied to cells are kept; only the shared fill cache is
        dropped so unused style objects can be collected.  openpyxl
        deduplicates fills itself in the workbook's style table, so this
        frees little; the reclaimer's ``gc.collect()`` pass does the real
        work for this sink.
        """
        if last_row < first_row:
            return
        self._fill_cache.clear()
        self.compacted_through = max(self.compacted_through, last_row)

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    def finalize_layout(self):
        """Make every cell square and lock embedded image aspect ratios."""
        fmt = self.ws.sheet_format
        fmt.defaultColWidth = self.column_width
        fmt.baseColWidth = int(self.column_width)
        fmt.defaultRowHeight = self.column_width * POINTS_PER_CHARACTER
        fmt.customHeight = True
        self.lock_shape_aspect_ratios()

    def lock_shape_aspect_ratios(self) -> int:
        """Pin every picture to its top-left cell at its native size.

        A two-cell anchor stretches with the rows and columns it spans, so
        it is replaced by a one-cell anchor; pictures anchored by cell name
        are written one-cell already.  Returns the number of images seen.
        """
        count = 0
        for img in self.ws._images:
            anchor = img.anchor
            if isinstance(anchor, TwoCellAnchor):
                size = XDRPositiveSize2D(pixels_to_EMU(img.width), pixels_to_EMU(img.height))
                img.anchor = OneCellAnchor(_from=anchor._from, ext=size)
            count += 1
        return count

    def present(self, output_path: str) -> str:
        """Zoom the view out, save the workbook and optionally open it."""
        view = self.ws.sheet_view
        view.zoomScale = self.zoom
        view.zoomScaleNormal = self.zoom

        out_dir = os.path.dirname(os.path.abspath(output_path))
        try:
            os.makedirs(out_dir, exist_ok=True)
            self.wb.save(output_path)
        except OSError as exc:
            raise SaveError(
                f"Could not save workbook '{output_path}' ({exc}). "
                f"Close it if it is open in another program.") from exc
        logger.info(f"Saved workbook: {output_path}")

        if self.open_after_save:
            open_in_viewer(output_path)
        return output_path


def open_in_viewer(path: str) -> bool:
    """Open ``path`` with the desktop's default application."""
    try:
        if sys.platform.startswith("win"):
            os.startfile(path)  # noqa: this only exists on Windows
        elif sys.platform == "darwin":
            subprocess.Popen(["open", path])
        else:
            subprocess.Popen(["xdg-open", path])
    except OSError as exc:
        logger.warning(f"Could not open '{path}' in a viewer: {exc}")
        return False
    return True
