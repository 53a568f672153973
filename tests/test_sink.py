"""Tests for the openpyxl workbook sink."""

import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

from openpyxl import load_workbook
from openpyxl.drawing.image import Image as SheetImage
from openpyxl.drawing.spreadsheet_drawing import AnchorMarker, OneCellAnchor, TwoCellAnchor
from openpyxl.utils.units import pixels_to_EMU
from PIL import Image

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from image_to_excel.sink import (
    CellWriteError,
    SaveError,
    SinkUnavailable,
    WorkbookSink,
    open_in_viewer,
    rgb_to_hex,
)
from image_to_excel.sizing import EXCEL_MAX_ROWS


class TestRgbToHex(unittest.TestCase):
    def test_encoding(self):
        self.assertEqual(rgb_to_hex(255, 128, 0), "FF8000")

    def test_truncation(self):
        self.assertEqual(rgb_to_hex(256, -1, 15), "00FF0F")


class TestWorkbookSink(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def test_not_thread_safe(self):
        self.assertFalse(WorkbookSink.thread_safe)

    def test_oversized_grid_is_unavailable(self):
        with self.assertRaises(SinkUnavailable):
            WorkbookSink(EXCEL_MAX_ROWS + 1, 10)

    def test_workbook_failure_is_unavailable(self):
        with mock.patch("image_to_excel.sink.Workbook", side_effect=RuntimeError("boom")):
            with self.assertRaises(SinkUnavailable) as ctx:
                WorkbookSink(2, 2)
        self.assertIn("openpyxl", str(ctx.exception))

    def test_fills_share_style_per_color(self):
        sink = WorkbookSink(2, 2)
        sink.set_cell_color("A1", 10, 20, 30)
        sink.set_cell_color("B2", 10, 20, 30)
        self.assertIs(sink.ws["A1"].fill, sink.ws["B2"].fill)
        self.assertEqual(len(sink._fill_cache), 1)

    def test_invalid_address_raises_cell_write_error(self):
        sink = WorkbookSink(2, 2)
        with self.assertRaises(CellWriteError):
            sink.set_cell_color("!!", 0, 0, 0)

    def test_compact_range_keeps_fills(self):
        sink = WorkbookSink(3, 1)
        sink.set_cell_color("A1", 1, 2, 3)
        sink.compact_range(1, 1)
        self.assertEqual(sink._fill_cache, {})
        self.assertEqual(sink.compacted_through, 1)
        self.assertTrue(sink.ws["A1"].fill.fgColor.rgb.endswith("010203"))
        sink.compact_range(3, 2)
        self.assertEqual(sink.compacted_through, 1)

    def test_layout_and_present(self):
        sink = WorkbookSink(2, 2, column_width=3, zoom=25)
        sink.set_cell_color("B2", 0, 0, 255)
        sink.finalize_layout()
        out = os.path.join(self.tmpdir, "nested", "grid.xlsx")
        self.assertEqual(sink.present(out), out)

        ws = load_workbook(out).active
        self.assertEqual(ws.title, "Image")
        self.assertEqual(ws.sheet_view.zoomScale, 25)
        self.assertEqual(float(ws.sheet_format.defaultColWidth), 3.0)
        self.assertTrue(ws["B2"].fill.fgColor.rgb.endswith("0000FF"))

    def test_present_opens_viewer_when_asked(self):
        sink = WorkbookSink(1, 1, open_after_save=True)
        out = os.path.join(self.tmpdir, "grid.xlsx")
        with mock.patch("image_to_excel.sink.open_in_viewer") as viewer:
            sink.present(out)
        viewer.assert_called_once_with(out)

    def test_save_failure_raises_save_error(self):
        sink = WorkbookSink(1, 1)
        target = os.path.join(self.tmpdir, "taken.xlsx")
        os.mkdir(target)
        with self.assertRaises(SaveError) as ctx:
            sink.present(target)
        self.assertIn("taken.xlsx", str(ctx.exception))

    def _picture(self, name, size):
        path = os.path.join(self.tmpdir, name)
        Image.new("RGB", size, color=(200, 10, 10)).save(path)
        return SheetImage(path)

    def test_two_cell_pictures_become_one_cell(self):
        sink = WorkbookSink(10, 10)
        stretched = self._picture("stretched.png", (40, 20))
        sink.ws.add_image(stretched, "B2")
        stretched.anchor = TwoCellAnchor(_from=AnchorMarker(col=1, row=1),
                                         to=AnchorMarker(col=6, row=3))
        pinned = self._picture("pinned.png", (8, 8))
        sink.ws.add_image(pinned, "E5")

        self.assertEqual(sink.lock_shape_aspect_ratios(), 2)

        self.assertIsInstance(stretched.anchor, OneCellAnchor)
        self.assertEqual((stretched.anchor._from.col, stretched.anchor._from.row), (1, 1))
        self.assertEqual(stretched.anchor.ext.cx, pixels_to_EMU(40))
        self.assertEqual(stretched.anchor.ext.cy, pixels_to_EMU(20))
        self.assertEqual(pinned.anchor, "E5")

        out = os.path.join(self.tmpdir, "pictures.xlsx")
        sink.finalize_layout()
        sink.present(out)
        self.assertEqual(len(load_workbook(out).active._images), 2)


class TestOpenInViewer(unittest.TestCase):
    @mock.patch("image_to_excel.sink.sys.platform", "linux")
    def test_missing_viewer_is_not_fatal(self):
        with mock.patch("image_to_excel.sink.subprocess.Popen", side_effect=FileNotFoundError("xdg-open")):
            self.assertFalse(open_in_viewer("grid.xlsx"))
