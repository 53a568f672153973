"""
Grid sizing helpers: clamping image dimensions to the spreadsheet grid and
spreadsheet-style column addressing.
"""

# Excel 2007+ worksheet limits
EXCEL_MAX_ROWS = 1048576
EXCEL_MAX_COLUMNS = 16384

_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"


class GridBounds:
    """Maximum rows / columns of the target grid."""

    __slots__ = ("max_rows", "max_cols")

    def __init__(self, max_rows: int = EXCEL_MAX_ROWS, max_cols: int = EXCEL_MAX_COLUMNS):
        if max_rows < 1 or max_cols < 1:
            raise ValueError(f"Grid bounds must be positive, got {max_rows}x{max_cols}")
        object.__setattr__(self, "max_rows", max_rows)
        object.__setattr__(self, "max_cols", max_cols)

    def __setattr__(self, name, value):
        raise AttributeError("GridBounds is immutable")

    def __repr__(self):
        return f"GridBounds(max_rows={self.max_rows}, max_cols={self.max_cols})"


class TargetSize:
    """Rows / columns the image occupies once it fits the grid."""

    def __init__(self, rows: int, cols: int, resized: bool = False):
        self.rows = rows
        self.cols = cols
        self.resized = resized

    def __eq__(self, other):
        if not isinstance(other, TargetSize):
            return NotImplemented
        return (self.rows, self.cols) == (other.rows, other.cols)

    def __repr__(self):
        return f"TargetSize(rows={self.rows}, cols={self.cols}, resized={self.resized})"


def compute_target_size(width: int, height: int, bounds: GridBounds) -> TargetSize:
    """Clamp ``width`` x ``height`` to ``bounds`` keeping the aspect ratio.

    Rows are clamped first.  The column clamp then works from the
    already-reduced dimensions, so the two steps are not independent.
    Integer division truncates; a dimension never drops below one cell.
    """
    new_height = height
    new_width = width
    resized = False

    if new_height > bounds.max_rows:
        new_height = bounds.max_rows
        new_width = max(1, new_height * width // height)
        resized = True

    if new_width > bounds.max_cols:
        new_height = max(1, bounds.max_cols * new_height // new_width)
        new_width = bounds.max_cols
        resized = True

    return TargetSize(new_height, new_width, resized)


def adjust_image_size(image, bounds: GridBounds) -> TargetSize:
    """Compute the target size for ``image`` and resample it when needed.

    After this returns, ``image.width`` / ``image.height`` match the
    returned size.
    """
    target = compute_target_size(image.width, image.height, bounds)
    if target.resized:
        image.resize(target.rows, target.cols)
    return target


def column_letters(index: int) -> str:
    """Convert a 1-based column index to its letter address.

    Bijective base-26: 1=A, 26=Z, 27=AA, 52=AZ, 53=BA, 702=ZZ, 703=AAA.
    """
    if index < 1:
        raise ValueError(f"Column index must be >= 1, got {index}")
    letters = ""
    while index > 0:
        index, remainder = divmod(index, 26)
        if remainder == 0:
            remainder = 26
            index -= 1
        letters = _ALPHABET[remainder - 1] + letters
    return letters


def cell_address(column: int, row: int) -> str:
    """Return the A1-style address for a 1-based column / row pair."""
    return f"{column_letters(column)}{row}"
