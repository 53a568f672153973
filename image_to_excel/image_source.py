"""
Image decoding on top of Pillow.

The converter only needs ``width``, ``height``, a row-major ``pixels``
sequence of RGB triples and ``resize(new_height, new_width)``.
"""

import logging

import numpy as np
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)


class DecodeError(Exception):
    """The image file could not be opened or decoded."""


class ImageSource:
    """A decoded RGB image with a flat, row-major pixel array."""

    def __init__(self, image: Image.Image):
        self._load(image)

    @classmethod
    def open(cls, path: str) -> "ImageSource":
        """Decode the image at ``path``."""
        try:
            with Image.open(path) as img:
                img.load()
                return cls(img)
        except (OSError, UnidentifiedImageError, Image.DecompressionBombError) as exc:
            raise DecodeError(f"Could not decode image '{path}': {exc}") from exc

    def _load(self, image):
        rgb = image if image.mode == "RGB" else image.convert("RGB")
        self._image = rgb
        self.width, self.height = rgb.size
        # (height, width, 3) -> (height * width, 3)
        self.pixels = np.asarray(rgb, dtype=np.uint8).reshape(-1, 3)

    def resize(self, new_height: int, new_width: int):
        """Resample the image in place."""
        logger.info(f"Resizing image from {self.width}x{self.height} "
                    f"to {new_width}x{new_height}")
        self._load(self._image.resize((new_width, new_height), Image.Resampling.LANCZOS))

    def __repr__(self):
        return f"ImageSource(width={self.width}, height={self.height})"


def check_pixel_count(image) -> bool:
    """Warn when the decoded pixel count disagrees with width * height."""
    pixel_count = len(image.pixels)
    expected = image.width * image.height
    if pixel_count != expected:
        logger.warning(
            f"Image pixel count does not match the calculated pixel count (H*W) "
            f"- expected:{expected} actual:{pixel_count}")
        return False
    return True
