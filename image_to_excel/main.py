#!/usr/bin/env python
"""
Image-to-Excel – CLI entry point.

Usage:
    python -m image_to_excel.main <image_file>

Settings (grid limits, worker count, reclaim threshold, output path...)
are read from ``config.yaml`` in the current directory when it exists.
"""

import argparse
import logging
import os
import sys

import yaml

from image_to_excel.config import load_config
from image_to_excel.converter import ConversionAborted, convert_image, default_output_path
from image_to_excel.image_source import DecodeError, ImageSource
from image_to_excel.sink import SaveError, SinkUnavailable

USAGE = "Usage: image-to-excel <image_file>"
CONFIG_FILE = "config.yaml"


def setup_logging(level_str: str = "INFO"):
    """Configure logging."""
    level = getattr(logging, str(level_str).upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
        datefmt='%H:%M:%S'
    )


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Render an image as colored cells in an Excel workbook",
        usage=USAGE,
    )
    parser.add_argument("image_file", nargs="?", help="Path to the image to convert")
    args = parser.parse_args(argv)

    if not args.image_file:
        print(USAGE)
        sys.exit(1)

    try:
        config = load_config(CONFIG_FILE)
    except (ValueError, yaml.YAMLError) as exc:
        print(f"Error: Invalid {CONFIG_FILE}: {exc}")
        sys.exit(1)

    setup_logging(config.get("log_level", "INFO"))
    logger = logging.getLogger(__name__)

    if not os.path.exists(args.image_file):
        print(f"Error: File '{args.image_file}' not found.")
        sys.exit(1)

    try:
        logger.info(f"Loading image: {args.image_file}")
        image = ImageSource.open(args.image_file)
        output_path = config.get("output_path") or default_output_path(args.image_file)
        result = convert_image(image, config, output_path=output_path)
    except (DecodeError, SinkUnavailable, ConversionAborted, SaveError, ValueError) as exc:
        print(f"Error: {exc}")
        sys.exit(1)

    for line in result.summary().splitlines():
        logger.info(line)
    if not result.ok:
        logger.warning("Conversion finished with anomalies")


if __name__ == "__main__":
    main()
