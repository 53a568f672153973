"""Configuration loading for the image-to-excel converter."""

import os

import yaml

DEFAULT_CONFIG = {
    "max_rows": 1048576,
    "max_cols": 16384,
    "reclaim_threshold": 200000,
    "workers": None,
    "queue_size": 64,
    "column_width": 2,
    "zoom": 10,
    "output_path": None,
    "open_after_save": True,
    "log_level": "INFO",
}


def load_config(config_path):
    """Load configuration from a YAML file, falling back to defaults."""
    config = dict(DEFAULT_CONFIG)
    if config_path and os.path.exists(config_path):
        with open(config_path, "r") as f:
            user_config = yaml.safe_load(f) or {}
        if not isinstance(user_config, dict):
            raise ValueError(f"Config file '{config_path}' must contain a mapping")
        config.update(user_config)
    return config
