from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Dict

import yaml

from bill_tracker.recurring import DEFAULT_MAX_ITERATIONS

DEFAULT_CONFIG: Dict[str, object] = {
    "db_path": "billcycle.db",
    "output_dir": "./data",
    "max_iterations": DEFAULT_MAX_ITERATIONS,
    "log_level": "INFO",
    "output_modules": {
        "csv": "bill_tracker.outputs.csv_output.CSVOutput",
    },
}

ENV_OVERRIDES = {
    "BILLCYCLE_DB": "db_path",
    "BILLCYCLE_LOG_LEVEL": "log_level",
}


def _merge_defaults(current: Dict[str, object], defaults: Dict[str, object]) -> Dict[str, object]:
    """Merge missing default keys into the current config recursively."""
    merged = dict(current)
    for key, value in defaults.items():
        if key not in merged:
            merged[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(merged[key], dict):
            merged[key] = _merge_defaults(merged[key], value)
    return merged


def load_config(path=None) -> Dict[str, object]:
    """Load a YAML config file merged over the defaults.

    A missing file yields the defaults. ``BILLCYCLE_DB`` and
    ``BILLCYCLE_LOG_LEVEL`` override the file.
    """
    data: Dict[str, object] = {}
    if path is not None and Path(path).exists():
        with Path(path).open("r", encoding="utf-8") as fp:
            data = yaml.safe_load(fp) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")
    config = _merge_defaults(data, DEFAULT_CONFIG)

    for env_name, key in ENV_OVERRIDES.items():
        value = os.environ.get(env_name)
        if value:
            config[key] = value

    level = str(config["log_level"]).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"Unknown log_level '{config['log_level']}'")
    config["log_level"] = level

    max_iterations = int(config["max_iterations"])
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")
    config["max_iterations"] = max_iterations
    return config
