"""
Configuration management for SphereCount
"""

import copy
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

DEFAULT_CONFIG = {
    "preprocessing": {
        "blur_kernel": 7,
        "block_size": 11,
        "offset": 2
    },
    "detection": {
        "min_dist": 10,
        "param1": 100,
        "param2": 20,
        "min_radius": 3,
        "max_radius": 50,
        "center_vote_ratio": 0.5,
        "radius_vote_ratio": 1.0,
        "radius_margin": 2,
        "gradient_kernel": 5,
        "batch_size": 4096,
        "max_accumulator_pixels": 40_000_000
    },
    "rendering": {
        "circle_color": [0, 255, 0, 255],
        "center_color": [255, 0, 0, 255],
        "label_color": [255, 255, 255, 255],
        "label_origin": [10, 30],
        "font_scale": 1.0,
        "thickness": 2,
        "center_radius": 2
    },
    "pipeline": {
        "max_workers": 2
    },
    "logging": {
        "level": "INFO",
        "log_file": None
    }
}


def merge_config(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge `override` into a copy of `base`.

    Args:
        base: Configuration to start from (not modified)
        override: Partial configuration whose values take precedence

    Returns:
        New merged configuration dictionary
    """
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_config(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load a YAML configuration file on top of DEFAULT_CONFIG.

    Args:
        path: YAML file path; defaults are returned when omitted

    Returns:
        Complete configuration dictionary
    """
    if path is None:
        return copy.deepcopy(DEFAULT_CONFIG)

    with open(path, 'r') as f:
        overrides = yaml.safe_load(f) or {}

    if not isinstance(overrides, dict):
        raise ValueError(f"Configuration file {path} must contain a mapping")

    unknown = set(overrides) - set(DEFAULT_CONFIG)
    if unknown:
        raise ValueError(f"Unknown configuration sections: {', '.join(sorted(unknown))}")

    return merge_config(DEFAULT_CONFIG, overrides)


def get_section(config: Optional[Dict[str, Any]], section: str) -> Dict[str, Any]:
    """Return one section of `config`, filled in from the defaults."""
    return merge_config(DEFAULT_CONFIG[section], (config or {}).get(section))
