# cardscan/core/config.py
from __future__ import annotations
from pathlib import Path
from typing import Dict, Optional, Union
import copy
import yaml

from cardscan.core.contracts import CARD_ASPECT

# Defaults tuned on synthetic sheets (800x1120) and phone photos of card binders
DEFAULT_CFG: Dict = {
    "card_aspect": CARD_ASPECT,
    "debug": False,

    "histogram": {
        "aspect_tol": 0.25,
        "min_card_area": 4000,
        "min_color_variance": 0.15,
        "min_texture": 0.20,
        "max_confidence": 0.85,
        "sample_step": 4,
        "min_grid_step": 20,
        "grid_divisor": 40,          # grid step = max(min_grid_step, min(W, H) / grid_divisor)
        "sizes": [[100, 140], [150, 210], [200, 280], [250, 350]],
        "max_results": 50,
    },

    "template": {
        "aspect_tol": 0.12,
        "min_match": 0.6,
        "sample_step": 4,
        "border_frac": 0.10,
        "border_norm": 100.0,
        "border_weight": 0.3,
        "interior_norm": 80.0,
        "interior_weight": 0.7,
        "brightness_cap": 0.2,
        "brightness_weight": 0.2,
        "sizes": [[100, 140], [150, 210], [200, 280], [250, 350]],
        "suppress_iou": 0.3,
        "max_results": 8,
    },

    "hough": {
        "aspect_tol": 0.15,
        "edge_threshold": 50.0,
        "min_line_length": 60,
        "min_line_strength": 30.0,
        "merge_px": 3,               # collapse parallel runs closer than this
        "max_lines": 48,             # per orientation, strongest first
        "min_h_separation": 60,
        "min_v_separation": 40,
        "overlap_tol": 10,
        "min_card_area": 5000,
        "max_confidence": 0.9,
        "suppress_iou": 0.3,
        "max_results": 6,
    },

    "advanced": {
        "aspect_tol": 0.15,
        "edge_threshold": 50.0,
        "min_edge_score": 0.5,
        "min_area": 8000,
        "max_area": 200000,
        "sizes": [[100, 140], [150, 210], [200, 280]],
        "min_grid_step": 24,
        "max_positions": 60,         # per axis; bounds total iterations on big images
        "confidence": 0.7,
        "max_results": 10,
    },

    "native": {
        "enabled": False,
    },

    "ensemble": {
        "max_processing_ms": 15000,
        "max_final_results": 50,
        "group_iou": 0.3,
        "singleton_min_confidence": 0.3,
        "grouping": "union_find",    # or "single_pass"
        "aspect_window": 0.3,
    },
}


def merge_cfg(cfg: Optional[Dict], base: Optional[Dict] = None) -> Dict:
    """Deep-merge `cfg` over `base` (DEFAULT_CFG when omitted). Inputs are not mutated."""
    merged = copy.deepcopy(DEFAULT_CFG if base is None else base)
    if not cfg:
        return merged
    for k, v in cfg.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = merge_cfg(v, merged[k])
        else:
            merged[k] = copy.deepcopy(v)
    return merged


def load_cfg(path: Union[str, Path]) -> Dict:
    with open(path, "r") as f:
        data = yaml.safe_load(f)
    if data is None:
        return merge_cfg(None)
    if not isinstance(data, dict):
        raise ValueError(f"Config at {path} must be a mapping, got {type(data).__name__}")
    return merge_cfg(data)
