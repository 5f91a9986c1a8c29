# cardscan/detectors/template.py
from __future__ import annotations
from typing import Dict, List, Optional, Tuple
import logging
import numpy as np

from cardscan.core.cancel import CancelToken, check
from cardscan.core.config import merge_cfg
from cardscan.core.contracts import Bounds, DetectedCard, TEMPLATE, make_card_id
from cardscan.geometry.rects import aspect_ok, suppress_overlaps
from cardscan.io.ingest import to_rgba

logger = logging.getLogger(__name__)


def feature_maps(rgba: np.ndarray, c: Dict) -> Tuple[np.ndarray, np.ndarray]:
    """
    Per-pixel chroma spread |R-I|+|G-I|+|B-I| and the brightness-diversity
    bonus min(cap, |I-128|/128) * weight, both float32 (H, W).
    """
    f = rgba[..., :3].astype(np.float32)
    intensity = f.sum(axis=2) / 3.0
    spread = np.abs(f - intensity[..., None]).sum(axis=2)
    bonus = np.minimum(float(c["brightness_cap"]), np.abs(intensity - 128.0) / 128.0) * float(c["brightness_weight"])
    return spread, bonus.astype(np.float32)


def sample_weights(w: int, h: int, c: Dict) -> np.ndarray:
    """Weight of each sampled pixel's chroma spread: border band vs interior."""
    step = int(c["sample_step"])
    fx = np.arange(0, w, step, dtype=np.float32) / float(w)
    fy = np.arange(0, h, step, dtype=np.float32) / float(h)
    lo, hi = float(c["border_frac"]), 1.0 - float(c["border_frac"])
    near_x = (fx < lo) | (fx > hi)
    near_y = (fy < lo) | (fy > hi)
    border = near_y[:, None] | near_x[None, :]
    wb = float(c["border_weight"]) / float(c["border_norm"])
    wi = float(c["interior_weight"]) / float(c["interior_norm"])
    return np.where(border, wb, wi).astype(np.float32)


class TemplateDetector:
    """Slides a few fixed card-shaped windows and scores border/interior contrast."""

    method = TEMPLATE

    def __init__(self, cfg: Optional[Dict] = None) -> None:
        self.cfg = merge_cfg(cfg)
        self.target = float(self.cfg["card_aspect"])

    def detect(self, image: np.ndarray, token: Optional[CancelToken] = None) -> List[DetectedCard]:
        c = self.cfg["template"]
        rgba = to_rgba(image)
        H, W = rgba.shape[:2]
        spread, bonus = feature_maps(rgba, c)
        s = int(c["sample_step"])

        matches: List[Tuple[float, Bounds]] = []
        for tw, th in c["sizes"]:
            tw, th = int(tw), int(th)
            if tw > W or th > H or not aspect_ok(tw, th, c["aspect_tol"], self.target):
                continue
            weights = sample_weights(tw, th, c)
            n = weights.size
            stride = max(5, min(tw, th) // 4)
            for y in range(0, H - th + 1, stride):
                check(token)
                for x in range(0, W - tw + 1, stride):
                    win = spread[y:y + th:s, x:x + tw:s]
                    score = (float((win * weights).sum()) + float(bonus[y:y + th:s, x:x + tw:s].sum())) / n
                    score = min(1.0, score)
                    if score > c["min_match"]:
                        matches.append((score, Bounds(x, y, tw, th)))

        matches.sort(key=lambda m: m[0], reverse=True)
        kept = suppress_overlaps(matches, key=lambda m: m[1], thresh=float(c["suppress_iou"]),
                                 limit=int(c["max_results"]))
        logger.debug(f"template: raw={len(matches)} kept={len(kept)}")

        return [
            DetectedCard(
                id=make_card_id(self.method, i, b),
                bounds=b,
                confidence=score,
                method=self.method,
                match_score=score,
            )
            for i, (score, b) in enumerate(kept)
        ]
