#!/usr/bin/env python3
from __future__ import annotations
import argparse, json, logging, os
from datetime import datetime
from typing import Optional

import cv2
import numpy as np

from cardscan.core.config import load_cfg, merge_cfg
from cardscan.core.contracts import DetectionResult
from cardscan.detectors.ensemble import EnsembleDetector
from cardscan.geometry.rects import suggest_crop_bounds
from cardscan.io.ingest import load_image

logger = logging.getLogger("cardscan.tools.detect_cards")

# BGR per method
COLORS = {
    "histogram": (255, 160, 0),
    "template": (0, 200, 255),
    "hough": (0, 255, 0),
    "advanced": (255, 0, 255),
}


def setup_logging(log_file: str, debug: bool = False) -> None:
    level = logging.DEBUG if debug else logging.INFO
    formatter = logging.Formatter("%(asctime)s - %(levelname)s - %(name)s - %(message)s")
    root = logging.getLogger()
    root.setLevel(level)

    ch = logging.StreamHandler()
    ch.setFormatter(formatter)
    root.addHandler(ch)

    fh = logging.FileHandler(log_file)
    fh.setFormatter(formatter)
    root.addHandler(fh)


def draw_result(rgba: np.ndarray, result: DetectionResult) -> np.ndarray:
    vis = cv2.cvtColor(rgba, cv2.COLOR_RGBA2BGR)
    for card in result.cards:
        b = card.bounds
        color = COLORS.get(card.method, (0, 0, 255))
        cv2.rectangle(vis, (b.x, b.y), (b.x2, b.y2), color, 2, lineType=cv2.LINE_AA)
        cv2.putText(vis, f"{card.method} {card.confidence:.2f}", (b.x + 4, max(14, b.y - 6)),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.5, color, 1, cv2.LINE_AA)
    if not result.cards:
        h, w = rgba.shape[:2]
        crop = suggest_crop_bounds(w, h)
        cv2.rectangle(vis, (crop.x, crop.y), (crop.x2, crop.y2), (0, 0, 255), 1, lineType=cv2.LINE_AA)
        cv2.putText(vis, "NO CARDS FOUND", (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 0, 255), 2, cv2.LINE_AA)
    return vis


def run_one(detector: EnsembleDetector, path: str, out_dir: str) -> Optional[DetectionResult]:
    try:
        rgba = load_image(path)
    except FileNotFoundError as e:
        logger.error(str(e))
        return None

    result = detector.detect(rgba)
    base = os.path.splitext(os.path.basename(path))[0]
    out_viz = os.path.join(out_dir, f"{base}_cards.png")
    out_json = os.path.join(out_dir, f"{base}_cards.json")
    cv2.imwrite(out_viz, draw_result(rgba, result))
    with open(out_json, "w") as f:
        json.dump(result.to_dict(), f, indent=2)
    logger.info(f"{path}: {len(result.cards)} cards, methods={result.methods_used} -> {out_viz}")
    return result


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(description="Find card-shaped regions in images and save overlays + JSON.")
    ap.add_argument("images", nargs="+", help="Input image paths.")
    ap.add_argument("--config", default=None, help="YAML config (defaults to built-in settings).")
    ap.add_argument("--out_dir", default="tests/output", help="Directory for outputs.")
    ap.add_argument("--timeout_ms", type=float, default=None, help="Override the global detection deadline.")
    ap.add_argument("--grouping", choices=["union_find", "single_pass"], default=None)
    ap.add_argument("--log-file", dest="log_file", default=None,
                    help="Log file. Default: <out_dir>/detect_<timestamp>.log")
    ap.add_argument("--debug", action="store_true", help="Enable debug logging in detectors.")
    args = ap.parse_args(argv)

    os.makedirs(args.out_dir, exist_ok=True)
    cfg = load_cfg(args.config) if args.config else merge_cfg(None)
    overrides = {"ensemble": {}}
    if args.timeout_ms is not None:
        overrides["ensemble"]["max_processing_ms"] = args.timeout_ms
    if args.grouping:
        overrides["ensemble"]["grouping"] = args.grouping
    cfg = merge_cfg(overrides, cfg)

    log_file = args.log_file or os.path.join(
        args.out_dir, f"detect_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log")
    setup_logging(log_file, debug=args.debug or bool(cfg.get("debug")))
    logger.info(f"Writing log to: {log_file}")

    detector = EnsembleDetector(cfg)
    failures = sum(1 for p in args.images if run_one(detector, p, args.out_dir) is None)
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
