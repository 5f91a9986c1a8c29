# cardscan/detectors/ensemble.py
"""
Ensemble orchestrator: run every detector concurrently under one deadline,
group overlapping candidates, keep one representative per group.
"""
from __future__ import annotations
from concurrent.futures import Future, wait
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import threading
import time
import numpy as np

from cardscan.core.cancel import CancelToken, DetectionCancelled
from cardscan.core.config import merge_cfg
from cardscan.core.contracts import CARD_ASPECT, DetectedCard, DetectionResult
from cardscan.detectors.advanced import AdvancedDetector
from cardscan.detectors.histogram import HistogramDetector
from cardscan.detectors.hough import HoughDetector
from cardscan.detectors.template import TemplateDetector
from cardscan.geometry.rects import group_single_pass, group_union_find, iou
from cardscan.io.ingest import to_rgba

logger = logging.getLogger(__name__)


def ensemble_score(card: DetectedCard, group: Sequence[DetectedCard],
                   target: float = CARD_ASPECT, window: float = 0.3) -> float:
    """Score used to pick a group's representative; rewards agreement between methods."""
    score = 0.4 * card.confidence
    if len({c.method for c in group}) >= 2:
        score += 0.2
    score += 0.2 * max(0.0, 1.0 - abs(card.aspect_ratio - target) / window)
    if card.edge_strength is not None:
        score += 0.1 * card.edge_strength
    if card.color_variance is not None:
        score += 0.1 * min(card.color_variance, 1.0)
    return score


def select_representative(group: Sequence[DetectedCard], target: float = CARD_ASPECT,
                          window: float = 0.3) -> DetectedCard:
    best = None
    best_key: Tuple[float, float, int] = (-1.0, -1.0, 0)
    for i, card in enumerate(group):
        key = (ensemble_score(card, group, target, window), card.confidence, -i)
        if best is None or key > best_key:
            best, best_key = card, key
    return best  # type: ignore[return-value]


class EnsembleDetector:
    """
    Runs the histogram, template, hough and advanced detectors in parallel and
    votes their candidates into a deduplicated, confidence-sorted list.

    `detectors` may be any objects with a `method` tag and a
    `detect(rgba, token)` method; they must not mutate the image.
    """

    def __init__(self, cfg: Optional[Dict] = None, detectors: Optional[Sequence[Any]] = None) -> None:
        self.cfg = merge_cfg(cfg)
        if detectors is None:
            detectors = [
                HistogramDetector(self.cfg),
                TemplateDetector(self.cfg),
                HoughDetector(self.cfg),
                AdvancedDetector(self.cfg),
            ]
        self.detectors = list(detectors)
        self.target = float(self.cfg["card_aspect"])

    # ------------------------------------------------------------------ #
    # Public API                                                          #
    # ------------------------------------------------------------------ #

    def detect(self, image: np.ndarray) -> DetectionResult:
        c = self.cfg["ensemble"]
        start = time.perf_counter()
        rgba = to_rgba(image)
        H, W = rgba.shape[:2]

        per_method, timings, errors, pending = self._run_all(rgba, float(c["max_processing_ms"]) / 1000.0)

        candidates: List[DetectedCard] = []
        methods_used: List[str] = []
        order = list(dict.fromkeys(d.method for d in self.detectors))
        for method in order:
            if method in per_method:
                candidates.extend(per_method[method])
                methods_used.append(method)

        cards, n_groups = self.vote(candidates)
        elapsed = (time.perf_counter() - start) * 1000.0

        debug: Dict[str, Any] = {"image_size": (W, H)}
        for method in order:
            debug[method] = len(per_method.get(method, []))
        debug.update({
            "groups": n_groups,
            "final": len(cards),
            "timings_ms": timings,
            "errors": errors,
            "timed_out": bool(pending),
            "pending": pending,
        })
        logger.info(f"ensemble: {len(cards)} cards from {len(candidates)} candidates in {elapsed:.0f}ms")
        return DetectionResult(
            cards=cards,
            processing_time_ms=elapsed,
            methods_used=methods_used,
            total_candidates=len(candidates),
            debug_info=debug,
        )

    def detect_many(self, images: Iterable[np.ndarray]) -> List[DetectionResult]:
        """Detect image by image; malformed images are logged and skipped."""
        results = []
        for i, image in enumerate(images):
            try:
                rgba = to_rgba(image)
            except ValueError as e:
                logger.error(f"image {i}: skipped, {e}")
                continue
            results.append(self.detect(rgba))
        return results

    def vote(self, candidates: Sequence[DetectedCard]) -> Tuple[List[DetectedCard], int]:
        """Group overlapping candidates, pick one per group, dedupe and cap. Returns (cards, n_groups)."""
        c = self.cfg["ensemble"]
        thresh = float(c["group_iou"])
        boxes = [cand.bounds for cand in candidates]
        if c["grouping"] == "single_pass":
            groups = group_single_pass(boxes, thresh)
        else:
            groups = group_union_find(boxes, thresh)

        reps: List[DetectedCard] = []
        for idx in groups:
            members = [candidates[i] for i in idx]
            if len(members) == 1:
                if members[0].confidence > c["singleton_min_confidence"]:
                    reps.append(members[0])
            else:
                reps.append(select_representative(members, self.target, float(c["aspect_window"])))

        reps.sort(key=lambda card: card.confidence, reverse=True)
        final: List[DetectedCard] = []
        for card in reps:
            # no two survivors may overlap at or above the grouping threshold
            if any(iou(card.bounds, k.bounds) >= thresh for k in final):
                continue
            final.append(card)
        return final[: int(c["max_final_results"])], len(groups)

    # ------------------------------------------------------------------ #
    # Fan-out                                                             #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _timed(detector: Any, rgba: np.ndarray, token: CancelToken) -> Tuple[List[DetectedCard], float]:
        t0 = time.perf_counter()
        cards = list(detector.detect(rgba, token))
        return cards, (time.perf_counter() - t0) * 1000.0

    def _spawn(self, detector: Any, rgba: np.ndarray, token: CancelToken) -> Future:
        """
        Run one detector on a daemon thread. A detector that ignores the
        cancel token is left behind and cannot keep the interpreter alive.
        """
        fut: Future = Future()

        def run() -> None:
            if not fut.set_running_or_notify_cancel():
                return
            try:
                result = self._timed(detector, rgba, token)
            except BaseException as e:
                fut.set_exception(e)
            else:
                fut.set_result(result)

        threading.Thread(target=run, name=f"cardscan-{detector.method}", daemon=True).start()
        return fut

    def _run_all(self, rgba: np.ndarray, deadline_s: float):
        token = CancelToken()
        per_method: Dict[str, List[DetectedCard]] = {}
        timings: Dict[str, float] = {}
        errors: Dict[str, str] = {}
        pending: List[str] = []
        if not self.detectors:
            return per_method, timings, errors, pending

        futures = [(d.method, self._spawn(d, rgba, token)) for d in self.detectors]
        _, not_done = wait([f for _, f in futures], timeout=deadline_s)
        if not_done:
            # stragglers are abandoned; they stop at their next cancellation check
            token.cancel()

        for method, fut in futures:
            if fut in not_done:
                pending.append(method)
                continue
            try:
                cards, ms = fut.result()
            except DetectionCancelled:
                pending.append(method)
                continue
            except Exception as e:
                logger.warning(f"{method} detection failed: {e!r}")
                errors[method] = f"{type(e).__name__}: {e}"
                continue
            per_method.setdefault(method, []).extend(cards)
            timings[method] = round(timings.get(method, 0.0) + ms, 1)
            logger.info(f"{method}: {len(cards)} candidates in {ms:.0f}ms")

        if pending:
            logger.warning(f"deadline of {deadline_s * 1000:.0f}ms hit, ignoring {pending}")
        return per_method, timings, errors, pending
