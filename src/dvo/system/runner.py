# src/dvo/system/runner.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Iterator

import numpy as np

from .config import TrackerConfig
from .keyframes import KeyframeManager
from .policy import TrackingPolicy
from .proposal import Evidence, PoseEstimate
from .state import Frame, FrameStore
from .telemetry import Telemetry
from ..errors import ConfigError, TrackingDegenerate
from ..geom.camera import CameraIntrinsics, Rectifier
from ..geom.se3 import inv_T
from ..modules.candidates import CandidateSelector, propagate_inverse_depth
from ..modules.direct_align import DirectAligner
from ..modules.gradient import GradientExtractor
from ..modules.pyramid import PyramidBuilder

logger = logging.getLogger(__name__)


@dataclass
class TrackResult:
    frame_idx: int
    ts: float
    estimate: PoseEstimate | None  # raw aligner output, None for the first frame
    chosen: PoseEstimate           # what was committed to the trajectory
    T_w_c: np.ndarray
    is_keyframe: bool

    @property
    def ok(self) -> bool:
        return self.estimate is None or self.estimate.valid


class Tracker:
    """
    Per-frame orchestration of the tracking core.

    Responsibilities, for every image:
      1) build the frame (rectify, pyramid) and ingest it into the window
      2) gradients of the new frame, candidates of the reference (previous) frame
      3) direct alignment reference -> current
      4) fallback policy and pose commit
      5) keyframe promotion, window eviction, telemetry

    Conventions: T_a_b maps points from b to a; the aligner returns
    T_cur_ref and the trajectory stores T_w_c.
    """

    def __init__(
        self,
        cfg: TrackerConfig,
        camera: CameraIntrinsics,
        *,
        telemetry: Telemetry | None = None,
        rectifier: Rectifier | None = None,
    ):
        camera.check_multiple(16)
        self.cfg = cfg
        self.camera = camera
        self.cameras = camera.pyramid(cfg.pyramid.levels)
        self.rectifier = rectifier

        self.pyramid_builder = PyramidBuilder(cfg.pyramid.levels)
        self.gradients = GradientExtractor(cfg.gradient_workers)
        self.selector = CandidateSelector(cfg.candidates)
        self.aligner = DirectAligner(cfg.align, self.cameras)
        self.keyframes = KeyframeManager(cfg.keyframe)
        self.store = FrameStore(cfg.window.capacity)
        self.policy = TrackingPolicy(cfg)
        self.telemetry = telemetry if telemetry is not None else Telemetry()

        self.prev: Frame | None = None
        self.last_T_cur_prev: np.ndarray | None = None  # motion prior
        self.trajectory: list[np.ndarray] = []
        self.timestamps: list[float] = []
        self._next_idx = 0

    def make_frame(self, img: np.ndarray, ts: float = 0.0) -> Frame:
        if img is None or img.ndim != 2:
            raise ConfigError("Tracker expects grayscale images (H,W).")
        if self.rectifier is not None:
            img = self.rectifier.apply(img)
        if img.shape != self.camera.shape:
            raise ConfigError(
                f"Image is {img.shape[1]}x{img.shape[0]}, camera output is {self.camera.width}x{self.camera.height}"
            )
        frame = Frame(idx=self._next_idx, ts=float(ts))
        self.pyramid_builder.apply(frame, img)
        self._next_idx += 1
        return frame

    def track(self, img: np.ndarray, ts: float = 0.0) -> TrackResult:
        frame = self.make_frame(img, ts)
        self.store.ingest(frame)
        self.gradients.apply(frame)

        estimate: PoseEstimate | None = None
        if self.prev is None:
            chosen = PoseEstimate("init", np.eye(4), Evidence(), valid=True, cost=0.0, reason="INIT")
        else:
            ref = self.prev
            estimate = self._estimate(ref, frame)
            chosen = self.policy.choose(estimate, self.last_T_cur_prev)

            frame.T_cur_ref = chosen.T_cur_ref.copy()
            # T_w_cur = T_w_ref @ T_ref_cur
            frame.T_w_c = ref.T_w_c @ inv_T(chosen.T_cur_ref)
            if chosen is estimate:
                self.last_T_cur_prev = chosen.T_cur_ref.copy()
                if self.cfg.propagate_depth:
                    frame.inv_depth_hint = propagate_inverse_depth(ref, chosen.T_cur_ref, self.cameras)
            self.keyframes.accumulate(chosen.T_cur_ref)

        reason = self.keyframes.promotion_reason(estimate)
        if reason is None and estimate is not None and not estimate.valid and self.cfg.reset_keyframe_on_failure:
            reason = f"RESET:{estimate.error.code if estimate.error else 'INVALID'}"
        if reason is not None:
            self.keyframes.promote(frame, self.store, reason)

        evicted = self.store.evict()
        self.prev = frame
        self.trajectory.append(frame.T_w_c.copy())
        self.timestamps.append(frame.ts)

        self.telemetry.log_frame(frame.idx, {
            "ts": float(frame.ts),
            "estimate": None if estimate is None else estimate.to_record(),
            "chosen": {"name": chosen.name, "reason": chosen.reason},
            "keyframe": {"promoted": reason is not None, "reason": reason},
            "window": self.store.ids(),
            "evicted": [f.idx for f in evicted],
        })
        return TrackResult(
            frame_idx=frame.idx,
            ts=frame.ts,
            estimate=estimate,
            chosen=chosen,
            T_w_c=frame.T_w_c.copy(),
            is_keyframe=frame.is_keyframe,
        )

    def run(self, images: Iterable[tuple[float, np.ndarray]]) -> Iterator[TrackResult]:
        for ts, img in images:
            yield self.track(img, ts)

    def _estimate(self, ref: Frame, cur: Frame) -> PoseEstimate:
        self.gradients.apply(ref)
        self.selector.apply(ref)
        try:
            self.selector.require_viable(ref)
        except TrackingDegenerate as ex:
            logger.warning("reference frame %d: %s", ref.idx, ex)
            ev = Evidence(num_candidates=len(ref.candidates[0]))
            return PoseEstimate(
                "direct", np.eye(4), ev, valid=False,
                reason=f"REJECT_DIRECT_DEGENERATE:candidates,level={ex.level}", error=ex,
            )
        return self.aligner.align(ref, cur, self.policy.init_motion(self.last_T_cur_prev))
