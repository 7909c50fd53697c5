from __future__ import annotations

import enum
import logging

import numpy as np

from ..errors import ContractViolation
from ..geom.se3 import rotation_angle, translation_norm
from .config import KeyframeConfig
from .proposal import PoseEstimate
from .state import Frame, FrameStore

logger = logging.getLogger(__name__)


class KeyframeState(enum.Enum):
    NO_KEYFRAME = "no_keyframe"
    HAS_KEYFRAME = "has_keyframe"


class KeyframeManager:
    """
    Holds the active keyframe and the append-only keyframe list.

    Keyframes stay referenced here after the window evicts them, so their
    pyramid and candidates remain valid.
    """

    def __init__(self, cfg: KeyframeConfig):
        self.cfg = cfg
        self.state = KeyframeState.NO_KEYFRAME
        self.active: Frame | None = None
        self.keyframes: list[Frame] = []
        self.T_cur_kf = np.eye(4)  # motion accumulated since the active keyframe

    def __len__(self) -> int:
        return len(self.keyframes)

    def accumulate(self, T_cur_prev: np.ndarray) -> None:
        self.T_cur_kf = T_cur_prev @ self.T_cur_kf

    def promotion_reason(self, estimate: PoseEstimate | None) -> str | None:
        if self.state is KeyframeState.NO_KEYFRAME:
            return "FIRST_FRAME"
        if estimate is not None and estimate.name == "direct" and estimate.valid:
            if estimate.evidence.valid_ratio < self.cfg.min_valid_ratio:
                return f"LOW_VALID_RATIO:{estimate.evidence.valid_ratio:.2f}"
            if estimate.degraded:
                return "DEGRADED"
        rot_deg = np.degrees(rotation_angle(self.T_cur_kf))
        if rot_deg > self.cfg.max_rotation_deg:
            return f"ROTATION:{rot_deg:.2f}deg"
        trans = translation_norm(self.T_cur_kf)
        if trans > self.cfg.max_translation:
            return f"TRANSLATION:{trans:.3f}"
        return None

    def should_promote(self, estimate: PoseEstimate | None) -> bool:
        return self.promotion_reason(estimate) is not None

    def promote(self, frame: Frame, store: FrameStore, reason: str = "") -> None:
        if frame not in store:
            raise ContractViolation(
                f"Cannot promote frame {frame.idx}: not part of the active window {store.ids()}"
            )
        if frame.is_keyframe:
            raise ContractViolation(f"Frame {frame.idx} is already a keyframe")
        frame.is_keyframe = True
        self.active = frame
        self.keyframes.append(frame)
        self.T_cur_kf = np.eye(4)
        self.state = KeyframeState.HAS_KEYFRAME
        logger.info("frame %d promoted to keyframe #%d (%s)", frame.idx, len(self.keyframes), reason or "manual")

    def export(self) -> list[tuple[int, np.ndarray]]:
        return [(kf.idx, kf.T_w_c.copy()) for kf in self.keyframes]
