import logging

import numpy as np

from .config import TrackerConfig
from .proposal import PoseEstimate
from ..modules.const_vel import propose_const_vel, propose_identity

logger = logging.getLogger(__name__)

class TrackingPolicy:
    def __init__(self, cfg: TrackerConfig):
        self.cfg = cfg

    def choose(self, estimate: PoseEstimate, last_T_cur_prev: np.ndarray | None) -> PoseEstimate:
        # priority: direct > configured fallback
        if estimate.name == "direct" and estimate.valid:
            if estimate.degraded:
                estimate.reason = "ACCEPT_DIRECT_DEGRADED"
                logger.warning("accepting degraded direct estimate, levels %s", estimate.evidence.degraded_levels)
            else:
                estimate.reason = "ACCEPT_DIRECT"
            return estimate

        if self.cfg.fallback == "const_vel":
            chosen = propose_const_vel(last_T_cur_prev)
            chosen.reason = "FALLBACK_CONST_VEL"
        else:
            chosen = propose_identity()
            chosen.reason = "FALLBACK_IDENTITY"
        chosen.error = estimate.error
        logger.warning("direct estimate rejected (%s), %s", estimate.reason, chosen.reason)
        return chosen

    def init_motion(self, last_T_cur_prev: np.ndarray | None) -> np.ndarray:
        if self.cfg.init_motion == "const_vel" and last_T_cur_prev is not None:
            return last_T_cur_prev.copy()
        return np.eye(4)
