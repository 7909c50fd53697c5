import numpy as np
from ..system.proposal import PoseEstimate, Evidence

def propose_const_vel(last_T_cur_prev: np.ndarray | None) -> PoseEstimate:
    T = np.eye(4) if last_T_cur_prev is None else last_T_cur_prev.copy()
    return PoseEstimate("const_vel", T, Evidence(), valid=True)

def propose_identity() -> PoseEstimate:
    return PoseEstimate("identity", np.eye(4), Evidence(), valid=True)
