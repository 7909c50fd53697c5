from dataclasses import dataclass, field
import numpy as np

from ..errors import TrackingError

@dataclass
class Evidence:
    num_valid: int = 0
    num_candidates: int = 0
    valid_ratio: float = 0.0
    iterations: int = 0
    level_costs: list[float] = field(default_factory=list)
    # levels whose iteration budget ran out on rejected steps
    degraded_levels: list[int] = field(default_factory=list)

@dataclass
class PoseEstimate:
    name: str
    T_cur_ref: np.ndarray  # 4x4, ref -> cur
    evidence: Evidence = field(default_factory=Evidence)
    valid: bool = True
    cost: float | None = None
    reason: str = ""
    error: TrackingError | None = None

    @property
    def degraded(self) -> bool:
        return bool(self.evidence.degraded_levels)

    def to_record(self) -> dict:
        return {
            "name": self.name,
            "valid": bool(self.valid),
            "degraded": self.degraded,
            "reason": str(self.reason),
            "cost": None if self.cost is None else float(self.cost),
            "num_valid": int(self.evidence.num_valid),
            "num_candidates": int(self.evidence.num_candidates),
            "valid_ratio": float(self.evidence.valid_ratio),
            "iterations": int(self.evidence.iterations),
            "level_costs": [float(c) for c in self.evidence.level_costs],
            "degraded_levels": [int(k) for k in self.evidence.degraded_levels],
            "error": None if self.error is None else self.error.to_dict(),
        }
