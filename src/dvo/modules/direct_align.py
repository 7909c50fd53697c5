# src/dvo/modules/direct_align.py
from __future__ import annotations

import logging

import numpy as np

from ..errors import ContractViolation, TrackingDegenerate, TrackingDiverged, TrackingError
from ..geom.camera import CameraIntrinsics
from ..geom.se3 import exp_se3
from ..system.config import AlignConfig
from ..system.proposal import Evidence, PoseEstimate
from ..system.state import CandidateLevel, Frame, GradientLevel
from .warp import bilinear, warp

logger = logging.getLogger(__name__)


def huber_weights(r: np.ndarray, delta: float) -> np.ndarray:
    a = np.abs(r)
    return np.where(a <= delta, 1.0, delta / np.maximum(a, 1e-12))


def huber_cost(r: np.ndarray, delta: float) -> float:
    if r.shape[0] == 0:
        return float("inf")
    a = np.abs(r)
    loss = np.where(a <= delta, 0.5 * r * r, delta * (a - 0.5 * delta))
    return float(np.mean(loss))


def photometric_jacobian(
    points: np.ndarray, gx: np.ndarray, gy: np.ndarray, cam: CameraIntrinsics
) -> np.ndarray:
    """
    d r / d xi for the left update T <- exp(xi) T, xi = (v, w).

    Args:
        points: (N,3) warped points in the target camera.
        gx, gy: (N,) target image gradients at the warped pixels.

    Returns:
        (N,6) Jacobian.
    """
    X, Y, Z = points[:, 0], points[:, 1], points[:, 2]
    iz = 1.0 / Z
    iz2 = iz * iz
    fgx = gx * cam.fx
    fgy = gy * cam.fy

    J = np.empty((points.shape[0], 6), dtype=np.float64)
    J[:, 0] = fgx * iz
    J[:, 1] = fgy * iz
    J[:, 2] = -(fgx * X + fgy * Y) * iz2
    J[:, 3] = -fgx * X * Y * iz2 - fgy * (1.0 + Y * Y * iz2)
    J[:, 4] = fgx * (1.0 + X * X * iz2) + fgy * X * Y * iz2
    J[:, 5] = (-fgx * Y + fgy * X) * iz
    return J


class DirectAligner:
    """
    Coarse-to-fine photometric alignment of a reference frame's candidates
    against a target frame.

    Each level runs Gauss-Newton with Huber reweighting and Levenberg-Marquardt
    damping. The result is always returned as a PoseEstimate; degenerate or
    diverged levels yield valid=False with the error attached. A level that
    runs out of iterations on rejected steps after some accepted ones is
    kept but listed in evidence.degraded_levels.
    """

    def __init__(self, cfg: AlignConfig, cameras: list[CameraIntrinsics]):
        self.cfg = cfg
        self.cameras = cameras

    def align(self, ref: Frame, cur: Frame, T_init: np.ndarray | None = None) -> PoseEstimate:
        if not ref.has_candidates:
            raise ContractViolation(f"Reference frame {ref.idx} has no candidates")
        if not cur.has_gradients:
            raise ContractViolation(f"Target frame {cur.idx} has no gradients")

        I = np.eye(4, dtype=np.float64)
        T = I.copy() if T_init is None else np.asarray(T_init, dtype=np.float64).copy()
        num_levels = min(len(self.cameras), ref.num_levels, cur.num_levels)

        ev = Evidence(num_candidates=len(ref.candidates[0]))
        cost = None
        try:
            for k in reversed(range(num_levels)):
                T, cost, n_valid, iters, degraded = self._align_level(
                    ref.candidates[k], cur.pyramid[k], cur.gradients[k], self.cameras[k], T, level=k
                )
                ev.level_costs.append(cost)
                ev.iterations += iters
                if degraded:
                    ev.degraded_levels.append(k)
                logger.debug("frame %d level %d: cost=%.4f valid=%d iters=%d", cur.idx, k, cost, n_valid, iters)
        except TrackingError as ex:
            logger.warning("direct alignment %d -> %d failed: %s", ref.idx, cur.idx, ex)
            return PoseEstimate(
                "direct", I, ev, valid=False, cost=cost,
                reason=f"REJECT_DIRECT_{ex.code}:level={ex.level}", error=ex,
            )

        ev.num_valid = n_valid
        ev.valid_ratio = float(n_valid) / float(max(ev.num_candidates, 1))
        if ev.degraded_levels:
            logger.warning(
                "direct alignment %d -> %d ended while damping at levels %s", ref.idx, cur.idx, ev.degraded_levels
            )
            return PoseEstimate("direct", T, ev, valid=True, cost=cost, reason="DIRECT_DEGRADED")
        return PoseEstimate("direct", T, ev, valid=True, cost=cost, reason="DIRECT_OK")

    def _residuals(
        self,
        cand: CandidateLevel,
        img: np.ndarray,
        cam: CameraIntrinsics,
        T: np.ndarray,
    ):
        res = warp(cand.uv, cand.inv_depth, T, cam, cam)
        uv = res.uv[res.valid]
        r = bilinear(img, uv) - cand.intensity[res.valid]
        return r, uv, res.points[res.valid]

    def _align_level(
        self,
        cand: CandidateLevel,
        img: np.ndarray,
        grad: GradientLevel,
        cam: CameraIntrinsics,
        T: np.ndarray,
        *,
        level: int,
    ) -> tuple[np.ndarray, float, int, int, bool]:
        cfg = self.cfg
        delta = cfg.huber_delta

        r, uv, P = self._residuals(cand, img, cam, T)
        if r.shape[0] < cfg.min_residuals:
            raise TrackingDegenerate(
                f"{r.shape[0]} valid residuals at level {level}, need {cfg.min_residuals}",
                level=level, num_valid=int(r.shape[0]), required=cfg.min_residuals,
            )
        cost = huber_cost(r, delta)

        lam = cfg.init_lambda
        rejects = 0
        accepted = 0
        iters = 0
        H = g = None
        while iters < cfg.max_iterations and cost > cfg.epsilon:
            iters += 1

            # normal equations are rebuilt only after an accepted step
            if H is None:
                J = photometric_jacobian(P, bilinear(grad.gx, uv), bilinear(grad.gy, uv), cam)
                w = huber_weights(r, delta)
                Jw = J * w[:, None]
                H = Jw.T @ J
                g = Jw.T @ r

            A = H + lam * np.diag(np.diag(H))
            try:
                xi = np.linalg.solve(A, -g)
            except np.linalg.LinAlgError as ex:
                raise TrackingDegenerate(
                    f"singular normal equations at level {level}", level=level, num_valid=int(r.shape[0])
                ) from ex

            T_new = exp_se3(xi) @ T
            r_new, uv_new, P_new = self._residuals(cand, img, cam, T_new)
            new_cost = huber_cost(r_new, delta) if r_new.shape[0] >= cfg.min_residuals else float("inf")

            if new_cost < cost:
                reduction = cost - new_cost
                T, cost, r, uv, P = T_new, new_cost, r_new, uv_new, P_new
                H = g = None
                lam /= cfg.lambda_down
                rejects = 0
                accepted += 1
                if reduction < cfg.epsilon:
                    break
                continue

            if new_cost - cost <= cfg.epsilon:
                # no measurable change, already at the minimum
                break
            rejects += 1
            lam = max(lam, 1e-4) * cfg.lambda_up
            if rejects >= cfg.max_damping_steps:
                raise TrackingDiverged(
                    f"cost increased {rejects} times in a row at level {level} (cost={cost:.4f})",
                    level=level, cost=float(cost), num_valid=int(r.shape[0]),
                )
        else:
            # budget spent while still damping
            if rejects and not accepted:
                raise TrackingDiverged(
                    f"no update accepted within {iters} iterations at level {level} (cost={cost:.4f})",
                    level=level, cost=float(cost), num_valid=int(r.shape[0]),
                )
            return T, cost, int(r.shape[0]), iters, rejects > 0

        return T, cost, int(r.shape[0]), iters, False
