# src/dvo/modules/candidates.py
from __future__ import annotations

import numpy as np

from ..errors import ContractViolation, TrackingDegenerate
from ..geom.camera import CameraIntrinsics
from ..system.config import CandidateConfig
from ..system.state import CandidateLevel, Frame, GradientLevel
from .warp import warp

_NEIGHBOURS = [(0, 0), (-1, 0), (1, 0), (0, -1), (0, 1), (-1, -1), (-1, 1), (1, -1), (1, 1)]


def level_cell_size(cell_size: int, level: int) -> int:
    # cells shrink with the level so coarse levels keep enough points
    return max(2, cell_size >> level)


def select_level(
    img: np.ndarray,
    grad: GradientLevel,
    *,
    grad_threshold: float,
    cell_size: int,
    max_count: int,
    border: int,
    inv_depth_prior: float,
    hint: np.ndarray | None = None,
) -> CandidateLevel:
    """
    Strongest-gradient pixel per cell, kept if its magnitude reaches the
    threshold, capped to the `max_count` strongest.

    Returns:
        CandidateLevel sorted row-major.
    """
    mag = grad.mag.astype(np.float64, copy=True)
    h, w = mag.shape
    b = int(border)
    mag[:b, :] = 0.0
    mag[h - b:, :] = 0.0
    mag[:, :b] = 0.0
    mag[:, w - b:] = 0.0

    cs = int(cell_size)
    padded = np.pad(mag, ((0, -h % cs), (0, -w % cs)))
    H, W = padded.shape
    blocks = padded.reshape(H // cs, cs, W // cs, cs).transpose(0, 2, 1, 3).reshape(H // cs, W // cs, cs * cs)
    arg = blocks.argmax(axis=2)
    best = np.take_along_axis(blocks, arg[..., None], axis=2)[..., 0]

    by, bx = np.nonzero((best >= grad_threshold) & (best > 0.0))
    a = arg[by, bx]
    v = by * cs + a // cs
    u = bx * cs + a % cs
    m = best[by, bx]

    if m.shape[0] > max_count:
        keep = np.sort(np.argsort(-m, kind="stable")[:max_count])
        u, v, m = u[keep], v[keep], m[keep]

    inv_depth = np.full(u.shape[0], float(inv_depth_prior), dtype=np.float64)
    if hint is not None and u.shape[0] > 0:
        hv = hint[v, u]
        ok = np.isfinite(hv) & (hv > 0)
        inv_depth[ok] = hv[ok]

    return CandidateLevel(
        uv=np.stack([u, v], axis=1).astype(np.float64),
        inv_depth=inv_depth,
        intensity=img[v, u].astype(np.float64),
        grad_mag=m.astype(np.float64),
    )


class CandidateSelector:
    def __init__(self, cfg: CandidateConfig):
        self.cfg = cfg

    def apply(self, frame: Frame) -> list[CandidateLevel]:
        if frame.has_candidates:
            return frame.candidates
        if not frame.has_gradients:
            raise ContractViolation(f"Frame {frame.idx}: extract gradients before selecting candidates")

        hints = frame.inv_depth_hint
        levels = []
        for k, (img, grad) in enumerate(zip(frame.pyramid, frame.gradients)):
            levels.append(
                select_level(
                    img,
                    grad,
                    grad_threshold=self.cfg.grad_threshold,
                    cell_size=level_cell_size(self.cfg.cell_size, k),
                    max_count=self.cfg.max_per_level,
                    border=self.cfg.border,
                    inv_depth_prior=self.cfg.inverse_depth_prior,
                    hint=None if hints is None else hints[k],
                )
            )
        frame.set_candidates(levels)
        return levels

    def require_viable(self, frame: Frame) -> None:
        """Raise TrackingDegenerate when any level has too few candidates."""
        for k, c in enumerate(frame.candidates):
            if len(c) < self.cfg.min_candidates:
                raise TrackingDegenerate(
                    f"Frame {frame.idx}: {len(c)} candidates at level {k}, need {self.cfg.min_candidates}",
                    level=k,
                    num_candidates=len(c),
                    required=self.cfg.min_candidates,
                )


def propagate_inverse_depth(
    ref: Frame,
    T_cur_ref: np.ndarray,
    cameras: list[CameraIntrinsics],
) -> list[np.ndarray]:
    """
    Carry the reference candidates' depth into the current frame.

    Returns:
        one (h_k, w_k) map per level holding the inverse depth seen from the
        current camera, nan where nothing projected (3x3 splat).
    """
    maps = []
    for cand, cam in zip(ref.candidates, cameras):
        dmap = np.full((cam.height, cam.width), np.nan, dtype=np.float64)
        res = warp(cand.uv, cand.inv_depth, T_cur_ref, cam, cam)
        if np.any(res.valid):
            uv = np.rint(res.uv[res.valid]).astype(np.int64)
            inv_d = 1.0 / res.points[res.valid, 2]
            # nearer points come last so they win duplicate writes
            order = np.argsort(inv_d, kind="stable")
            uv, inv_d = uv[order], inv_d[order]
            for dx, dy in _NEIGHBOURS:
                uu = np.clip(uv[:, 0] + dx, 0, cam.width - 1)
                vv = np.clip(uv[:, 1] + dy, 0, cam.height - 1)
                empty = np.isnan(dmap[vv, uu])
                dmap[vv[empty], uu[empty]] = inv_d[empty]
        maps.append(dmap)
    return maps
