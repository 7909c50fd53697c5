# src/dvo/modules/warp.py
from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from ..geom.camera import CameraIntrinsics


@dataclass
class WarpResult:
    uv: np.ndarray      # (N,2) target pixel coords
    points: np.ndarray  # (N,3) points in the target camera frame
    valid: np.ndarray   # (N,) bool


def back_project(uv: np.ndarray, inv_depth: np.ndarray, cam: CameraIntrinsics) -> np.ndarray:
    """(N,2) pixels + (N,) inverse depth -> (N,3) camera points."""
    z = 1.0 / inv_depth
    x = (uv[:, 0] - cam.cx) / cam.fx * z
    y = (uv[:, 1] - cam.cy) / cam.fy * z
    return np.stack([x, y, z], axis=1)


def in_bounds(uv: np.ndarray, cam: CameraIntrinsics) -> np.ndarray:
    # bilinear sampling reads (u0+1, v0+1)
    return (
        (uv[:, 0] >= 0.0)
        & (uv[:, 1] >= 0.0)
        & (uv[:, 0] < cam.width - 1)
        & (uv[:, 1] < cam.height - 1)
    )


def warp(
    uv: np.ndarray,
    inv_depth: np.ndarray,
    T_tgt_ref: np.ndarray,
    cam_ref: CameraIntrinsics,
    cam_tgt: CameraIntrinsics,
) -> WarpResult:
    """
    Project reference pixels with known inverse depth into the target image.

    Args:
        uv: (N,2) reference pixel coordinates.
        inv_depth: (N,) inverse depths in the reference camera.
        T_tgt_ref: (4,4) ref -> target transform.
        cam_ref, cam_tgt: intrinsics of the reference and target levels.

    Returns:
        WarpResult; points behind the camera or outside the target image are
        marked invalid (their uv is left as computed, or nan when Z <= 0).
    """
    uv = np.asarray(uv, dtype=np.float64).reshape(-1, 2)
    inv_depth = np.asarray(inv_depth, dtype=np.float64).reshape(-1)
    n = uv.shape[0]
    if n == 0:
        return WarpResult(np.zeros((0, 2)), np.zeros((0, 3)), np.zeros((0,), dtype=bool))

    ok_depth = np.isfinite(inv_depth) & (inv_depth > 0)
    safe_inv = np.where(ok_depth, inv_depth, 1.0)
    P_ref = back_project(uv, safe_inv, cam_ref)

    R = T_tgt_ref[:3, :3]
    t = T_tgt_ref[:3, 3]
    P = P_ref @ R.T + t

    Z = P[:, 2]
    front = ok_depth & (Z > 1e-9)
    Zs = np.where(front, Z, 1.0)
    u = cam_tgt.fx * P[:, 0] / Zs + cam_tgt.cx
    v = cam_tgt.fy * P[:, 1] / Zs + cam_tgt.cy
    uv_tgt = np.stack([u, v], axis=1)
    uv_tgt[~front] = np.nan

    valid = front & in_bounds(np.nan_to_num(uv_tgt, nan=-1.0), cam_tgt)
    return WarpResult(uv=uv_tgt, points=P, valid=valid)


def bilinear(img: np.ndarray, uv: np.ndarray) -> np.ndarray:
    """
    Sample img at sub-pixel positions. uv must lie in [0, w-1) x [0, h-1).
    """
    u = uv[:, 0]
    v = uv[:, 1]
    u0 = np.floor(u).astype(np.int64)
    v0 = np.floor(v).astype(np.int64)
    du = u - u0
    dv = v - v0
    i00 = img[v0, u0].astype(np.float64)
    i01 = img[v0, u0 + 1].astype(np.float64)
    i10 = img[v0 + 1, u0].astype(np.float64)
    i11 = img[v0 + 1, u0 + 1].astype(np.float64)
    return (1 - dv) * ((1 - du) * i00 + du * i01) + dv * ((1 - du) * i10 + du * i11)
