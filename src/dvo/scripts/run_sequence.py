from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import numpy as np
import yaml

from dvo.dataset.folder import ImageFolderSequence
from dvo.dataset.tum import TumRgbSequence, read_tum_trajectory
from dvo.errors import DvoError
from dvo.geom.camera import CameraIntrinsics, Rectifier
from dvo.system.config import TrackerConfig
from dvo.system.runner import Tracker
from dvo.system.telemetry import Telemetry

logger = logging.getLogger("dvo")


def _R_to_quat_xyzw(R: np.ndarray) -> np.ndarray:
    # Returns quaternion [x,y,z,w] from rotation matrix.
    m = R.astype(np.float64)
    trace = float(np.trace(m))
    if trace > 0.0:
        s = np.sqrt(trace + 1.0) * 2.0
        qw = 0.25 * s
        qx = (m[2, 1] - m[1, 2]) / s
        qy = (m[0, 2] - m[2, 0]) / s
        qz = (m[1, 0] - m[0, 1]) / s
    else:
        if m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
            s = np.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2.0
            qw = (m[2, 1] - m[1, 2]) / s
            qx = 0.25 * s
            qy = (m[0, 1] + m[1, 0]) / s
            qz = (m[0, 2] + m[2, 0]) / s
        elif m[1, 1] > m[2, 2]:
            s = np.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2.0
            qw = (m[0, 2] - m[2, 0]) / s
            qx = (m[0, 1] + m[1, 0]) / s
            qy = 0.25 * s
            qz = (m[1, 2] + m[2, 1]) / s
        else:
            s = np.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2.0
            qw = (m[1, 0] - m[0, 1]) / s
            qx = (m[0, 2] + m[2, 0]) / s
            qy = (m[1, 2] + m[2, 1]) / s
            qz = 0.25 * s

    q = np.array([qx, qy, qz, qw], dtype=np.float64)
    n = np.linalg.norm(q) + 1e-12
    return q / n


class TrajectoryVisualizer:
    def __init__(self, gt_positions: np.ndarray | None = None):
        import matplotlib.pyplot as plt

        self.plt = plt
        plt.ion()
        self.fig = plt.figure(figsize=(12, 5))
        self.ax1 = self.fig.add_subplot(121, projection='3d')
        self.ax2 = self.fig.add_subplot(122)
        self.gt = gt_positions

    def update(self, traj_T_w_c: list[np.ndarray], keyframe_positions: np.ndarray | None = None):
        if len(traj_T_w_c) < 2:
            return

        positions = np.array([T[:3, 3] for T in traj_T_w_c])
        x, y, z = positions[:, 0], positions[:, 1], positions[:, 2]

        self.ax1.clear()
        self.ax1.set_xlabel('X')
        self.ax1.set_ylabel('Y')
        self.ax1.set_zlabel('Z')
        self.ax1.set_title(f'3D Trajectory ({len(traj_T_w_c)} frames)')
        self.ax1.plot(x, y, z, 'b-', linewidth=1.5, alpha=0.7)
        self.ax1.scatter(x[-1], y[-1], z[-1], c='r', s=60, marker='o', label='Current')

        self.ax2.clear()
        self.ax2.set_xlabel('X')
        self.ax2.set_ylabel('Z')
        self.ax2.set_title('Top-Down View (X-Z)')
        self.ax2.plot(x, z, 'b-', linewidth=1.5, alpha=0.7, label='Estimate')
        if keyframe_positions is not None and len(keyframe_positions) > 0:
            self.ax2.scatter(keyframe_positions[:, 0], keyframe_positions[:, 2], c='orange', s=25, marker='s', label='Keyframes')
        if self.gt is not None:
            self.ax2.plot(self.gt[:, 0], self.gt[:, 2], 'g--', linewidth=1.0, alpha=0.6, label='Ground truth')
        self.ax2.grid(True)
        self.ax2.legend()
        self.ax2.axis('equal')

        self.plt.pause(0.001)

    def close(self):
        self.plt.ioff()
        self.plt.show()


def _write_traj_tum(traj_T_w_c: list[np.ndarray], ts_list: list[float], out_path: str) -> None:
    assert len(traj_T_w_c) == len(ts_list)
    with open(out_path, "w", encoding="utf-8") as f:
        for T, ts in zip(traj_T_w_c, ts_list):
            t = T[:3, 3]
            q = _R_to_quat_xyzw(T[:3, :3])  # x y z w
            f.write(f"{ts:.6f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} {q[0]:.6f} {q[1]:.6f} {q[2]:.6f} {q[3]:.6f}\n")


def _write_keyframes(tracker: Tracker, out_path: str) -> None:
    with open(out_path, "w", encoding="utf-8") as f:
        for kf in tracker.keyframes.keyframes:
            t = kf.T_w_c[:3, 3]
            q = _R_to_quat_xyzw(kf.T_w_c[:3, :3])
            f.write(
                f"{kf.idx} {kf.ts:.6f} {t[0]:.6f} {t[1]:.6f} {t[2]:.6f} "
                f"{q[0]:.6f} {q[1]:.6f} {q[2]:.6f} {q[3]:.6f}\n"
            )


def _open_sequence(args, ds_cfg: dict):
    min_frames = int(ds_cfg.get("min_frames", 15))
    if args.tum_dir:
        return TumRgbSequence(args.tum_dir, min_frames=min_frames)
    return ImageFolderSequence(args.images, min_frames=min_frames, fps=float(ds_cfg.get("fps", 30.0)))


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Direct monocular visual odometry over an image sequence")
    ap.add_argument("--config", type=str, default="configs/default.yaml")
    src = ap.add_mutually_exclusive_group(required=True)
    src.add_argument("--images", type=str, help="Directory of grayscale images (sorted by name)")
    src.add_argument("--tum_dir", type=str, help="Path to TUM sequence dir, e.g. .../freiburg1_xyz")
    ap.add_argument("--groundtruth", type=str, default=None, help="TUM-format ground truth, visualization only")
    ap.add_argument("--out_dir", type=str, default="outputs")
    ap.add_argument("--visualize", action="store_true", help="Enable real-time trajectory visualization")
    ap.add_argument("--viz_update_every", type=int, default=10, help="Update visualization every N frames")
    ap.add_argument("--log_every", type=int, default=50, help="Log progress every N frames")
    ap.add_argument("-v", "--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )

    try:
        logger.info("Loading config: %s", args.config)
        with open(args.config, "r", encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}

        ds_cfg = cfg.get("dataset") or {}
        camera = CameraIntrinsics.from_dict(cfg.get("camera") or {})
        rectifier = Rectifier.from_dict(cfg.get("camera") or {}, camera)
        tracker_cfg = TrackerConfig.from_dict(cfg)
        seq = _open_sequence(args, ds_cfg)
        gt = None
        if args.groundtruth:
            _, gt_poses = read_tum_trajectory(args.groundtruth)
            gt = gt_poses[:, :3]
    except (DvoError, OSError, yaml.YAMLError) as ex:
        logger.error("Setup failed: %s", ex)
        return 1

    seq_name = str(ds_cfg.get("sequence") or Path(args.tum_dir or args.images).name)
    out_dir = Path(args.out_dir) / seq_name
    out_dir.mkdir(parents=True, exist_ok=True)
    logger.info("Output dir: %s", out_dir)
    logger.info("Sequence frames: %d", len(seq))

    telemetry = Telemetry()
    tracker = Tracker(tracker_cfg, camera, telemetry=telemetry, rectifier=rectifier)
    visualizer = TrajectoryVisualizer(gt) if args.visualize else None

    start = int(ds_cfg.get("start", 0))
    step_stride = int(ds_cfg.get("step", 1))
    max_frames = ds_cfg.get("max_frames", None)
    if max_frames is not None:
        max_frames = int(max_frames)

    logger.info("Starting loop: start=%d step=%d max_frames=%s", start, step_stride, max_frames)
    frame_count = 0
    images = ((ts, img) for _idx, ts, img in seq.iter_gray(start=start, step=step_stride, max_frames=max_frames))
    try:
        for result in tracker.run(images):
            frame_count += 1

            if args.log_every > 0 and (frame_count % args.log_every == 0):
                logger.info(
                    "Frame %d / %s  keyframes=%d  last=%s",
                    frame_count, max_frames if max_frames else len(seq),
                    len(tracker.keyframes), result.chosen.reason,
                )

            if visualizer is not None and frame_count % args.viz_update_every == 0:
                kf_pos = np.array([T[:3, 3] for _, T in tracker.keyframes.export()])
                visualizer.update(tracker.trajectory, kf_pos)
    except DvoError as ex:
        logger.error("Stopped at frame %d: %s", frame_count, ex)
        return 1

    traj_path = str(out_dir / "traj.txt")
    kf_path = str(out_dir / "keyframes.txt")
    metrics_path = str(out_dir / "metrics.json")
    cfg_path = str(out_dir / "config_used.yaml")

    _write_traj_tum(tracker.trajectory, tracker.timestamps, traj_path)
    _write_keyframes(tracker, kf_path)

    with open(metrics_path, "w", encoding="utf-8") as f:
        json.dump(telemetry.frames, f, indent=2)

    used = dict(cfg)
    used.update(tracker_cfg.to_dict())
    with open(cfg_path, "w", encoding="utf-8") as f:
        yaml.safe_dump(used, f, sort_keys=False)

    logger.info("wrote: %s", traj_path)
    logger.info("wrote: %s", kf_path)
    logger.info("wrote: %s", metrics_path)
    logger.info(
        "tracked %d frames, %d keyframes, %d tracking failures",
        frame_count, len(tracker.keyframes), len(telemetry.failures()),
    )

    if visualizer is not None:
        logger.info("Showing final trajectory. Close the window to exit.")
        kf_pos = np.array([T[:3, 3] for _, T in tracker.keyframes.export()])
        visualizer.update(tracker.trajectory, kf_pos)
        visualizer.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
