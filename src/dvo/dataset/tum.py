from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Iterator, List, Tuple

import cv2
import numpy as np

from ..errors import DatasetError


@dataclass
class TumRgbEntry:
    ts: float
    path: str


def _read_rgb_txt(rgb_txt_path: str) -> List[TumRgbEntry]:
    entries: List[TumRgbEntry] = []
    base = os.path.dirname(rgb_txt_path)

    with open(rgb_txt_path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            parts = line.split()
            if len(parts) < 2:
                continue
            try:
                ts = float(parts[0])
            except ValueError as ex:
                raise DatasetError(f"Bad timestamp in {rgb_txt_path}: {line!r}") from ex
            entries.append(TumRgbEntry(ts=ts, path=os.path.join(base, parts[1])))
    return entries


def read_tum_trajectory(path: str) -> Tuple[np.ndarray, np.ndarray]:
    """
    Read a TUM trajectory / ground truth file (ts tx ty tz qx qy qz qw).

    Returns:
        ts: (N,) timestamps
        poses: (N,7) rows tx ty tz qx qy qz qw
    """
    if not os.path.isfile(path):
        raise DatasetError(f"Missing trajectory file: {path}")
    rows = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if (not line) or line.startswith("#"):
                continue
            parts = line.replace(",", " ").split()
            if len(parts) < 8:
                continue
            rows.append([float(p) for p in parts[:8]])
    if not rows:
        raise DatasetError(f"No poses found in {path}")
    arr = np.asarray(rows, dtype=np.float64)
    return arr[:, 0], arr[:, 1:]


class TumRgbSequence:
    def __init__(self, seq_dir: str, *, min_frames: int = 15):
        self.seq_dir = seq_dir
        rgb_txt = os.path.join(seq_dir, "rgb.txt")
        if not os.path.isfile(rgb_txt):
            raise DatasetError(f"Missing rgb.txt: {rgb_txt}")
        self.entries = _read_rgb_txt(rgb_txt)
        if len(self.entries) < min_frames:
            raise DatasetError(
                f"Insufficient number of images in {seq_dir}: {len(self.entries)} < {min_frames}"
            )

    def __len__(self) -> int:
        return len(self.entries)

    def iter_gray(
        self,
        *,
        start: int = 0,
        step: int = 1,
        max_frames: int | None = None,
    ) -> Iterator[Tuple[int, float, np.ndarray]]:
        end = len(self.entries) if max_frames is None else min(len(self.entries), start + max_frames * step)
        idx = 0
        for i in range(start, end, step):
            e = self.entries[i]
            img = cv2.imread(e.path, cv2.IMREAD_GRAYSCALE)
            if img is None:
                raise DatasetError(f"Failed to read image: {e.path}")
            yield idx, e.ts, img
            idx += 1
