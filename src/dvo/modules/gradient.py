# src/dvo/modules/gradient.py
from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import numpy as np

from ..errors import ContractViolation
from ..system.state import Frame, GradientLevel


def image_gradients(img: np.ndarray) -> GradientLevel:
    """Central differences, zero on the one-pixel border."""
    img = np.asarray(img, dtype=np.float32)
    gx = np.zeros_like(img)
    gy = np.zeros_like(img)
    gx[:, 1:-1] = 0.5 * (img[:, 2:] - img[:, :-2])
    gy[1:-1, :] = 0.5 * (img[2:, :] - img[:-2, :])
    mag = np.sqrt(gx * gx + gy * gy)
    return GradientLevel(gx=gx, gy=gy, mag=mag)


class GradientExtractor:
    def __init__(self, workers: int = 1):
        self.workers = max(1, int(workers))
        self.num_computed = 0  # frames actually processed, repeated calls do not count

    def apply(self, frame: Frame) -> list[GradientLevel]:
        if frame.has_gradients:
            return frame.gradients
        if not frame.has_pyramid:
            raise ContractViolation(f"Frame {frame.idx}: build the pyramid before extracting gradients")

        levels = frame.pyramid
        if self.workers > 1 and len(levels) > 1:
            with ThreadPoolExecutor(max_workers=min(self.workers, len(levels))) as pool:
                grads = list(pool.map(image_gradients, levels))
        else:
            grads = [image_gradients(img) for img in levels]

        frame.set_gradients(grads)
        self.num_computed += 1
        return grads
