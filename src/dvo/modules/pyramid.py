# src/dvo/modules/pyramid.py
from __future__ import annotations

import cv2
import numpy as np

from ..errors import ConfigError
from ..system.state import Frame


class PyramidBuilder:
    def __init__(self, levels: int = 5):
        if levels < 1:
            raise ConfigError(f"Pyramid needs at least one level, got {levels}")
        self.levels = int(levels)

    def check_shape(self, h: int, w: int) -> None:
        div = 1 << (self.levels - 1)
        if h % div != 0 or w % div != 0:
            raise ConfigError(
                f"Image {w}x{h} cannot be halved {self.levels - 1} times "
                f"(dimensions must be multiples of {div})"
            )

    def build(self, img: np.ndarray) -> list[np.ndarray]:
        """
        Args:
            img: (H,W) grayscale image, uint8 or float.

        Returns:
            list of `levels` float32 images, level k has shape (H/2^k, W/2^k).
        """
        if img is None or img.ndim != 2:
            raise ConfigError("PyramidBuilder expects a grayscale image (H,W).")
        h, w = img.shape
        self.check_shape(h, w)

        pyr = [np.ascontiguousarray(img, dtype=np.float32)]
        for _ in range(1, self.levels):
            prev = pyr[-1]
            # INTER_AREA with an exact factor of 2 is a 2x2 box average
            pyr.append(
                cv2.resize(prev, (prev.shape[1] // 2, prev.shape[0] // 2), interpolation=cv2.INTER_AREA)
            )
        return pyr

    def apply(self, frame: Frame, img: np.ndarray) -> Frame:
        frame.set_pyramid(self.build(img))
        return frame
