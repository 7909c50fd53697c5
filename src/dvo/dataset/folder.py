# src/dvo/dataset/folder.py
from __future__ import annotations

import os
from typing import Iterator, Tuple

import cv2
import numpy as np

from ..errors import DatasetError

IMAGE_EXTS = (".png", ".jpg", ".jpeg", ".bmp", ".tif", ".tiff", ".pgm")


class ImageFolderSequence:
    """
    Images of a directory in lexicographic order. Timestamps are the frame
    position times `1 / fps`.
    """

    def __init__(self, image_dir: str, *, min_frames: int = 15, fps: float = 30.0):
        if not os.path.isdir(image_dir):
            raise DatasetError(f"Can not find image directory: {image_dir}")
        self.image_dir = image_dir
        self.fps = float(fps)
        self.paths = sorted(
            os.path.join(image_dir, name)
            for name in os.listdir(image_dir)
            if name.lower().endswith(IMAGE_EXTS) and not name.startswith(".")
        )
        if len(self.paths) < min_frames:
            raise DatasetError(
                f"Insufficient number of images in {image_dir}: {len(self.paths)} < {min_frames}. "
                "Please use a larger dataset."
            )

    def __len__(self) -> int:
        return len(self.paths)

    def iter_gray(
        self,
        *,
        start: int = 0,
        step: int = 1,
        max_frames: int | None = None,
    ) -> Iterator[Tuple[int, float, np.ndarray]]:
        end = len(self.paths) if max_frames is None else min(len(self.paths), start + max_frames * step)
        idx = 0
        for i in range(start, end, step):
            img = cv2.imread(self.paths[i], cv2.IMREAD_GRAYSCALE)
            if img is None:
                raise DatasetError(f"Failed to read image: {self.paths[i]}")
            yield idx, i / self.fps, img
            idx += 1
