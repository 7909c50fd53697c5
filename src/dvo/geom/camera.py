# src/dvo/geom/camera.py
from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

from ..errors import ConfigError


@dataclass(frozen=True)
class CameraIntrinsics:
    """Pinhole intrinsics of the rectified output image."""

    fx: float
    fy: float
    cx: float
    cy: float
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ConfigError(f"Invalid output resolution {self.width}x{self.height}")
        if self.fx <= 0 or self.fy <= 0:
            raise ConfigError(f"Focal lengths must be positive, got fx={self.fx} fy={self.fy}")

    @classmethod
    def from_dict(cls, cam: dict, *, multiple_of: int = 16) -> "CameraIntrinsics":
        try:
            intr = cls(
                fx=float(cam["fx"]),
                fy=float(cam["fy"]),
                cx=float(cam["cx"]),
                cy=float(cam["cy"]),
                width=int(cam["width"]),
                height=int(cam["height"]),
            )
        except KeyError as ex:
            raise ConfigError(f"camera section is missing key {ex}") from ex
        intr.check_multiple(multiple_of)
        return intr

    @property
    def K(self) -> np.ndarray:
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @property
    def shape(self) -> tuple[int, int]:
        return self.height, self.width

    def check_multiple(self, n: int = 16) -> None:
        if self.width % n != 0 or self.height % n != 0:
            raise ConfigError(
                f"Output image dimensions must be multiples of {n}, got {self.width}x{self.height}"
            )

    def at_level(self, level: int) -> "CameraIntrinsics":
        """
        Intrinsics of pyramid level `level`.

        Pixel centres of a 2x2 area-averaged level sit at (2i + 0.5) in the
        finer level, hence c_k = (c_0 + 0.5) / 2^k - 0.5.
        """
        if level == 0:
            return self
        s = float(2**level)
        if self.width % (1 << level) != 0 or self.height % (1 << level) != 0:
            raise ConfigError(
                f"Resolution {self.width}x{self.height} cannot be halved {level} times"
            )
        return CameraIntrinsics(
            fx=self.fx / s,
            fy=self.fy / s,
            cx=(self.cx + 0.5) / s - 0.5,
            cy=(self.cy + 0.5) / s - 0.5,
            width=self.width >> level,
            height=self.height >> level,
        )

    def pyramid(self, levels: int) -> list["CameraIntrinsics"]:
        if levels < 1:
            raise ConfigError(f"Pyramid needs at least one level, got {levels}")
        return [self.at_level(k) for k in range(levels)]


class Rectifier:
    """Undistorts raw images into the output CameraIntrinsics using OpenCV remap maps."""

    def __init__(
        self,
        K_in: np.ndarray,
        dist: np.ndarray,
        input_size: tuple[int, int],
        out: CameraIntrinsics,
    ):
        self.K_in = np.asarray(K_in, dtype=np.float64)
        self.dist = np.asarray(dist, dtype=np.float64).reshape(-1)
        if self.dist.shape[0] not in (4, 5, 8):
            raise ConfigError(f"Distortion needs 4, 5 or 8 coefficients, got {self.dist.shape[0]}")
        self.input_size = (int(input_size[0]), int(input_size[1]))  # (w, h)
        self.out = out
        self.map1, self.map2 = cv2.initUndistortRectifyMap(
            self.K_in,
            self.dist,
            None,
            out.K,
            (out.width, out.height),
            cv2.CV_32FC1,
        )

    @classmethod
    def from_dict(cls, cam: dict, out: CameraIntrinsics) -> "Rectifier | None":
        """Returns None when the camera section has no raw input model."""
        inp = cam.get("input")
        if not inp:
            return None
        try:
            K_in = np.array(
                [
                    [float(inp["fx"]), 0.0, float(inp["cx"])],
                    [0.0, float(inp["fy"]), float(inp["cy"])],
                    [0.0, 0.0, 1.0],
                ]
            )
            size = (int(inp["width"]), int(inp["height"]))
        except KeyError as ex:
            raise ConfigError(f"camera.input is missing key {ex}") from ex
        dist = np.asarray(inp.get("distortion", [0.0, 0.0, 0.0, 0.0]), dtype=np.float64)
        return cls(K_in, dist, size, out)

    def apply(self, img: np.ndarray) -> np.ndarray:
        h, w = img.shape[:2]
        if (w, h) != self.input_size:
            raise ConfigError(
                f"Input image is {w}x{h}, rectifier expects {self.input_size[0]}x{self.input_size[1]}"
            )
        return cv2.remap(img, self.map1, self.map2, cv2.INTER_LINEAR)
