import cv2
import numpy as np
import pytest

from dvo.geom.camera import CameraIntrinsics
from dvo.system.config import AlignConfig, CandidateConfig, PyramidConfig, TrackerConfig, WindowConfig

H, W = 96, 128


def textured_image(h: int = H, w: int = W, seed: int = 0, sigma: float = 2.0) -> np.ndarray:
    """Smooth random texture, uint8, full dynamic range."""
    rng = np.random.default_rng(seed)
    noise = rng.uniform(0.0, 255.0, size=(h, w)).astype(np.float32)
    img = cv2.GaussianBlur(noise, (0, 0), sigmaX=sigma)
    img = (img - img.min()) / (img.max() - img.min()) * 255.0
    return img.astype(np.uint8)


def shifted(img: np.ndarray, dx: float, dy: float = 0.0) -> np.ndarray:
    """Move image content by (dx, dy) pixels."""
    M = np.array([[1.0, 0.0, dx], [0.0, 1.0, dy]], dtype=np.float64)
    out = cv2.warpAffine(
        img.astype(np.float32), M, (img.shape[1], img.shape[0]),
        flags=cv2.INTER_LINEAR, borderMode=cv2.BORDER_REFLECT,
    )
    return out


@pytest.fixture
def camera() -> CameraIntrinsics:
    return CameraIntrinsics(fx=100.0, fy=100.0, cx=63.5, cy=47.5, width=W, height=H)


@pytest.fixture
def image() -> np.ndarray:
    return textured_image()


@pytest.fixture
def cfg() -> TrackerConfig:
    return TrackerConfig(
        pyramid=PyramidConfig(levels=3),
        candidates=CandidateConfig(max_per_level=600, min_candidates=20),
        align=AlignConfig(max_iterations=30),
        window=WindowConfig(capacity=10),
    )
