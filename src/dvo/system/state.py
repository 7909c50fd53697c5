from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Iterator

import numpy as np

from ..errors import ContractViolation

logger = logging.getLogger(__name__)


@dataclass
class GradientLevel:
    gx: np.ndarray
    gy: np.ndarray
    mag: np.ndarray


@dataclass
class CandidateLevel:
    uv: np.ndarray         # (N,2) float64 pixel coords at this level
    inv_depth: np.ndarray  # (N,)
    intensity: np.ndarray  # (N,) reference intensity
    grad_mag: np.ndarray   # (N,)

    def __len__(self) -> int:
        return int(self.uv.shape[0])


@dataclass(eq=False)
class Frame:
    """
    One ingested image and everything derived from it.

    Pyramid, gradients and candidates are write-once: each goes from not
    computed to computed exactly one time, a second write is a
    ContractViolation. Poses follow the T_a_b convention (maps b -> a).
    """

    idx: int
    ts: float = 0.0
    T_cur_ref: np.ndarray = field(default_factory=lambda: np.eye(4))
    T_w_c: np.ndarray = field(default_factory=lambda: np.eye(4))
    is_keyframe: bool = False
    # per-level sparse inverse-depth maps (nan = unknown) inherited from the previous reference
    inv_depth_hint: list[np.ndarray] | None = None

    _pyramid: list[np.ndarray] | None = field(default=None, repr=False)
    _gradients: list[GradientLevel] | None = field(default=None, repr=False)
    _candidates: list[CandidateLevel] | None = field(default=None, repr=False)
    released: bool = False

    # --- pyramid
    @property
    def has_pyramid(self) -> bool:
        return self._pyramid is not None

    @property
    def pyramid(self) -> list[np.ndarray]:
        self._check_alive("pyramid")
        if self._pyramid is None:
            raise ContractViolation(f"Frame {self.idx}: pyramid not built")
        return self._pyramid

    def set_pyramid(self, levels: list[np.ndarray]) -> None:
        self._check_alive("pyramid")
        if self._pyramid is not None:
            raise ContractViolation(f"Frame {self.idx}: pyramid already built")
        self._pyramid = levels

    @property
    def num_levels(self) -> int:
        return len(self.pyramid)

    # --- gradients
    @property
    def has_gradients(self) -> bool:
        return self._gradients is not None

    @property
    def gradients(self) -> list[GradientLevel]:
        self._check_alive("gradients")
        if self._gradients is None:
            raise ContractViolation(f"Frame {self.idx}: gradients not computed")
        return self._gradients

    def set_gradients(self, levels: list[GradientLevel]) -> None:
        self._check_alive("gradients")
        if self._gradients is not None:
            raise ContractViolation(f"Frame {self.idx}: gradients already computed")
        self._gradients = levels

    # --- candidates
    @property
    def has_candidates(self) -> bool:
        return self._candidates is not None

    @property
    def candidates(self) -> list[CandidateLevel]:
        self._check_alive("candidates")
        if self._candidates is None:
            raise ContractViolation(f"Frame {self.idx}: candidates not selected")
        return self._candidates

    def set_candidates(self, levels: list[CandidateLevel]) -> None:
        self._check_alive("candidates")
        if self._candidates is not None:
            raise ContractViolation(f"Frame {self.idx}: candidates already selected")
        self._candidates = levels

    def release(self) -> None:
        """Drop image-derived memory. Only the id, timestamp and poses survive."""
        self._pyramid = None
        self._gradients = None
        self._candidates = None
        self.inv_depth_hint = None
        self.released = True

    def _check_alive(self, what: str) -> None:
        if self.released:
            raise ContractViolation(f"Frame {self.idx} was released, {what} is no longer available")


class FrameStore:
    """
    Sliding window over the most recent frames.

    The store is the only owner of non-keyframe frames: evicting a frame
    releases its image memory unless it is a keyframe, in which case the
    KeyframeManager keeps it alive untouched.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ContractViolation(f"FrameStore capacity must be >= 1, got {capacity}")
        self.capacity = int(capacity)
        self._frames: deque[Frame] = deque()

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[Frame]:
        return iter(self._frames)

    def __contains__(self, frame: object) -> bool:
        return any(f is frame for f in self._frames)

    def ids(self) -> list[int]:
        return [f.idx for f in self._frames]

    @property
    def latest(self) -> Frame | None:
        return self._frames[-1] if self._frames else None

    @property
    def oldest(self) -> Frame | None:
        return self._frames[0] if self._frames else None

    def ingest(self, frame: Frame) -> None:
        if self._frames and frame.idx <= self._frames[-1].idx:
            raise ContractViolation(
                f"Frame ids must increase: got {frame.idx} after {self._frames[-1].idx}"
            )
        if len(self._frames) > self.capacity:
            raise ContractViolation(
                f"FrameStore holds {len(self._frames)} frames, evict before ingesting"
            )
        self._frames.append(frame)

    def evict(self) -> list[Frame]:
        evicted = []
        while len(self._frames) > self.capacity:
            frame = self._frames.popleft()
            if not frame.is_keyframe:
                frame.release()
            logger.debug("evicted frame %d (keyframe=%s)", frame.idx, frame.is_keyframe)
            evicted.append(frame)
        return evicted
