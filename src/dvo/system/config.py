# src/dvo/system/config.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict

from ..errors import ConfigError


@dataclass
class PyramidConfig:
    levels: int = 5


@dataclass
class CandidateConfig:
    grad_threshold: float = 8.0
    cell_size: int = 8
    max_per_level: int = 1500
    min_candidates: int = 20
    border: int = 2
    inverse_depth_prior: float = 1.0


@dataclass
class AlignConfig:
    max_iterations: int = 20
    epsilon: float = 1e-4
    huber_delta: float = 9.0
    init_lambda: float = 1e-3
    lambda_up: float = 10.0
    lambda_down: float = 2.0
    max_damping_steps: int = 6
    min_residuals: int = 20


@dataclass
class KeyframeConfig:
    min_valid_ratio: float = 0.5
    max_rotation_deg: float = 10.0
    max_translation: float = 0.2


@dataclass
class WindowConfig:
    capacity: int = 10


TRACKING_KEYS = ("fallback", "reset_keyframe_on_failure", "init_motion", "propagate_depth", "gradient_workers")


@dataclass
class TrackerConfig:
    pyramid: PyramidConfig = field(default_factory=PyramidConfig)
    candidates: CandidateConfig = field(default_factory=CandidateConfig)
    align: AlignConfig = field(default_factory=AlignConfig)
    keyframe: KeyframeConfig = field(default_factory=KeyframeConfig)
    window: WindowConfig = field(default_factory=WindowConfig)

    # fallback when the direct estimate is invalid: "const_vel" | "identity"
    fallback: str = "const_vel"
    reset_keyframe_on_failure: bool = False
    # initial hypothesis at the coarsest level: "const_vel" | "identity"
    init_motion: str = "const_vel"
    propagate_depth: bool = True
    gradient_workers: int = 1

    def __post_init__(self):
        self.validate()

    @classmethod
    def from_dict(cls, cfg: dict | None) -> "TrackerConfig":
        """
        Build a typed config from the YAML dict (sections pyramid, candidates,
        align, keyframe, window, tracking). Missing keys keep their defaults,
        unknown keys raise ConfigError.
        """
        cfg = cfg or {}

        def _section(name: str, typ, keys=None) -> dict:
            raw = cfg.get(name) or {}
            if not isinstance(raw, dict):
                raise ConfigError(f"Config section '{name}' must be a mapping")
            known = typ.__dataclass_fields__.keys() if keys is None else keys
            unknown = set(raw) - set(known)
            if unknown:
                raise ConfigError(f"Unknown keys in '{name}': {sorted(unknown)}")
            try:
                return {k: _coerce(typ, k, v) for k, v in raw.items()}
            except (TypeError, ValueError) as ex:
                raise ConfigError(f"Invalid value in '{name}': {ex}") from ex

        return cls(
            pyramid=PyramidConfig(**_section("pyramid", PyramidConfig)),
            candidates=CandidateConfig(**_section("candidates", CandidateConfig)),
            align=AlignConfig(**_section("align", AlignConfig)),
            keyframe=KeyframeConfig(**_section("keyframe", KeyframeConfig)),
            window=WindowConfig(**_section("window", WindowConfig)),
            **_section("tracking", cls, TRACKING_KEYS),
        )

    def to_dict(self) -> dict:
        d = asdict(self)
        d["tracking"] = {k: d.pop(k) for k in TRACKING_KEYS}
        return d

    def validate(self) -> None:
        if self.pyramid.levels < 1:
            raise ConfigError(f"pyramid.levels must be >= 1, got {self.pyramid.levels}")
        if self.window.capacity < 1:
            raise ConfigError(f"window.capacity must be >= 1, got {self.window.capacity}")
        c = self.candidates
        if c.cell_size < 1 or c.max_per_level < 1 or c.border < 1:
            raise ConfigError("candidates.cell_size, max_per_level and border must be >= 1")
        if c.min_candidates < 1:
            raise ConfigError("candidates.min_candidates must be >= 1")
        if c.grad_threshold < 0:
            raise ConfigError("candidates.grad_threshold must be >= 0")
        if c.min_candidates > c.max_per_level:
            raise ConfigError("candidates.min_candidates cannot exceed candidates.max_per_level")
        if c.inverse_depth_prior <= 0:
            raise ConfigError("candidates.inverse_depth_prior must be > 0")
        a = self.align
        if a.max_iterations < 1 or a.epsilon <= 0 or a.huber_delta <= 0:
            raise ConfigError("align.max_iterations, epsilon and huber_delta must be positive")
        if a.lambda_up <= 1.0 or a.lambda_down <= 1.0 or a.init_lambda < 0:
            raise ConfigError("align.lambda_up/lambda_down must be > 1 and init_lambda >= 0")
        if a.max_damping_steps < 1 or a.min_residuals < 1:
            raise ConfigError("align.max_damping_steps and min_residuals must be >= 1")
        if not 0.0 <= self.keyframe.min_valid_ratio <= 1.0:
            raise ConfigError("keyframe.min_valid_ratio must be in [0, 1]")
        if self.keyframe.max_rotation_deg <= 0 or self.keyframe.max_translation <= 0:
            raise ConfigError("keyframe.max_rotation_deg and max_translation must be > 0")
        if self.fallback not in ("const_vel", "identity"):
            raise ConfigError(f"tracking.fallback must be const_vel or identity, got {self.fallback!r}")
        if self.init_motion not in ("const_vel", "identity"):
            raise ConfigError(f"tracking.init_motion must be const_vel or identity, got {self.init_motion!r}")
        if self.gradient_workers < 1:
            raise ConfigError("tracking.gradient_workers must be >= 1")


def _coerce(typ, name: str, value):
    """Coerce a YAML scalar to the type of the dataclass field's default."""
    kind = type(typ.__dataclass_fields__[name].default)
    if kind is bool:
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be true or false, got {value!r}")
        return value
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ValueError(f"{name} must be an integer, got {value!r}")
    return kind(value)
