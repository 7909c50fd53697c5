import numpy as np
import pytest

from dvo.errors import ContractViolation
from dvo.geom.se3 import exp_se3
from dvo.system.config import KeyframeConfig
from dvo.system.keyframes import KeyframeManager, KeyframeState
from dvo.system.proposal import Evidence, PoseEstimate
from dvo.system.state import Frame, FrameStore


def _direct(valid_ratio):
    return PoseEstimate("direct", np.eye(4), Evidence(valid_ratio=valid_ratio), valid=True)


@pytest.fixture
def store():
    s = FrameStore(capacity=5)
    for i in range(3):
        s.ingest(Frame(idx=i))
    return s


def test_first_frame_is_always_promoted(store):
    km = KeyframeManager(KeyframeConfig())
    assert km.state is KeyframeState.NO_KEYFRAME
    assert km.promotion_reason(None) == "FIRST_FRAME"
    km.promote(store.oldest, store, "FIRST_FRAME")
    assert km.state is KeyframeState.HAS_KEYFRAME
    assert km.active is store.oldest and store.oldest.is_keyframe


def test_no_promotion_without_motion(store):
    km = KeyframeManager(KeyframeConfig())
    km.promote(store.oldest, store)
    km.accumulate(np.eye(4))
    assert not km.should_promote(_direct(1.0))


def test_low_valid_ratio_promotes(store):
    km = KeyframeManager(KeyframeConfig(min_valid_ratio=0.6))
    km.promote(store.oldest, store)
    assert km.promotion_reason(_direct(0.4)).startswith("LOW_VALID_RATIO")


def test_degraded_estimate_promotes(store):
    km = KeyframeManager(KeyframeConfig())
    km.promote(store.oldest, store)
    est = PoseEstimate("direct", np.eye(4), Evidence(valid_ratio=1.0, degraded_levels=[1]), valid=True)
    assert km.promotion_reason(est) == "DEGRADED"


def test_accumulated_motion_promotes(store):
    km = KeyframeManager(KeyframeConfig(max_rotation_deg=5.0, max_translation=0.1))
    km.promote(store.oldest, store)
    step = exp_se3(np.array([0.04, 0.0, 0.0, 0.0, 0.0, 0.0]))
    km.accumulate(step)
    km.accumulate(step)
    assert km.promotion_reason(_direct(1.0)) is None
    km.accumulate(step)
    assert km.promotion_reason(_direct(1.0)).startswith("TRANSLATION")

    km.promote(store.latest, store)
    np.testing.assert_array_equal(km.T_cur_kf, np.eye(4))
    km.accumulate(exp_se3(np.array([0, 0, 0, 0, np.radians(6.0), 0])))
    assert km.promotion_reason(_direct(1.0)).startswith("ROTATION")


def test_promoting_frame_outside_window_is_rejected(store):
    km = KeyframeManager(KeyframeConfig())
    with pytest.raises(ContractViolation, match="not part of the active window"):
        km.promote(Frame(idx=99), store)
    assert len(km) == 0 and km.state is KeyframeState.NO_KEYFRAME


def test_promoting_twice_is_rejected(store):
    km = KeyframeManager(KeyframeConfig())
    km.promote(store.oldest, store)
    with pytest.raises(ContractViolation):
        km.promote(store.oldest, store)


def test_keyframe_list_is_append_only(store):
    km = KeyframeManager(KeyframeConfig())
    frames = list(store)
    for f in frames:
        km.promote(f, store)
    assert [idx for idx, _ in km.export()] == [0, 1, 2]
    assert km.active is frames[-1]
