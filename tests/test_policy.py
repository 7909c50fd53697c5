import numpy as np

from dvo.errors import TrackingDegenerate
from dvo.geom.se3 import exp_se3
from dvo.system.config import TrackerConfig
from dvo.system.policy import TrackingPolicy
from dvo.system.proposal import Evidence, PoseEstimate


def _failed():
    err = TrackingDegenerate("flat", level=0)
    return PoseEstimate("direct", np.eye(4), Evidence(), valid=False, reason="REJECT_DIRECT_DEGENERATE", error=err)


def test_accepts_valid_direct_estimate():
    est = PoseEstimate("direct", exp_se3(np.full(6, 0.01)), Evidence(), valid=True)
    chosen = TrackingPolicy(TrackerConfig()).choose(est, None)
    assert chosen is est and chosen.reason == "ACCEPT_DIRECT"


def test_const_vel_fallback_reuses_last_motion():
    last = exp_se3(np.array([0.1, 0, 0, 0, 0, 0]))
    chosen = TrackingPolicy(TrackerConfig(fallback="const_vel")).choose(_failed(), last)
    assert chosen.name == "const_vel" and chosen.reason == "FALLBACK_CONST_VEL"
    np.testing.assert_array_equal(chosen.T_cur_ref, last)
    assert chosen.T_cur_ref is not last
    assert isinstance(chosen.error, TrackingDegenerate)


def test_const_vel_without_history_is_identity():
    chosen = TrackingPolicy(TrackerConfig()).choose(_failed(), None)
    np.testing.assert_array_equal(chosen.T_cur_ref, np.eye(4))


def test_identity_fallback():
    last = exp_se3(np.array([0.1, 0, 0, 0, 0, 0]))
    chosen = TrackingPolicy(TrackerConfig(fallback="identity")).choose(_failed(), last)
    assert chosen.reason == "FALLBACK_IDENTITY"
    np.testing.assert_array_equal(chosen.T_cur_ref, np.eye(4))


def test_init_motion():
    last = exp_se3(np.array([0.1, 0, 0, 0, 0, 0]))
    np.testing.assert_array_equal(TrackingPolicy(TrackerConfig()).init_motion(last), last)
    np.testing.assert_array_equal(TrackingPolicy(TrackerConfig(init_motion="identity")).init_motion(last), np.eye(4))


def test_degraded_direct_estimate_is_accepted_and_flagged():
    est = PoseEstimate("direct", exp_se3(np.full(6, 0.01)), Evidence(degraded_levels=[2]), valid=True)
    chosen = TrackingPolicy(TrackerConfig()).choose(est, None)
    assert chosen is est and chosen.reason == "ACCEPT_DIRECT_DEGRADED"
