import numpy as np
import pytest

from dvo.geom.se3 import Rt_to_T, exp_se3, inv_T, log_se3, rotation_angle, translation_norm


def test_exp_of_zero_is_identity():
    np.testing.assert_allclose(exp_se3(np.zeros(6)), np.eye(4), atol=1e-12)


@pytest.mark.parametrize("seed", [0, 1, 2])
def test_log_inverts_exp(seed):
    rng = np.random.default_rng(seed)
    xi = rng.normal(scale=0.3, size=6)
    T = exp_se3(xi)
    np.testing.assert_allclose(log_se3(T), xi, atol=1e-9)
    # stays a rigid transform
    R = T[:3, :3]
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_small_rotation_uses_taylor_branch():
    xi = np.array([0.1, 0.0, 0.0, 1e-12, 0.0, 0.0])
    T = exp_se3(xi)
    np.testing.assert_allclose(T[:3, 3], [0.1, 0.0, 0.0], atol=1e-12)


def test_inv_T_composes_to_identity():
    T = exp_se3(np.array([0.2, -0.1, 0.5, 0.1, 0.2, -0.3]))
    np.testing.assert_allclose(T @ inv_T(T), np.eye(4), atol=1e-12)


def test_motion_magnitudes():
    R = exp_se3(np.array([0, 0, 0, 0, 0, np.radians(30)]))[:3, :3]
    T = Rt_to_T(R, np.array([3.0, 4.0, 0.0]))
    assert np.degrees(rotation_angle(T)) == pytest.approx(30.0)
    assert translation_norm(T) == pytest.approx(5.0)
