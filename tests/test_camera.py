import numpy as np
import pytest

from dvo.errors import ConfigError
from dvo.geom.camera import CameraIntrinsics, Rectifier

from conftest import textured_image


def test_from_dict_requires_multiple_of_16():
    cam = {"fx": 500, "fy": 500, "cx": 320, "cy": 240, "width": 650, "height": 480}
    with pytest.raises(ConfigError, match="multiples of 16"):
        CameraIntrinsics.from_dict(cam)


def test_from_dict_missing_key():
    with pytest.raises(ConfigError, match="missing"):
        CameraIntrinsics.from_dict({"fx": 1.0, "fy": 1.0, "cx": 0.0, "cy": 0.0, "width": 64})


def test_level_scaling(camera):
    levels = camera.pyramid(3)
    assert [(c.width, c.height) for c in levels] == [(128, 96), (64, 48), (32, 24)]
    assert levels[1].fx == pytest.approx(50.0)
    # pixel-centre convention: the image centre stays the image centre
    assert levels[1].cx == pytest.approx((levels[1].width - 1) / 2)
    assert levels[2].cy == pytest.approx((levels[2].height - 1) / 2)


def test_too_many_levels_is_config_error(camera):
    with pytest.raises(ConfigError):
        camera.pyramid(7)


def test_K_matrix(camera):
    K = camera.K
    assert K.shape == (3, 3)
    assert K[0, 0] == camera.fx and K[1, 2] == camera.cy


def test_rectifier_absent_without_input_block(camera):
    assert Rectifier.from_dict({"fx": 100}, camera) is None


def test_rectifier_zero_distortion_is_identity(camera):
    rect = Rectifier(camera.K, np.zeros(4), (camera.width, camera.height), camera)
    img = textured_image()
    out = rect.apply(img)
    assert out.shape == img.shape
    inner = (slice(2, -2), slice(2, -2))
    assert np.max(np.abs(out[inner].astype(int) - img[inner].astype(int))) <= 1


def test_rectifier_rejects_wrong_input_size(camera):
    rect = Rectifier(camera.K, np.zeros(5), (camera.width, camera.height), camera)
    with pytest.raises(ConfigError):
        rect.apply(np.zeros((10, 10), np.uint8))
