import numpy as np
import pytest

from dvo.errors import ConfigError, ContractViolation
from dvo.modules.gradient import GradientExtractor, image_gradients
from dvo.modules.pyramid import PyramidBuilder
from dvo.system.state import Frame


@pytest.mark.parametrize("levels", [1, 3, 5])
def test_level_dimensions_halve(levels):
    img = np.random.default_rng(0).integers(0, 255, size=(480, 640), dtype=np.uint8)
    pyr = PyramidBuilder(levels).build(img)
    assert len(pyr) == levels
    for k, level in enumerate(pyr):
        assert level.shape == (480 >> k, 640 >> k)
        assert level.dtype == np.float32


def test_levels_are_area_averages(image):
    pyr = PyramidBuilder(2).build(image)
    I0 = image.astype(np.float64)
    expected = 0.25 * (I0[0::2, 0::2] + I0[1::2, 0::2] + I0[0::2, 1::2] + I0[1::2, 1::2])
    np.testing.assert_allclose(pyr[1], expected, atol=1e-3)


def test_incompatible_dimensions():
    with pytest.raises(ConfigError):
        PyramidBuilder(5).build(np.zeros((100, 120), np.uint8))


def test_rejects_color_image():
    with pytest.raises(ConfigError):
        PyramidBuilder(2).build(np.zeros((32, 32, 3), np.uint8))


def test_pyramid_is_written_once(image):
    builder = PyramidBuilder(3)
    frame = builder.apply(Frame(idx=0), image)
    with pytest.raises(ContractViolation):
        builder.apply(frame, image)


def test_gradients_of_ramp():
    ramp = np.tile(np.arange(16, dtype=np.float32) * 3.0, (8, 1))
    g = image_gradients(ramp)
    np.testing.assert_allclose(g.gx[:, 1:-1], 3.0)
    np.testing.assert_allclose(g.gy, 0.0)
    np.testing.assert_allclose(g.mag[:, 1:-1], 3.0)
    assert np.all(g.gx[:, 0] == 0) and np.all(g.gx[:, -1] == 0)


@pytest.mark.parametrize("workers", [1, 3])
def test_gradient_extraction_is_idempotent(image, workers):
    frame = PyramidBuilder(3).apply(Frame(idx=0), image)
    extractor = GradientExtractor(workers=workers)
    first = extractor.apply(frame)
    snapshot = [g.mag.copy() for g in first]
    second = extractor.apply(frame)

    assert second is first
    assert extractor.num_computed == 1
    for g, m in zip(second, snapshot):
        np.testing.assert_array_equal(g.mag, m)


def test_gradients_are_deterministic(image):
    a = PyramidBuilder(3).apply(Frame(idx=0), image)
    b = PyramidBuilder(3).apply(Frame(idx=1), image)
    ga, gb = GradientExtractor().apply(a), GradientExtractor(workers=2).apply(b)
    for x, y in zip(ga, gb):
        np.testing.assert_array_equal(x.gx, y.gx)
        np.testing.assert_array_equal(x.gy, y.gy)


def test_gradients_need_a_pyramid():
    with pytest.raises(ContractViolation):
        GradientExtractor().apply(Frame(idx=0))
