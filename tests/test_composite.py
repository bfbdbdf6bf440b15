import numpy as np
import pytest

from photocut.composite import (
    OpaqueBounds,
    apply_alpha_mask,
    composite_on_white,
    expand_and_clamp,
    find_opaque_bounds,
    force_pure_white_outside_bounds,
    make_square_centered,
    resize_to_fit,
    scale_bounds,
)


def _transparent(h, w):
    return np.zeros((h, w, 4), dtype=np.uint8)


def test_find_opaque_bounds_single_block():
    img = _transparent(30, 30)
    img[5:15, 5:15] = (10, 20, 30, 255)
    assert find_opaque_bounds(img) == OpaqueBounds(5, 5, 10, 10)


def test_bounds_edges_derive_from_origin_and_size():
    b = OpaqueBounds(2, 3, 4, 5)
    assert (b.x, b.y, b.right, b.bottom) == (2, 3, 6, 8)
    assert not hasattr(b, "left") and not hasattr(b, "top")


def test_find_opaque_bounds_empty_sentinel():
    b = find_opaque_bounds(_transparent(16, 16))
    assert b.width == 0
    assert b.is_empty


def test_alpha_at_floor_does_not_count():
    img = _transparent(8, 8)
    img[2, 2, 3] = 10
    img[4, 6, 3] = 11
    assert find_opaque_bounds(img) == OpaqueBounds(6, 4, 1, 1)


def test_square_of_empty_image_is_opaque_white():
    out = make_square_centered(_transparent(20, 40), 300, 0.1)
    assert out.shape == (300, 300, 4)
    assert (out == 255).all()


def test_square_centres_and_scales_subject():
    img = _transparent(200, 300)
    img[20:70, 40:140] = (200, 10, 10, 255)  # 100x50 subject
    out = make_square_centered(img, 400, 0.1)

    assert out.shape == (400, 400, 4)
    # inner box 360 -> subject becomes 360x180, centred
    assert find_opaque_bounds(out) == OpaqueBounds(20, 110, 360, 180)
    assert out[0, 0, 3] == 0
    assert out[200, 200, 3] == 255
    np.testing.assert_allclose(out[200, 200, :3].astype(int), [200, 10, 10], atol=1)


def test_square_padding_is_clamped_and_inner_size_has_a_floor():
    img = _transparent(60, 60)
    img[5:55, 5:55] = (0, 0, 0, 255)
    out = make_square_centered(img, 210, 0.9)
    # 210 * (1 - 0.45) = 115 < 200 -> 200
    assert find_opaque_bounds(out) == OpaqueBounds(5, 5, 200, 200)


def test_composite_on_white():
    img = _transparent(2, 2)
    img[0, 0] = (255, 0, 0, 255)
    img[0, 1] = (0, 0, 0, 128)
    out = composite_on_white(img)

    assert (out[..., 3] == 255).all()
    assert tuple(out[0, 0, :3]) == (255, 0, 0)
    assert tuple(out[1, 1, :3]) == (255, 255, 255)
    assert abs(int(out[0, 1, 0]) - 127) <= 1
    # input untouched
    assert img[1, 1, 3] == 0


def test_force_pure_white_outside_bounds():
    img = np.full((10, 10, 4), 100, dtype=np.uint8)
    force_pure_white_outside_bounds(img, OpaqueBounds(2, 3, 4, 5))
    assert (img[3:8, 2:6] == 100).all()
    assert (img[0] == 255).all()
    assert (img[:, 9] == 255).all()
    assert (img[8:, :] == 255).all()


def test_force_pure_white_with_empty_bounds_whitens_everything():
    img = np.zeros((4, 4, 4), dtype=np.uint8)
    force_pure_white_outside_bounds(img, OpaqueBounds.empty())
    assert (img == 255).all()


def test_scale_and_expand_bounds():
    assert scale_bounds(OpaqueBounds(10, 20, 30, 40), 100, 100, 50, 50) == OpaqueBounds(5, 10, 15, 20)
    assert scale_bounds(OpaqueBounds.empty(), 100, 100, 50, 50).is_empty
    assert scale_bounds(OpaqueBounds(0, 0, 1, 1), 100, 100, 10, 10).width == 1

    assert expand_and_clamp(OpaqueBounds(2, 2, 10, 10), 14, 20, 5) == OpaqueBounds(0, 0, 14, 17)


@pytest.mark.parametrize(
    "src, box, expected",
    [((100, 200), (50, 50), (25, 50)), ((100, 100), (300, 200), (200, 200)), ((40, 40), (40, 40), (40, 40))],
)
def test_resize_to_fit(src, box, expected):
    h, w = src
    out = resize_to_fit(np.zeros((h, w, 4), dtype=np.uint8), *box)
    assert out.shape[:2] == (expected[0], expected[1])
    mask = resize_to_fit(np.zeros((h, w), dtype=np.uint8), *box)
    assert mask.shape == out.shape[:2]


class TestApplyAlphaMask:
    def _pixel(self, rgb, alpha):
        img = np.zeros((1, 1, 4), dtype=np.uint8)
        img[0, 0, :3] = rgb
        img[0, 0, 3] = alpha
        return img

    def test_multiplies_alpha(self):
        img = self._pixel((10, 20, 30), 100)
        apply_alpha_mask(img, np.array([[255]], dtype=np.uint8))
        assert img[0, 0, 3] == 100

        img = self._pixel((10, 20, 30), 255)
        apply_alpha_mask(img, np.array([[0]], dtype=np.uint8), dehalo=True)
        assert tuple(img[0, 0]) == (10, 20, 30, 0)

    def test_dehalo_unblends_semi_transparent_colour(self):
        img = self._pixel((191, 191, 191), 255)
        apply_alpha_mask(img, np.array([[128]], dtype=np.uint8), dehalo=True)
        assert tuple(img[0, 0]) == (137, 137, 137, 128)

    def test_dehalo_keeps_pure_white_white(self):
        img = self._pixel((255, 255, 255), 255)
        apply_alpha_mask(img, np.array([[128]], dtype=np.uint8), dehalo=True)
        assert tuple(img[0, 0, :3]) == (255, 255, 255)

    def test_without_dehalo_colour_is_kept(self):
        img = self._pixel((191, 191, 191), 255)
        apply_alpha_mask(img, np.array([[128]], dtype=np.uint8), dehalo=False)
        assert tuple(img[0, 0]) == (191, 191, 191, 128)

    def test_opaque_pixels_bypass_dehalo(self):
        img = self._pixel((191, 50, 7), 255)
        apply_alpha_mask(img, np.array([[255]], dtype=np.uint8), dehalo=True)
        assert tuple(img[0, 0]) == (191, 50, 7, 255)

    def test_shape_mismatch(self):
        with pytest.raises(ValueError):
            apply_alpha_mask(np.zeros((2, 2, 4), dtype=np.uint8), np.zeros((3, 3), dtype=np.uint8))
