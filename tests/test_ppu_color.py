from __future__ import annotations

import pytest

from agbhw.ppu_color import blend, brighten, darken, rgb555_to_argb

COLORS = [0x0000, 0x001F, 0x03E0, 0x7C00, 0x7FFF, 0x1234, 0x5A5A, 0x2D6B]


def test_rgb555_black_is_opaque_black():
    assert rgb555_to_argb(0) == 0xFF000000


def test_rgb555_white_is_opaque_white():
    assert rgb555_to_argb(0x7FFF) == 0xFFFFFFFF


def test_rgb555_pure_red():
    assert rgb555_to_argb(0x001F) == 0xFFFF0000


@pytest.mark.parametrize("color", COLORS)
def test_rgb555_channels_are_monotonic(color):
    argb = rgb555_to_argb(color)
    assert argb >> 24 == 0xFF
    assert ((argb >> 16) & 0xFF) >> 3 == color & 31
    assert ((argb >> 8) & 0xFF) >> 3 == (color >> 5) & 31
    assert (argb & 0xFF) >> 3 == (color >> 10) & 31


@pytest.mark.parametrize("a", COLORS)
@pytest.mark.parametrize("b", COLORS)
def test_blend_full_weight_keeps_one_side(a, b):
    assert blend(a, b, 16, 0) == a
    assert blend(a, b, 0, 16) == b


@pytest.mark.parametrize("a", COLORS)
def test_blend_coefficients_are_capped(a):
    assert blend(a, 0x7FFF, 31, 0) == a


@pytest.mark.parametrize("a", COLORS)
@pytest.mark.parametrize("b", COLORS)
def test_blend_is_symmetric(a, b):
    assert blend(a, b, 5, 11) == blend(b, a, 11, 5)


@pytest.mark.parametrize("a", COLORS)
def test_blend_saturates_at_white(a):
    assert blend(0x7FFF, 0x7FFF, 16, 16) == 0x7FFF
    assert blend(a, a, 8, 8) == a


@pytest.mark.parametrize("color", COLORS)
def test_brighten_limits(color):
    assert brighten(color, 0) == color
    assert brighten(color, 16) == 0x7FFF
    assert brighten(color, 40) == 0x7FFF


@pytest.mark.parametrize("color", COLORS)
def test_darken_limits(color):
    assert darken(color, 0) == color
    assert darken(color, 16) == 0
    assert darken(color, 40) == 0


@pytest.mark.parametrize("color", COLORS)
def test_effects_move_each_channel_in_the_right_direction(color):
    def channels(c):
        return c & 31, (c >> 5) & 31, (c >> 10) & 31

    for before, lighter, darker in zip(channels(color), channels(brighten(color, 7)), channels(darken(color, 7))):
        assert darker <= before <= lighter