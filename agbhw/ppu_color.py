"""Colour conversion and the colour special effects of the compositor."""

from __future__ import annotations


def rgb555_to_argb(rgb555: int) -> int:
    """Expand a 15-bit BGR colour to opaque 32-bit ARGB."""
    r = rgb555 & 31
    g = (rgb555 >> 5) & 31
    b = (rgb555 >> 10) & 31
    return 0xFF000000 | ((r << 3 | r >> 2) << 16) | ((g << 3 | g >> 2) << 8) | (b << 3 | b >> 2)


def _components(color: int) -> tuple[int, int, int]:
    # Green carries a sixth bit taken from bit 15.
    color &= 0xFFFF
    r = color & 31
    g = ((color >> 4) & 62) | (color >> 15)
    b = (color >> 10) & 31
    return r, g, b


def _pack(r: int, g: int, b: int) -> int:
    return ((b << 10) | (g << 5) | r) & 0xFFFF


def blend(color_a: int, color_b: int, eva: int, evb: int) -> int:
    """Alpha-blend two colours with coefficients in sixteenths, each capped at 16."""
    r_a, g_a, b_a = _components(color_a)
    r_b, g_b, b_b = _components(color_b)
    eva = min(16, eva)
    evb = min(16, evb)

    r = min((r_a * eva + r_b * evb + 8) >> 4, 31)
    g = min((g_a * eva + g_b * evb + 8) >> 4, 63) >> 1
    b = min((b_a * eva + b_b * evb + 8) >> 4, 31)
    return _pack(r, g, b)


def brighten(color: int, evy: int) -> int:
    """Fade a colour towards white by evy sixteenths."""
    evy = min(16, evy)
    r, g, b = _components(color)
    r += ((31 - r) * evy + 8) >> 4
    g += ((63 - g) * evy + 8) >> 4
    b += ((31 - b) * evy + 8) >> 4
    return _pack(r, g >> 1, b)


def darken(color: int, evy: int) -> int:
    """Fade a colour towards black by evy sixteenths."""
    evy = min(16, evy)
    r, g, b = _components(color)
    r -= (r * evy + 7) >> 4
    g -= (g * evy + 7) >> 4
    b -= (b * evy + 7) >> 4
    return _pack(r, g >> 1, b)