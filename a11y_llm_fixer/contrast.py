"""WCAG contrast ratio utilities.

Local computation used when the accessibility server cannot answer a
``check_color_contrast`` request and by the fix validation hook.
"""
from __future__ import annotations
import re
from typing import Optional, Tuple

from .schema import ContrastResult

AA_THRESHOLD = 4.5
AAA_THRESHOLD = 7.0

_HEX_RE = re.compile(r"^#?([0-9a-fA-F]{6})$")


def parse_hex_color(color: str) -> Optional[Tuple[int, int, int]]:
    """Return the (r, g, b) channels of a 6-digit hex color, or None if malformed."""
    if not isinstance(color, str):
        return None
    m = _HEX_RE.match(color.strip())
    if not m:
        return None
    digits = m.group(1)
    return int(digits[0:2], 16), int(digits[2:4], 16), int(digits[4:6], 16)


def _linearize(channel: int) -> float:
    c = channel / 255
    if c <= 0.03928:
        return c / 12.92
    return ((c + 0.055) / 1.055) ** 2.4


def relative_luminance(rgb: Tuple[int, int, int]) -> float:
    r, g, b = (_linearize(ch) for ch in rgb)
    return 0.2126 * r + 0.7152 * g + 0.0722 * b


def failing_result() -> ContrastResult:
    return ContrastResult(contrast_ratio=1.0, passes=False, wcag_aa=False, wcag_aaa=False)


def contrast_ratio(color_a: str, color_b: str) -> ContrastResult:
    """Compute the WCAG contrast ratio between two colors.

    ratio = (L_light + 0.05) / (L_dark + 0.05)
    Handles edge cases:
      - Malformed colors (wrong length, non-hex, not a string) -> ratio 1.0
        with every flag false; never raises.
      - Identical colors -> 1.0
    Parameters:
      color_a, color_b: hex colors such as ``#1a2b3c`` (leading ``#`` optional)
    Returns:
      ContrastResult with ``passes``/``wcag_aa`` at 4.5:1 and ``wcag_aaa`` at 7:1.
    """
    rgb_a = parse_hex_color(color_a)
    rgb_b = parse_hex_color(color_b)
    if rgb_a is None or rgb_b is None:
        return failing_result()
    lum_a = relative_luminance(rgb_a)
    lum_b = relative_luminance(rgb_b)
    ratio = (max(lum_a, lum_b) + 0.05) / (min(lum_a, lum_b) + 0.05)
    passes = ratio >= AA_THRESHOLD
    return ContrastResult(
        contrast_ratio=ratio,
        passes=passes,
        wcag_aa=passes,
        wcag_aaa=ratio >= AAA_THRESHOLD,
    )


__all__ = ["contrast_ratio", "parse_hex_color", "relative_luminance", "failing_result"]
