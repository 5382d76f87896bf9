"""Apply LLM-proposed fixes to a document.

Each fix is tried in order against the progressively patched text:
  1. verbatim ``original_code`` -> first occurrence replaced
  2. color-contrast fixes only: property-scoped fallback that rewrites every
     ``color: <old>`` (then ``background-color: <old>``) declaration
  3. otherwise the fix is reported as not applied
"""
from __future__ import annotations

import logging
import re
from typing import Callable, Iterable, List, Optional, Tuple

from .contrast import parse_hex_color
from .schema import ApplyResult, ContrastPolicy, ContrastResult, Fix, FixOutcome

logger = logging.getLogger(__name__)

ContrastValidator = Callable[[str, str], ContrastResult]

# 'color' must not be the tail of another property such as background-color
_FG_PROP = r"(?<![\w-])color"
_BG_PROP = r"(?<![\w-])background-color"
_VALUE = r"\s*:\s*([^;\"'<>{}]+)"


def _declared_value(prop: str, code: str) -> Optional[str]:
    m = re.search(prop + _VALUE, code, flags=re.IGNORECASE)
    if not m:
        return None
    value = m.group(1).strip()
    return value or None


def extract_colors(code: str) -> Tuple[Optional[str], Optional[str]]:
    """Return the (foreground, background) values declared in a CSS/HTML snippet."""
    return _declared_value(_FG_PROP, code), _declared_value(_BG_PROP, code)


def _replace_declarations(document: str, prop: str, fix: Fix) -> str:
    old = _declared_value(prop, fix.original_code)
    new = _declared_value(prop, fix.fixed_code)
    if old is None or new is None:
        return document
    # Only the value is swapped; the property spelling and spacing stay as written
    pattern = re.compile("(" + prop + r"\s*:\s*)" + re.escape(old) + r"(?![\w-])", flags=re.IGNORECASE)
    return pattern.sub(lambda m: m.group(1) + new, document)


def apply_color_fallback(document: str, fix: Fix) -> str:
    """Rewrite color declarations named in the fix; returns the document unchanged on no match."""
    patched = _replace_declarations(document, _FG_PROP, fix)
    if patched != document:
        return patched
    return _replace_declarations(document, _BG_PROP, fix)


def _measurable(value: str) -> Optional[str]:
    color = value.split("!", 1)[0].strip()
    return color if parse_hex_color(color) is not None else None


def _fails_validation(fix: Fix, validator: ContrastValidator) -> Optional[ContrastResult]:
    """Return the failing result for a measured color pair, or None when it passes or can't be measured."""
    fg, bg = extract_colors(fix.fixed_code)
    if fg is None or bg is None:
        return None
    fg, bg = _measurable(fg), _measurable(bg)
    if fg is None or bg is None:
        # Shorthand hex, named colors, rgb() etc.: no verdict
        logger.info("Cannot measure contrast for '%s', treating as valid", fix.description)
        return None
    result = validator(fg, bg)
    return None if result.passes else result


def apply_fixes(
    document: str,
    fixes: Iterable[Fix],
    validator: Optional[ContrastValidator] = None,
    policy: ContrastPolicy = ContrastPolicy.SKIP,
) -> ApplyResult:
    content = document
    outcomes: List[FixOutcome] = []
    for fix in fixes:
        if not fix.original_code:
            outcomes.append(FixOutcome(fix=fix, applied=False, reason="empty original code"))
            continue

        if fix.type == "color-contrast" and validator is not None:
            failed = _fails_validation(fix, validator)
            if failed is not None:
                msg = f"new colors fail WCAG AA ({failed.contrast_ratio:.2f}:1)"
                if policy is ContrastPolicy.SKIP:
                    logger.warning("Skipping color fix '%s': %s", fix.description, msg)
                    outcomes.append(FixOutcome(fix=fix, applied=False, reason=msg))
                    continue
                logger.warning("Color fix '%s' may not meet contrast requirements: %s", fix.description, msg)

        if fix.original_code in content:
            content = content.replace(fix.original_code, fix.fixed_code, 1)
            outcomes.append(FixOutcome(fix=fix, applied=True, strategy="exact"))
            logger.info("Applied: %s", fix.description)
            continue

        if fix.type == "color-contrast":
            patched = apply_color_fallback(content, fix)
            if patched != content:
                content = patched
                outcomes.append(FixOutcome(fix=fix, applied=True, strategy="color-fallback"))
                logger.info("Applied color fix: %s", fix.description)
                continue

        logger.info("Could not find code to replace for: %s", fix.description)
        outcomes.append(FixOutcome(fix=fix, applied=False, reason="original code not found"))

    result = ApplyResult(content=content, outcomes=outcomes)
    logger.info("Applied %d out of %d fixes", result.applied_count, len(outcomes))
    return result
