"""
COA Expert System — Total THC Resolution

Resolves the total THC percent of a report through an ordered chain of
strategies; the first one that finds a value wins:

  1. "Total THC" label + percent          -> direct
  2. "Total THC" label + mg/g             -> direct
  3. THCA and/or delta-9 THC components   -> computed (0.877 * THCA + D9)
  4. nothing found                        -> none

All searches run on the flattened (single-line) text and only look a short
distance past each label, so a value belongs to the label it follows.
"""
from __future__ import annotations
import logging
import re
from typing import Callable, Optional

from models import ThcEstimate, ThcSource
from normalization import (
    fix_overflow, flatten_text, normalize_text, parse_number, percent_from_mg_per_g,
)

logger = logging.getLogger(__name__)

# Mass ratio THC / THCA: THCA loses its carboxyl group on decarboxylation
THCA_DECARB_FACTOR = 0.877

DEFAULT_LABEL_WINDOW = 40

# ============================================================
# Label Patterns
# ============================================================

_TOTAL_LABEL = (
    r'\bTotal\s+(?:Active\s+|Potential\s+)?'
    r'(?:(?:Δ|Delta|D)\s*-?\s*9\s*-?\s*)?THC\b(?![\s-]?A\b)'
)
_THCA_LABEL = r'\bTHC\s*-?\s*A\b'
_DELTA9_LABEL = r'(?:\b(?:Delta|D)|Δ)\s*-?\s*9\s*-?\s*THC\b(?![\s-]?A\b)'
_DELTA9_SHORT_LABEL = r'(?:\b(?:Delta|D)|Δ)\s*-?\s*9\b(?!\s*-?\s*THC\s*-?\s*A\b)'
# Bare "THC" only when it is not part of a total/acid/isomer label
_BARE_THC_LABEL = (
    r'(?<!Total )(?<!Active )(?<!Potential )(?<![-\w])THC\b(?![\s-]?A\b)'
)

_PERCENT_VALUE = r'(\d{1,3}(?:\.\d{1,4})?)\s*%'
_MG_VALUE = r'(\d{1,4}(?:\.\d{1,4})?)\s*mg\s*/\s*g'


def _window(width: int) -> str:
    # non-digit gap that may not run into another cannabinoid label
    return r'(?:(?!THC|CBD|CBG|CBN)[^0-9]){0,%d}' % width


def _find_value(label: str, value: str, text: str, window: int) -> Optional[float]:
    m = re.search(label + _window(window) + value, text, re.IGNORECASE)
    return parse_number(m.group(1)) if m else None


def find_percent(label: str, text: str, window: int = DEFAULT_LABEL_WINDOW) -> Optional[float]:
    return fix_overflow(_find_value(label, _PERCENT_VALUE, text, window))


def find_mg_per_g_as_percent(label: str, text: str,
                             window: int = DEFAULT_LABEL_WINDOW) -> Optional[float]:
    mg = _find_value(label, _MG_VALUE, text, window)
    return percent_from_mg_per_g(mg) if mg is not None else None


def _component(labels: tuple[str, ...], text: str, window: int) -> Optional[float]:
    """Percent for the first label that has a percent, else first with mg/g."""
    for label in labels:
        pct = find_percent(label, text, window)
        if pct is not None:
            return pct
    for label in labels:
        pct = find_mg_per_g_as_percent(label, text, window)
        if pct is not None:
            return pct
    return None

# ============================================================
# Strategies
# ============================================================

ThcStrategy = Callable[[str, int], Optional[ThcEstimate]]


def total_thc_percent(flat: str, window: int) -> Optional[ThcEstimate]:
    pct = find_percent(_TOTAL_LABEL, flat, window)
    if pct is None:
        return None
    return ThcEstimate(total_percent=pct, source=ThcSource.DIRECT)


def total_thc_mg_per_g(flat: str, window: int) -> Optional[ThcEstimate]:
    pct = find_mg_per_g_as_percent(_TOTAL_LABEL, flat, window)
    if pct is None:
        return None
    return ThcEstimate(total_percent=pct, source=ThcSource.DIRECT)


def computed_from_components(flat: str, window: int) -> Optional[ThcEstimate]:
    thca = _component((_THCA_LABEL,), flat, window)
    d9 = _component((_DELTA9_LABEL, _DELTA9_SHORT_LABEL, _BARE_THC_LABEL), flat, window)
    if thca is None and d9 is None:
        return None
    total = round(THCA_DECARB_FACTOR * (thca or 0.0) + (d9 or 0.0), 2)
    return ThcEstimate(
        total_percent=total, source=ThcSource.COMPUTED,
        thca_percent=thca, delta9_percent=d9,
    )


# Ordered: first strategy that returns an estimate wins
THC_STRATEGIES: tuple[ThcStrategy, ...] = (
    total_thc_percent,
    total_thc_mg_per_g,
    computed_from_components,
)


def compute_thc(text: str, window: int = DEFAULT_LABEL_WINDOW) -> ThcEstimate:
    if not text:
        return ThcEstimate()
    flat = flatten_text(normalize_text(text))
    for strategy in THC_STRATEGIES:
        estimate = strategy(flat, window)
        if estimate is not None:
            logger.debug(f"THC resolved by {strategy.__name__}: {estimate.total_percent}")
            return estimate
    return ThcEstimate()
