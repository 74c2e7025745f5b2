"""
COA Expert System — Normalization Utilities

Numeric parsing, unit detection and conversion, and the cleanup passes that
run over raw report text before any field is extracted.

Conversions are exact by definition of mass fraction:
    1 % == 10 mg/g == 10 000 ug/g (ppm)

The decimal-repair and overflow passes are heuristics for artifacts of
upstream PDF/OCR text extraction. They are tuned on real reports but are not
guaranteed to be correct for every lab's template.
"""
from __future__ import annotations
import logging
import math
import re
from typing import Optional

from models import Unit

logger = logging.getLogger(__name__)

# ============================================================
# Numeric Parsing
# ============================================================

_NUMBER_RE = re.compile(r'-?\d+(?:\.\d+)?|-?\.\d+')


def parse_number(text: Optional[str]) -> Optional[float]:
    """First integer/decimal token in `text` after removing thousands separators."""
    if text is None:
        return None
    m = _NUMBER_RE.search(str(text).replace(',', ''))
    if not m:
        return None
    try:
        return float(m.group(0))
    except ValueError:
        return None

# ============================================================
# Units
# ============================================================

UNIT_PATTERN = r'%|mg\s*/\s*g|[µμu]g\s*/\s*g|ppm'

_UNIT_PATTERNS: list[tuple[re.Pattern[str], Unit]] = [
    (re.compile(r'%'), Unit.PERCENT),
    (re.compile(r'mg\s*/\s*g', re.IGNORECASE), Unit.MG_PER_G),
    (re.compile(r'[µμu]g\s*/\s*g|\bppm\b', re.IGNORECASE), Unit.UG_PER_G),
]


def detect_unit(token: Optional[str]) -> Optional[Unit]:
    if not token:
        return None
    for pat, unit in _UNIT_PATTERNS:
        if pat.search(token):
            return unit
    return None


def percent_from_mg_per_g(value: float) -> float:
    return value / 10


def percent_from_ug_per_g(value: float) -> float:
    return value / 10000


def fix_overflow(value: Optional[float]) -> Optional[float]:
    """Undo a dropped decimal point in a percent reading ("1050%" -> 10.5).

    Divides by 10 until the value is at most 100. Best-effort only: a genuine
    reading cannot exceed 100 %, but the repaired value is a guess.
    """
    if value is None:
        return None
    if not math.isfinite(value):
        return None
    while value > 100:
        value = value / 10
    return value


def to_percent(value: Optional[float], unit: Optional[Unit]) -> Optional[float]:
    """Convert a reading to percent; `None` when the unit is unknown."""
    if value is None or unit is None:
        return None
    if unit == Unit.PERCENT:
        return fix_overflow(value)
    if unit == Unit.MG_PER_G:
        return percent_from_mg_per_g(value)
    if unit == Unit.UG_PER_G:
        return percent_from_ug_per_g(value)
    return None

# ============================================================
# Decimal Repair
# ============================================================

# Only whole digit groups join: the left group may not continue an earlier
# decimal, and the right group must end at a unit, separator or line end.
_GROUP_END = r'(?=$|[^\w.,-]|(?:' + UNIT_PATTERN + r'))'

# "12 . 34" -> "12.34": same spacing on both sides of the point
_SPLIT_POINT_RE = re.compile(
    r'(?<![\d.,])(\d+)([ \t]*)\.\2(\d{1,4})' + _GROUP_END,
    re.IGNORECASE | re.MULTILINE,
)
# "12. 34%" -> "12.34%": uneven spacing only right before a unit
_SPLIT_POINT_UNIT_RE = re.compile(
    r'(?<![\d.,])(\d+)[ \t]*\.[ \t]*(\d{1,4})(?=[ \t]*(?:' + UNIT_PATTERN + r'))',
    re.IGNORECASE,
)
# "12,5" -> "12.5"; a comma before exactly three digits is a thousands
# separator, and "1,8-cineole" is a name
_SPLIT_COMMA_RE = re.compile(
    r'(?<![\d.,])(\d+)[ \t]*,(\d{1,2}|\d{4})' + _GROUP_END,
    re.IGNORECASE | re.MULTILINE,
)
# "12  34%" -> "12.34%": two or more spaces, only right before a unit
_SPLIT_SPACE_RE = re.compile(
    r'(?<![\d.,])(\d+)[ \t]{2,}(\d{2,4})(?=[ \t]*(?:' + UNIT_PATTERN + r'))',
    re.IGNORECASE,
)


def repair_decimals(text: str) -> str:
    if not text:
        return text
    out = _SPLIT_POINT_RE.sub(r'\1.\3', text)
    out = _SPLIT_POINT_UNIT_RE.sub(r'\1.\2', out)
    out = _SPLIT_COMMA_RE.sub(r'\1.\2', out)
    out = _SPLIT_SPACE_RE.sub(r'\1.\2', out)
    return out

# ============================================================
# Text Normalization
# ============================================================

_ODD_SPACES_RE = re.compile(r"[\u00a0\u2007\u2009\u200a\u202f\u3000]")


def normalize_text(text: Optional[str]) -> str:
    """Newline/space cleanup plus decimal repair; line structure is kept."""
    if not text:
        return ''
    t = text.replace('\r\n', '\n').replace('\r', '\n')
    t = _ODD_SPACES_RE.sub(' ', t)
    t = t.replace('\x00', '')
    return repair_decimals(t)


def flatten_text(text: str) -> str:
    """Single-line form used for label-proximity searches."""
    return re.sub(r'\s+', ' ', text).strip()


def split_lines(text: str) -> list[str]:
    return [re.sub(r'\s{2,}', ' ', line).strip() for line in text.split('\n')]

# ============================================================
# Column-Unit Context
# ============================================================

# Header phrases that declare the unit of a results column
_COLUMN_UNIT_PATTERNS = [
    re.compile(r'\bresults?\s*\(\s*(%|mg\s*/\s*g|ppm|[µμu]g\s*/\s*g)\s*\)', re.IGNORECASE),
    re.compile(r'\bunits?\s*:\s*(%|mg\s*/\s*g|ppm|[µμu]g\s*/\s*g)', re.IGNORECASE),
    re.compile(r'\bamount\s*\(\s*(%)\s*(?:w\s*/\s*w|wt\s*/\s*wt)?\s*\)', re.IGNORECASE),
    re.compile(r'\bresult\s*(%)\s*\(total\)', re.IGNORECASE),
    re.compile(r'(%)\s*(?:w\s*/\s*w|wt\s*/\s*wt)\b', re.IGNORECASE),
    re.compile(r'(%) of total terpenes', re.IGNORECASE),
    re.compile(r'\b(percent) of total\b', re.IGNORECASE),
]


def detect_column_unit(text: str) -> Optional[Unit]:
    """Default unit declared by a table header, if the report has one."""
    if not text:
        return None
    for pat in _COLUMN_UNIT_PATTERNS:
        m = pat.search(text)
        if m:
            token = m.group(1)
            if token.lower() == 'percent':
                return Unit.PERCENT
            unit = detect_unit(token)
            if unit:
                logger.debug(f"Column unit {unit.value} declared by {m.group(0)!r}")
                return unit
    return None
