"""
COA Expert System — Type & Strain Classification

Lineage (Sativa / Indica / Hybrid) or product form, and the product or strain
name printed on the report.
"""
from __future__ import annotations
import logging
import re
from pathlib import PurePosixPath
from typing import Callable, Optional
from urllib.parse import unquote, urlparse

from models import Lineage
from normalization import normalize_text

logger = logging.getLogger(__name__)

# ============================================================
# Lineage / Type
# ============================================================

_LINEAGE_RE = re.compile(r'\b(Sativa|Indica|Hybrid)\b', re.IGNORECASE)
_TYPE_ROW_RE = re.compile(r'\bType\s*[:\-][ \t]*([^\n]+?)(?=[ \t]{2,}|\n|$)', re.IGNORECASE)
# SKU-style lineage code, e.g. "TRU-FLOWER-WCAKE-H-FL"
_SKU_LINEAGE_RE = re.compile(r'-([IHS])-[A-Z]{2}\b')

SKU_LINEAGE = {'I': Lineage.INDICA, 'H': Lineage.HYBRID, 'S': Lineage.SATIVA}


def _lineage_word(text: str) -> Optional[str]:
    m = _LINEAGE_RE.search(text)
    return Lineage(m.group(1).capitalize()).value if m else None


def lineage_from_keyword(text: str) -> Optional[str]:
    return _lineage_word(text)


def lineage_from_type_row(text: str) -> Optional[str]:
    """Value of a 'Type:' row; the lineage keyword in it, else the row as printed."""
    m = _TYPE_ROW_RE.search(text)
    if not m:
        return None
    row = m.group(1).strip()
    if not row:
        return None
    return _lineage_word(row) or row


def lineage_from_sku(text: str) -> Optional[str]:
    m = _SKU_LINEAGE_RE.search(text)
    return SKU_LINEAGE[m.group(1)].value if m else None


TypeStrategy = Callable[[str], Optional[str]]

# Ordered: first strategy that returns a value wins
TYPE_STRATEGIES: tuple[TypeStrategy, ...] = (
    lineage_from_keyword,
    lineage_from_type_row,
    lineage_from_sku,
)


def classify_type(text: str) -> Optional[str]:
    if not text:
        return None
    normalized = normalize_text(text)
    for strategy in TYPE_STRATEGIES:
        found = strategy(normalized)
        if found:
            logger.debug(f"Type resolved by {strategy.__name__}: {found}")
            return found
    return None

# ============================================================
# Strain / Product Name
# ============================================================

STRAIN_LABEL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r'\bStrain(?:\s*Name)?\s*[:\-][ \t]*(.+)', re.IGNORECASE),
    re.compile(r'\bCultivar(?:\(s\)|s)?\s*[:\-][ \t]*(.+)', re.IGNORECASE),
    re.compile(r'\bSample\s*Alias\s*[:\-][ \t]*(.+)', re.IGNORECASE),
    re.compile(r'\bProduct\s*Name\s*[:\-][ \t]*(.+)', re.IGNORECASE),
    re.compile(r'\bItem\s*[:\-][ \t]*(.+)', re.IGNORECASE),
)


def _clean_label_value(value: str) -> str:
    return re.sub(r'\s+', ' ', value).strip()


def guess_name_from_locator(uri: Optional[str]) -> Optional[str]:
    """Readable name from the last path segment of a document URL or path.

    "https://x/lab-reports/wedding-cake_3.pdf" -> "Wedding Cake 3"
    """
    if not uri:
        return None
    parsed = urlparse(str(uri))
    path = parsed.path if parsed.scheme else str(uri)
    segment = unquote(PurePosixPath(path).name).strip()
    if not segment:
        return None
    base = re.sub(r'\.(pdf|html?|txt)$', '', segment, flags=re.IGNORECASE)
    words = re.sub(r'[-_]+', ' ', base).strip()
    if not words:
        return None
    return re.sub(r'\b\w', lambda m: m.group(0).upper(), words)


def extract_strain_name(text: str, source_uri: Optional[str] = None) -> Optional[str]:
    """Name from the first label found; locator-based guess when none match."""
    if text:
        for pat in STRAIN_LABEL_PATTERNS:
            m = pat.search(text)
            if not m:
                continue
            value = _clean_label_value(m.group(1))
            if value:
                return value
    if source_uri:
        return guess_name_from_locator(source_uri)
    return None
