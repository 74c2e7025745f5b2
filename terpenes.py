"""
COA Expert System — Terpene Extraction & Canonicalization

Scans report lines for terpene rows, picks the measurement on each row,
canonicalizes the analyte name, converts to percent, and ranks the result.

    extract_terpenes(text) -> ['myrcene', 'limonene', 'caryophyllene']

The vocabulary is immutable and built once at import. Callers that need
extra synonyms build an extended copy with `DEFAULT_VOCABULARY.extend(...)`
and pass it in explicitly.
"""
from __future__ import annotations
import logging
import re
from dataclasses import dataclass, field
from functools import cached_property
from types import MappingProxyType
from typing import Callable, Iterable, Mapping, Optional

from models import TerpeneObservation, TerpeneRecord, Unit
from normalization import (
    UNIT_PATTERN, detect_column_unit, detect_unit, normalize_text,
    parse_number, split_lines, to_percent,
)

logger = logging.getLogger(__name__)

# ============================================================
# Vocabulary
# ============================================================

KNOWN_TERPENES: tuple[str, ...] = (
    'myrcene', 'limonene', 'linalool', 'terpinolene', 'caryophyllene', 'humulene',
    'alpha-pinene', 'beta-pinene', 'pinene', 'ocimene', 'farnesene', 'nerolidol',
    'bisabolol', 'eucalyptol', 'camphene', 'borneol', 'caryophyllene-oxide', 'cedrol',
    'guaiol', 'sabinene', 'terpineol', 'terpinene', 'geraniol', 'isopulegol',
    'pulegone', 'phytol', 'valencene', 'fenchyl alcohol',
)

TERPENE_SYNONYMS: Mapping[str, str] = MappingProxyType({
    'β-caryophyllene': 'caryophyllene',
    'b-caryophyllene': 'caryophyllene',
    'beta-caryophyllene': 'caryophyllene',
    'trans-caryophyllene': 'caryophyllene',
    'caryophyllene oxide': 'caryophyllene-oxide',
    'α-humulene': 'humulene',
    'a-humulene': 'humulene',
    'd-limonene': 'limonene',
    '1,8-cineole': 'eucalyptol',
    'cineole': 'eucalyptol',
    'α-pinene': 'alpha-pinene',
    'a-pinene': 'alpha-pinene',
    'β-pinene': 'beta-pinene',
    'b-pinene': 'beta-pinene',
    'fenchol': 'fenchyl alcohol',
    'β-myrcene': 'myrcene',
    'b-myrcene': 'myrcene',
})

_GREEK_PREFIXES = (('α', 'alpha-'), ('β', 'beta-'), ('γ', 'gamma-'), ('δ', 'delta-'))
_LETTER_PREFIXES = {'a': 'alpha', 'b': 'beta', 'g': 'gamma'}


def _key_form(name: str) -> str:
    """Hyphen/space-insensitive comparison form of a terpene name."""
    s = name.lower().strip()
    for greek, spelled in _GREEK_PREFIXES:
        s = s.replace(greek, spelled)
    s = re.sub(r'[\s_\-]+', '-', s).strip('-')
    head, sep, rest = s.partition('-')
    if sep and head in _LETTER_PREFIXES:
        s = f'{_LETTER_PREFIXES[head]}-{rest}'
    return s


def _stem(name: str) -> str:
    """Strip isomer prefixes and oxide/alcohol suffixes to get a scan stem."""
    s = _key_form(name)
    s = re.sub(r'^(?:alpha|beta|gamma|delta|trans|cis|d|l)-', '', s)
    s = re.sub(r'-(?:oxide|alcohol)$', '', s)
    return s


@dataclass(frozen=True)
class TerpeneVocabulary:
    """Read-only canonical terpene keys plus a synonym table."""
    known: tuple[str, ...] = KNOWN_TERPENES
    synonyms: Mapping[str, str] = field(default_factory=lambda: TERPENE_SYNONYMS)

    def __post_init__(self):
        # freeze whatever mapping the caller handed us
        object.__setattr__(self, 'synonyms', MappingProxyType(dict(self.synonyms)))

    def extend(self, synonyms: Optional[Mapping[str, str]] = None,
               known: Iterable[str] = ()) -> TerpeneVocabulary:
        """New vocabulary with extra synonyms/keys; this one is left untouched."""
        merged = dict(self.synonyms)
        merged.update({k.lower().strip(): v for k, v in (synonyms or {}).items()})
        extra = tuple(k for k in known if k not in self.known)
        extra += tuple(v for v in merged.values() if v not in self.known and v not in extra)
        return TerpeneVocabulary(known=self.known + extra, synonyms=merged)

    @cached_property
    def synonym_index(self) -> Mapping[str, str]:
        return MappingProxyType({_key_form(k): v for k, v in self.synonyms.items()})

    @cached_property
    def keys_by_length(self) -> tuple[tuple[str, str], ...]:
        """(key_form, canonical) pairs, longest first so isomers win over stems."""
        pairs = {(_key_form(k), k) for k in self.known}
        return tuple(sorted(pairs, key=lambda p: (-len(p[0]), p[0])))

    @cached_property
    def name_pattern(self) -> re.Pattern[str]:
        """Matches a terpene name token, with prefixes and suffixes."""
        stems = {_stem(k) for k in self.known} | {_stem(s) for s in self.synonyms}
        alts = sorted((re.escape(s).replace(r'\-', r'[\s-]?') for s in stems if s),
                      key=len, reverse=True)
        prefix = (r'(?:(?:\(\s*[+-]\s*\)|alpha|beta|gamma|delta|trans|cis|[abdgl]'
                  r'|[αβγδ]|\d(?:,\d)?)[\s-]*){0,2}')
        return re.compile(
            r'(?<![\w-])' + prefix + r'(?:' + '|'.join(alts) + r')'
            r'(?:[\s-]*(?:oxide|alcohol))?(?![a-z])',
            re.IGNORECASE,
        )


DEFAULT_VOCABULARY = TerpeneVocabulary()

# ============================================================
# Canonicalization
# ============================================================

def canonicalize(name: Optional[str],
                 vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY) -> Optional[str]:
    """Map a raw analyte name to its canonical key.

    Unrecognized names come back lower-cased and whitespace-collapsed so
    repeated mentions still group together. Applying this twice is a no-op.
    """
    if not name:
        return None
    raw = re.sub(r'\s+', ' ', name).strip().lower()
    if not raw:
        return None
    key = _key_form(raw)
    if key in vocabulary.synonym_index:
        return vocabulary.synonym_index[key]
    for known_key, canonical in vocabulary.keys_by_length:
        if known_key in key:
            return canonical
    return raw

# ============================================================
# Measurement Tokens
# ============================================================

# Comma-grouped integers ("12,000 ug/g") are one token; parse_number drops the commas
_MEASURE_RE = re.compile(
    r'(?<![\w.,])(-?\d{1,3}(?:,\d{3})+(?:\.\d+)?|-?\d+(?:\.\d+)?|-?\.\d+)'
    r'\s*(' + UNIT_PATTERN + r')?',
    re.IGNORECASE,
)


@dataclass(frozen=True)
class NumericToken:
    text: str
    value: Optional[float]
    unit_text: str = ''

    @property
    def unit(self) -> Optional[Unit]:
        return detect_unit(self.unit_text)


@dataclass(frozen=True)
class MeasurementContext:
    """Document-level facts a row strategy may consult."""
    column_unit: Optional[Unit] = None


def find_numeric_tokens(line: str, skip: tuple[int, int] = (0, 0)) -> list[NumericToken]:
    """Numeric tokens on a line, ignoring any that overlap the `skip` span."""
    tokens = []
    for m in _MEASURE_RE.finditer(line):
        if m.start() < skip[1] and m.end() > skip[0]:
            continue
        tokens.append(NumericToken(
            text=m.group(0), value=parse_number(m.group(1)),
            unit_text=(m.group(2) or '')))
    return tokens


MeasurementStrategy = Callable[
    [list[NumericToken], MeasurementContext], Optional[tuple[NumericToken, Unit]]
]


def _explicit_percent(tokens, ctx):
    for t in tokens:
        if t.unit == Unit.PERCENT:
            return t, Unit.PERCENT
    return None


def _explicit_mg_per_g(tokens, ctx):
    for t in tokens:
        if t.unit == Unit.MG_PER_G:
            return t, Unit.MG_PER_G
    return None


def _any_gram_unit(tokens, ctx):
    for t in tokens:
        if 'g' in t.unit_text.lower() and t.unit:
            return t, t.unit
    for t in tokens:
        if t.unit:
            return t, t.unit
    return None


def _column_context(tokens, ctx):
    if ctx.column_unit is None or not tokens:
        return None
    return tokens[-1], ctx.column_unit


# Ordered: first strategy that returns a token wins
MEASUREMENT_STRATEGIES: tuple[MeasurementStrategy, ...] = (
    _explicit_percent,
    _explicit_mg_per_g,
    _any_gram_unit,
    _column_context,
)


def select_measurement(tokens: list[NumericToken],
                       context: MeasurementContext = MeasurementContext(),
                       ) -> Optional[tuple[NumericToken, Unit]]:
    for strategy in MEASUREMENT_STRATEGIES:
        picked = strategy(tokens, context)
        if picked:
            return picked
    return None

# ============================================================
# Observation Scan
# ============================================================

def collect_observations(text: str,
                         vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY,
                         ) -> list[TerpeneObservation]:
    """One observation per terpene row that carries a usable measurement."""
    normalized = normalize_text(text)
    context = MeasurementContext(column_unit=detect_column_unit(normalized))
    observations = []

    for line in split_lines(normalized):
        if not line:
            continue
        nm = vocabulary.name_pattern.search(line)
        if not nm:
            continue
        raw_name = nm.group(0).strip()
        tokens = find_numeric_tokens(line, skip=nm.span())
        picked = select_measurement(tokens, context)
        if not picked:
            continue
        token, unit = picked
        if token.value is None:
            continue
        observations.append(TerpeneObservation(
            raw_name=raw_name,
            canonical_name=canonicalize(raw_name, vocabulary),
            value=token.value,
            unit=unit,
        ))

    logger.debug(f"Terpene scan: {len(observations)} observations "
                 f"(column unit: {context.column_unit})")
    return observations


def deduplicate(observations: Iterable[TerpeneObservation]) -> list[TerpeneRecord]:
    """Keep the highest percent per canonical name, in first-seen order."""
    best: dict[str, float] = {}
    for obs in observations:
        pct = to_percent(obs.value, obs.unit)
        if obs.canonical_name is None or pct is None:
            continue
        prev = best.get(obs.canonical_name)
        if prev is None or pct > prev:
            best[obs.canonical_name] = pct
    return [TerpeneRecord(name=k, percent=v) for k, v in best.items()]


def apply_pinene_correction(records: list[TerpeneRecord]) -> list[TerpeneRecord]:
    """Halve a generic 'pinene' total when isomer-specific readings exist.

    Generic pinene on these reports is often the co-eluted alpha+beta sum.
    Calibrated on one lab's format; treat as a heuristic.
    """
    names = {r.name for r in records}
    if not names & {'alpha-pinene', 'beta-pinene'}:
        return list(records)
    return [
        r.model_copy(update={'percent': r.percent * 0.5}) if r.name == 'pinene' else r
        for r in records
    ]


def rank_terpenes(records: list[TerpeneRecord], limit: int = 3) -> list[TerpeneRecord]:
    """Positive readings, highest first; ties keep scan order."""
    positive = [r for r in records if r.percent > 0]
    return sorted(positive, key=lambda r: r.percent, reverse=True)[:limit]


def collect_terpene_records(text: str,
                            vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY,
                            ) -> list[TerpeneRecord]:
    return apply_pinene_correction(deduplicate(collect_observations(text, vocabulary)))

# ============================================================
# Dominant-Terpene Label Fallback
# ============================================================

_DOMINANT_LABEL_RE = re.compile(r'Dominant\s*Terpenes?\s*:\s*([^\n\r]+)', re.IGNORECASE)


def dominant_label_terpenes(text: str, limit: int = 3,
                            vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY) -> list[str]:
    """Names listed on a 'Dominant Terpenes:' line, for reports without a table."""
    m = _DOMINANT_LABEL_RE.search(text or '')
    if not m:
        return []
    names = [canonicalize(part, vocabulary) for part in re.split(r'[;,|]', m.group(1))]
    return list(dict.fromkeys(n for n in names if n))[:limit]

# ============================================================
# Public Entry Point
# ============================================================

def extract_terpenes(text: str, limit: int = 3,
                     vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY) -> list[str]:
    """Top `limit` canonical terpene names, highest percent first."""
    if not text:
        return []
    ranked = rank_terpenes(collect_terpene_records(text, vocabulary), limit)
    if ranked:
        return [r.name for r in ranked]
    return dominant_label_terpenes(text, limit, vocabulary)
