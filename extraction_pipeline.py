"""
COA Expert System — Extraction Pipeline

Turns the text of one Certificate of Analysis into an ExtractionResult:

1. Normalize the text (line endings, odd spaces, split decimals)
2. Terpenes: top-N canonical names by percent
3. THC: direct total, else computed from THCA + delta-9
4. Type / lineage and strain name
5. Assemble the result

Steps 2-4 are independent pure functions over the same normalized text.
Text acquisition (HTTP fetch, PDF/HTML conversion, OCR) happens upstream.
"""
from __future__ import annotations
import argparse
import json
import logging
import sys
import time
from dataclasses import dataclass, field
from typing import Optional

from classification import classify_type, extract_strain_name
from config import Settings, configure_logging, get_settings
from models import ExtractionResult, TerpeneDebugReport
from normalization import detect_column_unit, normalize_text
from terpenes import (
    DEFAULT_VOCABULARY, TerpeneVocabulary, collect_terpene_records,
    extract_terpenes, rank_terpenes,
)
from thc import DEFAULT_LABEL_WINDOW, compute_thc

logger = logging.getLogger(__name__)

# ============================================================
# Configuration
# ============================================================

@dataclass(frozen=True)
class ExtractionConfig:
    """Tunable parameters for one extractor instance."""
    terpene_limit: int = 3
    thc_label_window: int = DEFAULT_LABEL_WINDOW
    preview_lines: int = 40
    vocabulary: TerpeneVocabulary = field(default=DEFAULT_VOCABULARY)

    @classmethod
    def from_settings(cls, settings: Settings,
                      vocabulary: TerpeneVocabulary = DEFAULT_VOCABULARY) -> ExtractionConfig:
        return cls(
            terpene_limit=settings.terpene_limit,
            thc_label_window=settings.thc_label_window,
            preview_lines=settings.preview_lines,
            vocabulary=vocabulary,
        )


DEFAULT_CONFIG = ExtractionConfig()

# ============================================================
# Master Extraction Orchestrator
# ============================================================

class CoaExtractor:
    """Main extraction engine. Holds only immutable configuration."""

    def __init__(self, config: ExtractionConfig = DEFAULT_CONFIG):
        self.config = config

    def extract(self, text: Optional[str], source_uri: Optional[str] = None) -> ExtractionResult:
        start = time.monotonic()
        normalized = normalize_text(text)

        names = extract_terpenes(
            normalized, self.config.terpene_limit, self.config.vocabulary)
        thc = compute_thc(normalized, self.config.thc_label_window)
        kind = classify_type(normalized)
        strain = extract_strain_name(normalized, source_uri)

        result = ExtractionResult(
            strain_name=strain,
            type=kind,
            dominant_terpene=names[0] if names else None,
            other_terpenes=names[1:3],
            thc=thc,
        )

        elapsed = int((time.monotonic() - start) * 1000)
        logger.debug(
            f"Extracted {source_uri or '<text>'} in {elapsed}ms: strain={strain!r} "
            f"type={kind!r} terpenes={names} thc={thc.total_percent} ({thc.source.value})"
        )
        return result

    def debug_terpenes(self, text: Optional[str]) -> TerpeneDebugReport:
        """Terpene view of a document: default unit, ranked records, text preview."""
        normalized = normalize_text(text)
        records = rank_terpenes(
            collect_terpene_records(normalized, self.config.vocabulary),
            self.config.terpene_limit,
        )
        lines = [l.strip() for l in normalized.split('\n') if l.strip()]
        return TerpeneDebugReport(
            default_unit=detect_column_unit(normalized),
            terpenes=extract_terpenes(
                normalized, self.config.terpene_limit, self.config.vocabulary),
            records=records,
            preview=lines[:self.config.preview_lines],
        )

# ============================================================
# Convenience: Run extraction on raw text
# ============================================================

def extract_document(text: Optional[str], source_uri: Optional[str] = None) -> ExtractionResult:
    """One-shot extraction from text content."""
    return CoaExtractor().extract(text, source_uri)

# ============================================================
# CLI Entry Point
# ============================================================

def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Extract strain, type, terpenes and total THC from COA text.")
    parser.add_argument("path", help="text file of an extracted COA, or '-' for stdin")
    parser.add_argument("--source-uri", default=None,
                        help="document locator, used to guess a name when none is printed")
    parser.add_argument("--debug-terps", action="store_true",
                        help="print the terpene debug report instead")
    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(settings)

    try:
        if args.path == "-":
            text = sys.stdin.read()
        else:
            with open(args.path, encoding="utf-8", errors="replace") as fh:
                text = fh.read()
    except OSError as e:
        logger.error(f"Cannot read {args.path}: {e}")
        return 2

    extractor = CoaExtractor(ExtractionConfig.from_settings(settings))
    if args.debug_terps:
        out = extractor.debug_terpenes(text)
    else:
        out = extractor.extract(text, args.source_uri or (None if args.path == "-" else args.path))
    print(json.dumps(out.model_dump(mode="json", by_alias=True), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
