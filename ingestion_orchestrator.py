"""
COA Expert System — Ingestion Orchestrator

Bridges extraction pipeline -> strain records.
Responsibilities:
  1. Extraction result -> normalized StrainRecord (bucket, lean, display names)
  2. Record ids from document locators or names
  3. Document dedup via SHA-256 checksums
  4. Upsert into a repository (in-memory or JSON file)
  5. Batch and directory ingestion with per-file failure accounting
"""
from __future__ import annotations
import asyncio
import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from classification import guess_name_from_locator
from extraction_pipeline import CoaExtractor
from models import Bucket, ExtractionResult, StrainCreate, StrainRecord

logger = logging.getLogger(__name__)

UNKNOWN_STRAIN = 'Unknown Strain'

# ============================================================
# Record Normalization
# ============================================================

def type_to_bucket(kind: Optional[str]) -> Bucket:
    t = (kind or '').lower()
    if t.startswith('indi'):
        return Bucket.INDICA_LEANING
    if t.startswith('sati'):
        return Bucket.SATIVA_LEANING
    return Bucket.HYBRID


def bucket_to_lean(bucket: Bucket) -> str:
    if bucket == Bucket.INDICA_LEANING:
        return 'Indica-leaning'
    if bucket == Bucket.SATIVA_LEANING:
        return 'Sativa-leaning'
    return ''


def display_terpene_name(name: str) -> str:
    """'alpha-pinene' -> 'Alpha-Pinene', 'fenchyl alcohol' -> 'Fenchyl Alcohol'."""
    cleaned = re.sub(r'\s+', ' ', name or '').strip()
    return re.sub(r'\b[a-z]', lambda m: m.group(0).upper(), cleaned)


def slugify_id(name: Optional[str]) -> str:
    return re.sub(r'[^a-z0-9]+', '', str(name or '').lower())


def make_record_id(code: Optional[str], name: Optional[str]) -> str:
    """Digits of the locator's last path segment, else the slugged name."""
    if code:
        path = urlparse(code).path if urlparse(code).scheme else code
        last = [p for p in path.split('/') if p]
        digits = re.sub(r'\D+', '', last[-1]) if last else ''
        if digits:
            return digits
    return slugify_id(name)


def _round_thc(value: Any) -> Optional[int]:
    if value is None or value == '':
        return None
    cleaned = re.sub(r'[^0-9.]', '', str(value))
    try:
        return int(round(float(cleaned)))
    except ValueError:
        return None


def normalize_strain(data: StrainCreate) -> StrainRecord:
    """Validated, display-ready record from loosely shaped input."""
    name = (data.name or '').strip()
    if not name:
        raise ValueError('name is required')
    terpenes = [display_terpene_name(t) for t in data.terpenes if t and t.strip()][:3]
    bucket = data.bucket or (type_to_bucket(data.type) if data.type else Bucket.HYBRID)
    code = data.code or None
    return StrainRecord(
        id=make_record_id(code, name),
        code=code,
        name=name,
        thc=_round_thc(data.thc),
        bucket=bucket,
        lean=data.lean or bucket_to_lean(bucket),
        type=data.type or None,
        terpenes=terpenes,
        dominant_terpene=terpenes[0] if terpenes else '',
    )


def record_from_extraction(result: ExtractionResult,
                           source_uri: Optional[str] = None) -> StrainRecord:
    name = result.strain_name or guess_name_from_locator(source_uri) or UNKNOWN_STRAIN
    terps = [t for t in [result.dominant_terpene, *result.other_terpenes] if t]
    return normalize_strain(StrainCreate(
        code=source_uri,
        name=name,
        thc=result.thc.total_percent,
        terpenes=terps,
        type=result.type,
    ))

# ============================================================
# Repository Layer
# ============================================================

class RecordNotFound(LookupError):
    pass


class StrainRepository:
    """
    Abstract record store. Newest records come first; upsert replaces by id.
    Implementations are swappable.
    """

    async def list_records(self, offset: int = 0, limit: Optional[int] = None) -> list[StrainRecord]:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError

    async def get_record(self, record_id: str) -> StrainRecord:
        raise NotImplementedError

    async def upsert(self, record: StrainRecord) -> StrainRecord:
        raise NotImplementedError


class InMemoryStrainRepository(StrainRepository):
    """In-memory implementation for testing / local dev."""

    def __init__(self, records: Optional[list[StrainRecord]] = None):
        self.records: list[StrainRecord] = list(records or [])

    async def list_records(self, offset: int = 0, limit: Optional[int] = None) -> list[StrainRecord]:
        end = None if limit is None else offset + limit
        return self.records[offset:end]

    async def count(self) -> int:
        return len(self.records)

    async def get_record(self, record_id: str) -> StrainRecord:
        wanted = str(record_id).strip().lower()
        for r in self.records:
            if r.id.lower() == wanted:
                return r
        raise RecordNotFound(record_id)

    async def upsert(self, record: StrainRecord) -> StrainRecord:
        for i, r in enumerate(self.records):
            if r.id == record.id:
                self.records[i] = record
                break
        else:
            self.records.insert(0, record)
        return record


class JsonFileStrainRepository(InMemoryStrainRepository):
    """Records kept in memory and written to one JSON file on every change."""

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._write_lock = asyncio.Lock()
        self.load()

    def load(self) -> None:
        try:
            raw = json.loads(self.path.read_text(encoding='utf-8'))
        except FileNotFoundError:
            logger.info(f"No existing strain file at {self.path}, starting fresh")
            return
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Could not read {self.path}: {e}; starting fresh")
            return
        if not isinstance(raw, list):
            logger.warning(f"Ignoring {self.path}: expected a JSON list")
            return
        self.records = [StrainRecord.model_validate(item) for item in raw]
        logger.info(f"Loaded {len(self.records)} strains from {self.path}")

    def save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = [r.model_dump(mode='json', by_alias=True, exclude_none=True)
                   for r in self.records]
        tmp = self.path.with_suffix(self.path.suffix + '.tmp')
        tmp.write_text(json.dumps(payload, indent=2), encoding='utf-8')
        tmp.replace(self.path)

    async def upsert(self, record: StrainRecord) -> StrainRecord:
        # one writer at a time; the file write runs off the event loop
        async with self._write_lock:
            record = await super().upsert(record)
            await asyncio.to_thread(self.save)
        return record

# ============================================================
# Main Ingestion Orchestrator
# ============================================================

@dataclass
class IngestionStats:
    """Tracks stats for a single ingestion run."""
    total_files: int = 0
    processed_files: int = 0
    failed_files: int = 0
    skipped_duplicate: int = 0
    saved_records: int = 0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class IngestionOrchestrator:
    """
    Drives ingestion of pre-extracted COA text:
      text -> extraction -> strain record -> repository
    """

    def __init__(self, repo: StrainRepository, extractor: Optional[CoaExtractor] = None):
        self.repo = repo
        self.extractor = extractor or CoaExtractor()
        self._seen_checksums: set[str] = set()

    async def ingest_text(
        self,
        text: str,
        source_uri: Optional[str] = None,
        save: bool = True,
    ) -> tuple[ExtractionResult, StrainRecord]:
        """Extract one document and (optionally) upsert its record."""
        result = self.extractor.extract(text, source_uri)
        record = record_from_extraction(result, source_uri)
        if save:
            await self.repo.upsert(record)
            logger.info(f"Saved strain {record.id} ({record.name})")
        return result, record

    async def ingest_batch(self, documents: list[dict[str, Any]]) -> IngestionStats:
        """
        Ingest a batch of documents.

        Args:
            documents: list of dicts with keys
                       'content': str | bytes (already-extracted text),
                       'source_uri': str (optional)
        """
        stats = IngestionStats(total_files=len(documents))

        for doc in documents:
            uri = doc.get('source_uri')
            try:
                content = doc['content']
                raw_bytes = content if isinstance(content, bytes) else content.encode('utf-8')
                checksum = hashlib.sha256(raw_bytes).hexdigest()
                if checksum in self._seen_checksums:
                    stats.skipped_duplicate += 1
                    stats.warnings.append(f"Duplicate skipped: {uri or '?'}")
                    logger.info(f"Skipping duplicate: {uri or '?'}")
                    continue

                text = content if isinstance(content, str) else content.decode('utf-8', errors='replace')
                result, record = await self.ingest_text(text, uri)
                self._seen_checksums.add(checksum)
                stats.processed_files += 1
                stats.saved_records += 1
                if result.thc.total_percent is None and not result.dominant_terpene:
                    stats.warnings.append(f"No THC or terpene data found in {uri or '?'}")
            except Exception as e:
                stats.failed_files += 1
                err = f"Failed to ingest {uri or '?'}: {e}"
                stats.errors.append(err)
                logger.exception(err)

        return stats

# ============================================================
# CLI / Script Entry Point
# ============================================================

SUPPORTED_SUFFIXES = {'.txt', '.text', '.md'}


async def ingest_directory(
    directory: str | Path,
    repo: Optional[StrainRepository] = None,
    extractor: Optional[CoaExtractor] = None,
) -> IngestionStats:
    """Ingest every text file in a directory (one extracted COA per file)."""
    orchestrator = IngestionOrchestrator(repo or InMemoryStrainRepository(), extractor)
    dir_path = Path(directory)

    documents = []
    for f in sorted(dir_path.iterdir()):
        if f.is_file() and f.suffix.lower() in SUPPORTED_SUFFIXES:
            documents.append({'content': f.read_bytes(), 'source_uri': f.name})

    if not documents:
        logger.warning(f"No supported files found in {directory}")
        return IngestionStats()

    logger.info(f"Ingesting {len(documents)} files from {directory}")
    stats = await orchestrator.ingest_batch(documents)
    logger.info(
        f"Ingestion complete: {stats.processed_files}/{stats.total_files} processed, "
        f"{stats.skipped_duplicate} duplicates, {stats.failed_files} failed"
    )
    return stats


if __name__ == '__main__':
    import sys

    from config import configure_logging, get_settings

    settings = get_settings()
    configure_logging(settings)
    if len(sys.argv) != 2:
        print('Usage: python ingestion_orchestrator.py <directory>', file=sys.stderr)
        sys.exit(1)
    target = JsonFileStrainRepository(settings.data_file) if settings.data_file else None
    result = asyncio.run(ingest_directory(sys.argv[1], target))
    sys.exit(0 if result.failed_files == 0 else 2)
