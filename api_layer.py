"""
COA Expert System — FastAPI Application Layer

Endpoints:
  1. GET  /healthz            — Liveness probe
  2. GET  /health             — Health check with uptime and record count
  3. POST /api/extract        — Extract fields from COA text
  4. POST /api/debug/terps    — Terpene debug report
  5. POST /api/scan           — Extract and save a strain record
  6. GET  /api/strains        — Paged strain list (X-Total-Count)
  7. GET  /api/strains/{id}   — Strain lookup
  8. POST /api/strains        — Create / replace a strain record
"""
from __future__ import annotations
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from config import Settings, configure_logging, get_settings
from extraction_pipeline import CoaExtractor, ExtractionConfig
from ingestion_orchestrator import (
    InMemoryStrainRepository, IngestionOrchestrator, JsonFileStrainRepository,
    RecordNotFound, StrainRepository, normalize_strain,
)
from models import (
    DebugTerpenesRequest, ExtractionResult, ExtractRequest, HealthResponse,
    ScanResponse, StrainCreate, StrainRecord, TerpeneDebugReport,
)

logger = logging.getLogger(__name__)

# ============================================================
# Application State (shared singletons)
# ============================================================

class AppState:
    """Holds all shared service instances."""
    settings: Settings
    repo: StrainRepository
    extractor: CoaExtractor
    ingestion: IngestionOrchestrator
    start_time: float
    request_count: int = 0

    def __init__(self):
        self.start_time = time.monotonic()
        self.request_count = 0


_state = AppState()


def build_repository(settings: Settings) -> StrainRepository:
    if settings.data_file:
        return JsonFileStrainRepository(settings.data_file)
    return InMemoryStrainRepository()

# ============================================================
# Lifespan: Startup / Shutdown
# ============================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    settings = get_settings()
    configure_logging(settings)
    logger.info(f"Starting {settings.app_name} v{settings.version}...")

    _state.settings = settings
    _state.repo = build_repository(settings)
    _state.extractor = CoaExtractor(ExtractionConfig.from_settings(settings))
    _state.ingestion = IngestionOrchestrator(_state.repo, _state.extractor)
    _state.start_time = time.monotonic()

    logger.info(f"System ready. Persistence: {settings.data_file or 'memory'}")
    yield

    logger.info(f"Shutting down {settings.app_name}...")

# ============================================================
# FastAPI App
# ============================================================

app = FastAPI(
    title="COA Expert System API",
    description="Strain, type, terpene and total-THC extraction from "
                "cannabis Certificates of Analysis.",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Total-Count", "X-Response-Time-Ms"],
)

# ============================================================
# Middleware: Request Counting & Timing
# ============================================================

@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    start = time.monotonic()
    _state.request_count += 1
    response = await call_next(request)
    elapsed = int((time.monotonic() - start) * 1000)
    response.headers["X-Response-Time-Ms"] = str(elapsed)
    return response

# ============================================================
# 1-2. Health
# ============================================================

@app.get("/healthz", tags=["System"])
async def healthz():
    return {"ok": True}


@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health():
    return HealthResponse(
        status="ok",
        version=_state.settings.version,
        uptime_seconds=int(time.monotonic() - _state.start_time),
        records=await _state.repo.count(),
    )

# ============================================================
# 3. POST /api/extract — Field Extraction
# ============================================================

@app.post("/api/extract", response_model=ExtractionResult, tags=["Extraction"])
async def extract(request: ExtractRequest):
    try:
        return _state.extractor.extract(request.text, request.source_uri)
    except Exception as e:
        logger.exception("Extraction failed")
        raise HTTPException(500, f"Extraction error: {str(e)}")

# ============================================================
# 4. POST /api/debug/terps — Terpene Debug Report
# ============================================================

@app.post("/api/debug/terps", response_model=TerpeneDebugReport, tags=["Extraction"])
async def debug_terpenes(request: DebugTerpenesRequest):
    try:
        return _state.extractor.debug_terpenes(request.text)
    except Exception as e:
        logger.exception("Terpene debug failed")
        raise HTTPException(500, f"Debug error: {str(e)}")

# ============================================================
# 5. POST /api/scan — Extract and Save
# ============================================================

@app.post("/api/scan", response_model=ScanResponse, tags=["Strains"])
async def scan(request: ExtractRequest):
    if not request.text.strip():
        raise HTTPException(400, "text is required")
    try:
        _, record = await _state.ingestion.ingest_text(request.text, request.source_uri)
    except ValueError as e:
        raise HTTPException(400, str(e))
    except Exception as e:
        logger.exception("Scan failed")
        raise HTTPException(500, f"Scan error: {str(e)}")
    return ScanResponse(strain=record, saved=True)

# ============================================================
# 6-8. Strain Records
# ============================================================

@app.get("/api/strains", response_model=list[StrainRecord], tags=["Strains"])
async def list_strains(
    response: Response,
    offset: int = Query(0),
    limit: Optional[int] = Query(None),
):
    total = await _state.repo.count()
    offset = max(0, offset)
    if limit is None:
        limit = total - offset
    limit = min(max(1, limit), _state.settings.max_list_limit)
    response.headers["X-Total-Count"] = str(total)
    return await _state.repo.list_records(offset, limit)


@app.get("/api/strains/{record_id}", response_model=StrainRecord, tags=["Strains"])
async def get_strain(record_id: str):
    try:
        return await _state.repo.get_record(record_id)
    except RecordNotFound:
        raise HTTPException(404, f"Strain '{record_id}' not found")


@app.post("/api/strains", response_model=StrainRecord, status_code=201, tags=["Strains"])
async def create_strain(data: StrainCreate):
    try:
        record = normalize_strain(data)
    except ValueError as e:
        raise HTTPException(400, str(e))
    await _state.repo.upsert(record)
    logger.info(f"Saved strain {record.id} ({record.name})")
    return record

# ============================================================
# Entry Point
# ============================================================

if __name__ == "__main__":
    import uvicorn
    settings = get_settings()
    configure_logging(settings)
    uvicorn.run("api_layer:app", host=settings.host, port=settings.port,
                reload=settings.reload, log_level=settings.log_level.lower())
