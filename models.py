"""
COA Expert System — Core Pydantic Models

Records produced by the extraction engine (observations, terpene records,
THC estimates, the per-document result) plus the strain-record and API
shapes used by the ingestion and HTTP layers.
"""
from __future__ import annotations
import re
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# ============================================================
# Enums
# ============================================================

class Unit(str, Enum):
    PERCENT = "%"
    MG_PER_G = "mg/g"
    UG_PER_G = "ug/g"

class ThcSource(str, Enum):
    DIRECT = "direct"
    COMPUTED = "computed"
    NONE = "none"

class Lineage(str, Enum):
    SATIVA = "Sativa"
    INDICA = "Indica"
    HYBRID = "Hybrid"

class Bucket(str, Enum):
    INDICA_LEANING = "indica_leaning"
    SATIVA_LEANING = "sativa_leaning"
    HYBRID = "hybrid"


class WireModel(BaseModel):
    """Base for records that cross the engine boundary: camelCase on the wire."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

# ============================================================
# Extraction Models (engine output)
# ============================================================

class TerpeneObservation(WireModel):
    """One terpene sighting on one line of a report."""
    raw_name: str
    canonical_name: Optional[str] = None
    value: float
    unit: Unit


class TerpeneRecord(WireModel):
    """Deduplicated, unit-normalized terpene reading."""
    name: str
    percent: float


class ThcEstimate(WireModel):
    total_percent: Optional[float] = None
    source: ThcSource = ThcSource.NONE
    thca_percent: Optional[float] = None
    delta9_percent: Optional[float] = None

    @model_validator(mode="after")
    def check_source_matches_value(self) -> ThcEstimate:
        if self.source == ThcSource.NONE and self.total_percent is not None:
            raise ValueError("total_percent must be empty when source is 'none'")
        if self.source != ThcSource.NONE and self.total_percent is None:
            raise ValueError(f"source '{self.source.value}' requires total_percent")
        if self.source == ThcSource.COMPUTED and (
            self.thca_percent is None and self.delta9_percent is None
        ):
            raise ValueError("computed estimate needs THCA or delta-9 component")
        return self


class ExtractionResult(WireModel):
    """Full extraction output for one document."""
    strain_name: Optional[str] = None
    type: Optional[str] = None
    dominant_terpene: Optional[str] = None
    other_terpenes: list[str] = Field(default_factory=list)
    thc: ThcEstimate = Field(default_factory=ThcEstimate)

    @field_validator("other_terpenes")
    @classmethod
    def validate_other_terpenes(cls, v: list[str]) -> list[str]:
        if len(v) > 2:
            raise ValueError("at most two secondary terpenes are reported")
        return v


class TerpeneDebugReport(WireModel):
    """Terpene-only view of a document for troubleshooting a template."""
    default_unit: Optional[Unit] = None
    terpenes: list[str] = Field(default_factory=list)
    records: list[TerpeneRecord] = Field(default_factory=list)
    preview: list[str] = Field(default_factory=list)

# ============================================================
# Strain Records (ingestion output)
# ============================================================

class StrainRecord(WireModel):
    id: str
    code: Optional[str] = None
    name: str
    thc: Optional[int] = None
    bucket: Bucket = Bucket.HYBRID
    lean: str = ""
    type: Optional[str] = None
    terpenes: list[str] = Field(default_factory=list)
    dominant_terpene: str = ""

    @field_validator("terpenes")
    @classmethod
    def validate_terpenes(cls, v: list[str]) -> list[str]:
        return v[:3]

# ============================================================
# API Request/Response Models
# ============================================================

class ExtractRequest(WireModel):
    text: str = ""
    source_uri: Optional[str] = None

class DebugTerpenesRequest(WireModel):
    text: str = ""

class StrainCreate(WireModel):
    code: Optional[str] = None
    name: str = ""
    # "22%" and "21.6" are accepted and cleaned when the record is built
    thc: Optional[Union[float, str]] = None
    bucket: Optional[Bucket] = None
    lean: Optional[str] = None
    terpenes: list[str] = Field(default_factory=list)
    type: Optional[str] = None

    @field_validator("terpenes", mode="before")
    @classmethod
    def split_terpene_string(cls, v):
        if v is None:
            return []
        if isinstance(v, str):
            return [t.strip() for t in re.split(r"[;,|\n]", v) if t.strip()]
        return v

class ScanResponse(WireModel):
    strain: StrainRecord
    saved: bool = True

class HealthResponse(WireModel):
    status: str
    version: str
    uptime_seconds: int
    records: int
