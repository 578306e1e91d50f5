from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from trinetra_intel.core.errors import ErrorKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FrozenModel(BaseModel):
    """Base for every domain object: immutable, camelCase on the wire"""
    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


# ==========================================
# ENUMS
# ==========================================

class SubjectKind(str, Enum):
    APP = "app"
    URL = "url"
    IP = "ip"
    PHONE_NUMBER = "phone"


class ThreatLevel(str, Enum):
    CLEAN = "clean"
    SUSPICIOUS = "suspicious"
    MALICIOUS = "malicious"


class Source(str, Enum):
    """Provenance of a verdict"""
    LIVE = "live"
    HEURISTIC = "heuristic"


class PhoneRiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ScanState(str, Enum):
    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    SCORED = "scored"
    ERRORED = "errored"


# ==========================================
# SUBJECTS & EVIDENCE
# ==========================================

class Subject(FrozenModel):
    """An entity under evaluation. Build it through subjects.make_subject()."""
    kind: SubjectKind
    identifier: str
    permissions: Tuple[str, ...] = ()
    file_hash: Optional[str] = None


class ProviderVerdict(FrozenModel):
    """Normalized answer from one external provider about one resource"""
    provider: str
    subject_id: str
    level: Optional[ThreatLevel] = None

    # Reputation (file / URL)
    detection_ratio: Optional[Tuple[int, int]] = None
    detections: List[str] = Field(default_factory=list)
    scan_date: Optional[str] = None

    # Abuse (IP)
    abuse_score: Optional[int] = None
    report_count: Optional[int] = None
    isp: Optional[str] = None
    whitelisted: Optional[bool] = None

    # Phone validation
    valid: Optional[bool] = None
    line_type: Optional[str] = None
    carrier: Optional[str] = None
    country_code: Optional[str] = None
    country_name: Optional[str] = None

    threats: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    fetched_at: datetime = Field(default_factory=utcnow)
    error: Optional[ErrorKind] = None
    error_status: Optional[int] = None
    source: Source = Source.LIVE
    cached: bool = False

    @property
    def is_error(self) -> bool:
        return self.error is not None


class HeuristicFinding(FrozenModel):
    """Output of the offline scorer. Scores start at 100, risk at 0."""
    threats: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    privacy_score: int = 100
    security_score: int = 100
    risk_score: int = 0

    @property
    def privacy_delta(self) -> int:
        return self.privacy_score - 100

    @property
    def security_delta(self) -> int:
        return self.security_score - 100


# ==========================================
# RESULTS
# ==========================================

class RiskVerdict(FrozenModel):
    subject: Subject
    level: ThreatLevel = ThreatLevel.CLEAN
    score: int = 100
    threats: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)
    sources: List[ProviderVerdict] = Field(default_factory=list)
    scanned_at: datetime = Field(default_factory=utcnow)
    source: Source = Source.HEURISTIC

    @property
    def has_errors(self) -> bool:
        return any(v.is_error for v in self.sources)


class ScanBatchResult(FrozenModel):
    total: int
    malicious: int = 0
    suspicious: int = 0
    clean: int = 0
    errors: int = 0
    verdicts: List[RiskVerdict] = Field(default_factory=list)
    cancelled: bool = Field(default=False, exclude=True)


class DeviceSecurityScore(FrozenModel):
    score: int
    threat_count: int
    suspicious_count: int
    clean_count: int
    recommendations: List[str] = Field(default_factory=list)
    last_scan: datetime


class SpamCheckResult(FrozenModel):
    phone_number: str
    is_spam: bool
    risk_level: PhoneRiskLevel
    risk_score: int = 0
    reason: str
    phone_info: Optional[ProviderVerdict] = None
