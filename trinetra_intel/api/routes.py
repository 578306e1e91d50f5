from fastapi import APIRouter, Depends, HTTPException
from functools import lru_cache
from typing import Iterable, List
from datetime import datetime, timezone

from trinetra_intel.config import settings
from trinetra_intel.core.errors import ErrorKind, InvalidSubject
from trinetra_intel.core.security_score import SecurityScoreAggregator
from trinetra_intel.core.subjects import make_subject
from trinetra_intel.core.verdicts import (
    DeviceSecurityScore,
    RiskVerdict,
    ScanBatchResult,
    SpamCheckResult,
    Subject,
    SubjectKind,
)
from trinetra_intel.schemas import (
    BatchScanRequest,
    InstalledApp,
    IpCheckRequest,
    PhoneListResponse,
    PhoneListUpdate,
    PhoneNumberRequest,
    ScannerStatus,
    SecurityScoreRequest,
    SubjectIn,
    UrlCheckRequest,
)
from trinetra_intel.services.call_screening import CallScreeningService
from trinetra_intel.services.scan_service import BatchScanner, build_batch_scanner

router = APIRouter()

# ============================================================================
# DEPENDENCIES
# ============================================================================

@lru_cache
def get_scanner() -> BatchScanner:
    """Process-wide scanner so every request shares the same rate limiter"""
    return build_batch_scanner(settings)

@lru_cache
def get_call_screening() -> CallScreeningService:
    return CallScreeningService(get_scanner())

def get_aggregator() -> SecurityScoreAggregator:
    return SecurityScoreAggregator()

def _invalid_subject(index: int, error: InvalidSubject) -> dict:
    return {"index": index, "identifier": error.identifier, "reason": error.reason}

def _to_subjects(items: Iterable[SubjectIn]) -> List[Subject]:
    subjects, problems = [], []
    for index, item in enumerate(items):
        try:
            subjects.append(make_subject(item.kind, item.identifier, item.permissions, item.file_hash))
        except InvalidSubject as e:
            problems.append(_invalid_subject(index, e))
    
    if problems:
        raise HTTPException(
            status_code=400,
            detail={"error": ErrorKind.INVALID_SUBJECT.value, "subjects": problems}
        )
    return subjects

def _apps_to_subjects(apps: Iterable[InstalledApp]) -> List[Subject]:
    return _to_subjects(
        SubjectIn(
            kind=SubjectKind.APP.value,
            identifier=app.package_name,
            permissions=app.permissions,
            file_hash=app.file_hash
        )
        for app in apps
    )

# ============================================================================
# SCAN ENDPOINTS
# ============================================================================

@router.post("/scan/batch", response_model=ScanBatchResult)
def scan_batch(request: BatchScanRequest, scanner: BatchScanner = Depends(get_scanner)):
    """Scan apps, URLs, IPs and phone numbers in one sequential batch"""
    subjects = _to_subjects(request.subjects)
    return scanner.scan(subjects)


@router.post("/scan/app", response_model=RiskVerdict)
def scan_app(request: InstalledApp, scanner: BatchScanner = Depends(get_scanner)):
    [subject] = _apps_to_subjects([request])
    return scanner.scan_subject(subject)


@router.post("/scan/url", response_model=RiskVerdict)
def check_url(request: UrlCheckRequest, scanner: BatchScanner = Depends(get_scanner)):
    [subject] = _to_subjects([SubjectIn(kind=SubjectKind.URL.value, identifier=request.url)])
    return scanner.scan_subject(subject)


@router.post("/scan/ip", response_model=RiskVerdict)
def check_ip(request: IpCheckRequest, scanner: BatchScanner = Depends(get_scanner)):
    [subject] = _to_subjects([SubjectIn(kind=SubjectKind.IP.value, identifier=request.ip_address)])
    return scanner.scan_subject(subject)


@router.post("/security-score", response_model=DeviceSecurityScore)
def security_score(
    request: SecurityScoreRequest,
    scanner: BatchScanner = Depends(get_scanner),
    aggregator: SecurityScoreAggregator = Depends(get_aggregator)
):
    """Device score from the first SECURITY_SCORE_SAMPLE_SIZE installed apps"""
    sample = request.installed_apps[:settings.SECURITY_SCORE_SAMPLE_SIZE]
    result = scanner.scan(_apps_to_subjects(sample))
    return aggregator.aggregate(result.verdicts)

# ============================================================================
# CALL SCREENING ENDPOINTS
# ============================================================================

@router.post("/phone/check", response_model=SpamCheckResult)
def check_phone(request: PhoneNumberRequest, screening: CallScreeningService = Depends(get_call_screening)):
    try:
        return screening.check(request.phone_number)
    except InvalidSubject as e:
        raise HTTPException(status_code=400, detail={"error": ErrorKind.INVALID_SUBJECT.value, "reason": e.reason})


@router.post("/phone/block", response_model=PhoneListUpdate)
def block_phone(request: PhoneNumberRequest, screening: CallScreeningService = Depends(get_call_screening)):
    try:
        number = screening.block(request.phone_number)
    except InvalidSubject as e:
        raise HTTPException(status_code=400, detail={"error": ErrorKind.INVALID_SUBJECT.value, "reason": e.reason})
    return PhoneListUpdate(phone_number=number, status="blocked")


@router.post("/phone/allow", response_model=PhoneListUpdate)
def allow_phone(request: PhoneNumberRequest, screening: CallScreeningService = Depends(get_call_screening)):
    try:
        number = screening.allow(request.phone_number)
    except InvalidSubject as e:
        raise HTTPException(status_code=400, detail={"error": ErrorKind.INVALID_SUBJECT.value, "reason": e.reason})
    return PhoneListUpdate(phone_number=number, status="allowed")


@router.get("/phone/blocked", response_model=PhoneListResponse)
def list_blocked(screening: CallScreeningService = Depends(get_call_screening)):
    return PhoneListResponse(numbers=screening.blocked())


@router.get("/phone/allowed", response_model=PhoneListResponse)
def list_allowed(screening: CallScreeningService = Depends(get_call_screening)):
    return PhoneListResponse(numbers=screening.allowed())

# ============================================================================
# STATUS & MAINTENANCE
# ============================================================================

@router.get("/scanner/status", response_model=ScannerStatus)
def scanner_status(scanner: BatchScanner = Depends(get_scanner)):
    return scanner.status()


@router.get("/cache/stats", response_model=dict)
def cache_stats(scanner: BatchScanner = Depends(get_scanner)):
    return scanner.cache.stats()


@router.delete("/cache/expired", response_model=dict)
def clear_expired_cache(scanner: BatchScanner = Depends(get_scanner)):
    return {"deleted": scanner.cache.clear_expired()}


@router.get("/health")
def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc), "service": settings.APP_NAME}
