import logging
import threading
import time
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import requests

from trinetra_intel.config import Settings
from trinetra_intel.core.cache import DatabaseVerdictCache, MemoryVerdictCache, VerdictCache
from trinetra_intel.core.fusion import EvidenceFusion
from trinetra_intel.core.heuristics import HeuristicFacts, HeuristicScorer, LocalBlocklist
from trinetra_intel.core.providers import (
    AbuseAdapter,
    PhoneValidationAdapter,
    ProviderAdapter,
    ReputationAdapter,
    build_http_session,
)
from trinetra_intel.core.rate_limiter import ProviderQuota, RateLimiter
from trinetra_intel.core.verdicts import (
    HeuristicFinding,
    ProviderVerdict,
    RiskVerdict,
    ScanBatchResult,
    ScanState,
    Subject,
    SubjectKind,
    ThreatLevel,
)

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 3600

ProgressCallback = Callable[[int, Subject, ScanState], None]


class BatchScanner:
    def __init__(
        self,
        adapters: Sequence[ProviderAdapter],
        cache: VerdictCache,
        scorer: Optional[HeuristicScorer] = None,
        fusion: Optional[EvidenceFusion] = None,
        cache_ttls: Optional[Dict[str, float]] = None,
        rate_limiter: Optional[RateLimiter] = None
    ):
        """
        Scans subjects one at a time against every applicable provider

        Args:
            adapters: Providers in call order (reputation, abuse, phone validation)
            cache: Verdict cache consulted before any provider call
            scorer: Offline heuristic scorer
            fusion: Evidence fusion policy
            cache_ttls: Provider name -> TTL in seconds
            rate_limiter: Shared limiter, reported by status()
        """
        self.adapters = list(adapters)
        self.cache = cache
        self.scorer = scorer or HeuristicScorer()
        self.fusion = fusion or EvidenceFusion()
        self.cache_ttls = cache_ttls or {}
        self.rate_limiter = rate_limiter

    def scan(
        self,
        subjects: Iterable[Subject],
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> ScanBatchResult:
        """
        Scan a batch of subjects sequentially, preserving input order

        Args:
            subjects: Normalized subjects
            cancel_event: Checked between subjects; when set the batch stops
                and returns what was scored so far
            on_progress: Called with (index, subject, state) on every transition

        Returns:
            ScanBatchResult with one verdict per scanned subject
        """
        subjects = list(subjects)
        start_time = time.time()
        verdicts: List[RiskVerdict] = []
        errors = 0
        cancelled = False

        for index, subject in enumerate(subjects):
            self._notify(on_progress, index, subject, ScanState.PENDING)

        for index, subject in enumerate(subjects):
            if cancel_event is not None and cancel_event.is_set():
                logger.info(f"⚠️ Batch cancelled after {index}/{len(subjects)} subjects")
                cancelled = True
                break

            self._notify(on_progress, index, subject, ScanState.IN_FLIGHT)
            verdict = self.scan_subject(subject)
            verdicts.append(verdict)

            if verdict.has_errors:
                errors += 1
                self._notify(on_progress, index, subject, ScanState.ERRORED)
            else:
                self._notify(on_progress, index, subject, ScanState.SCORED)

        result = ScanBatchResult(
            total=len(subjects),
            malicious=sum(1 for v in verdicts if v.level == ThreatLevel.MALICIOUS),
            suspicious=sum(1 for v in verdicts if v.level == ThreatLevel.SUSPICIOUS),
            clean=sum(1 for v in verdicts if v.level == ThreatLevel.CLEAN),
            errors=errors,
            verdicts=verdicts,
            cancelled=cancelled
        )

        logger.info(
            f"✓ Scanned {len(verdicts)}/{len(subjects)} subjects in {time.time() - start_time:.2f}s "
            f"({result.malicious} malicious, {result.suspicious} suspicious, {result.errors} with errors)"
        )
        return result

    def scan_subject(self, subject: Subject) -> RiskVerdict:
        provider_verdicts, heuristic = self.gather_evidence(subject)
        return self.fusion.fuse(subject, provider_verdicts, heuristic)

    def gather_evidence(self, subject: Subject) -> Tuple[List[ProviderVerdict], HeuristicFinding]:
        """
        Run every configured provider that supports the subject, then the heuristic

        Returns:
            (provider verdicts in call order, heuristic finding)
        """
        provider_verdicts = [
            self._lookup(adapter, subject)
            for adapter in self.adapters
            if adapter.is_configured and adapter.supports(subject)
        ]

        phone_verdict = None
        if subject.kind == SubjectKind.PHONE_NUMBER:
            phone_verdict = next(
                (v for v in provider_verdicts if v.provider == PhoneValidationAdapter.name),
                None
            )

        heuristic = self.scorer.score(HeuristicFacts.for_subject(subject, phone_verdict))
        return provider_verdicts, heuristic

    def status(self) -> Dict:
        return {
            'providers': {adapter.name: adapter.is_configured for adapter in self.adapters},
            'rate_limits': self.rate_limiter.status() if self.rate_limiter else {},
            'cache': self.cache.stats()
        }

    # ===== Helper Methods =====

    def _lookup(self, adapter: ProviderAdapter, subject: Subject) -> ProviderVerdict:
        resource = adapter.resource_for(subject)

        cached = self.cache.get(adapter.name, resource)
        if cached is not None:
            logger.debug(f"Cache hit: {adapter.name}:{resource}")
            return cached

        verdict = adapter.check(subject)
        if not verdict.is_error:
            ttl = self.cache_ttls.get(adapter.name, DEFAULT_CACHE_TTL_SECONDS)
            self.cache.put(adapter.name, resource, verdict, ttl)
        return verdict

    @staticmethod
    def _notify(on_progress: Optional[ProgressCallback], index: int, subject: Subject, state: ScanState):
        logger.debug(f"[{index}] {subject.kind.value}:{subject.identifier} -> {state.value}")
        if on_progress is not None:
            on_progress(index, subject, state)


# ===== Wiring =====

def build_rate_limiter(settings: Settings) -> RateLimiter:
    return RateLimiter({
        ReputationAdapter.name: ProviderQuota(
            settings.VIRUSTOTAL_MIN_INTERVAL_SECONDS,
            settings.VIRUSTOTAL_DAILY_QUOTA
        ),
        AbuseAdapter.name: ProviderQuota(
            settings.ABUSEIPDB_MIN_INTERVAL_SECONDS,
            settings.ABUSEIPDB_DAILY_QUOTA
        ),
        PhoneValidationAdapter.name: ProviderQuota(
            settings.NUMVERIFY_MIN_INTERVAL_SECONDS,
            settings.NUMVERIFY_DAILY_QUOTA
        ),
    })


def build_verdict_cache(settings: Settings) -> VerdictCache:
    backend = settings.VERDICT_CACHE_BACKEND.lower()
    if backend == 'memory':
        return MemoryVerdictCache()
    if backend == 'database':
        from trinetra_intel.database import SessionLocal
        return DatabaseVerdictCache(SessionLocal)
    raise ValueError(f"Unknown VERDICT_CACHE_BACKEND '{settings.VERDICT_CACHE_BACKEND}'")


def build_batch_scanner(
    settings: Settings,
    http_session: Optional[requests.Session] = None,
    cache: Optional[VerdictCache] = None,
    rate_limiter: Optional[RateLimiter] = None
) -> BatchScanner:
    """Assemble a scanner from settings; one instance is shared per process"""
    rate_limiter = rate_limiter or build_rate_limiter(settings)
    http_session = http_session or build_http_session(settings.USER_AGENT)
    common = {
        'rate_limiter': rate_limiter,
        'http_session': http_session,
        'timeout': settings.HTTP_TIMEOUT_SECONDS
    }

    adapters = [
        ReputationAdapter(settings.VIRUSTOTAL_API_KEY, base_url=settings.VIRUSTOTAL_BASE_URL, **common),
        AbuseAdapter(
            settings.ABUSEIPDB_API_KEY,
            base_url=settings.ABUSEIPDB_BASE_URL,
            max_age_days=settings.ABUSE_MAX_AGE_DAYS,
            **common
        ),
        PhoneValidationAdapter(settings.NUMVERIFY_API_KEY, base_url=settings.NUMVERIFY_BASE_URL, **common),
    ]

    for adapter in adapters:
        if not adapter.is_configured:
            logger.warning(f"⚠️ {adapter.name} API key not set, scans fall back to heuristics")

    return BatchScanner(
        adapters=adapters,
        cache=cache or build_verdict_cache(settings),
        scorer=HeuristicScorer(LocalBlocklist.load(settings.LOCAL_BLOCKLIST_PATH)),
        cache_ttls={
            ReputationAdapter.name: settings.REPUTATION_CACHE_TTL_SECONDS,
            AbuseAdapter.name: settings.ABUSE_CACHE_TTL_SECONDS,
            PhoneValidationAdapter.name: settings.PHONE_CACHE_TTL_SECONDS,
        },
        rate_limiter=rate_limiter
    )
