import logging
from typing import Dict, List, Optional

import requests

from trinetra_intel.core.errors import ErrorKind, ProviderError
from trinetra_intel.core.rate_limiter import RateLimiter
from trinetra_intel.core.subjects import is_ip_literal, url_host
from trinetra_intel.core.verdicts import ProviderVerdict, Subject, SubjectKind, ThreatLevel

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_DETECTION_NAMES = 10


def build_http_session(user_agent: str = 'Trinetra-Intel/1.0') -> requests.Session:
    """One pooled session shared by every adapter"""
    session = requests.Session()
    session.headers.update({'User-Agent': user_agent})
    return session


class ProviderAdapter:
    """
    Base class for external threat-intelligence providers

    Subclasses implement supports(), resource_for(), _fetch() and
    _translate(). check() wraps them with rate limiting and turns every
    failure into an errored ProviderVerdict, so it never raises.
    """

    name = 'provider'
    default_base_url = ''

    def __init__(
        self,
        api_key: Optional[str],
        rate_limiter: RateLimiter,
        http_session: Optional[requests.Session] = None,
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS
    ):
        self.api_key = api_key
        self.rate_limiter = rate_limiter
        self.http_session = http_session or build_http_session()
        self.base_url = (base_url or self.default_base_url).rstrip('/')
        self.timeout = timeout

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def supports(self, subject: Subject) -> bool:
        raise NotImplementedError

    def resource_for(self, subject: Subject) -> str:
        """The value actually submitted to the provider (and used as cache key)"""
        return subject.identifier

    def check(self, subject: Subject) -> ProviderVerdict:
        """
        Query the provider about a subject

        Args:
            subject: Normalized subject this adapter supports

        Returns:
            ProviderVerdict; `error` is set when the lookup failed
        """
        resource = self.resource_for(subject)

        if not self.rate_limiter.acquire(self.name):
            return self._error_verdict(resource, ErrorKind.QUOTA_EXCEEDED)

        try:
            payload = self._fetch(subject, resource)
            verdict = self._translate(resource, payload)
        except ProviderError as e:
            logger.warning(f"⚠️ {self.name} lookup failed for {resource}: {e}")
            return self._error_verdict(resource, e.kind, e.status)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ {self.name} returned an unexpected payload for {resource}: {e}")
            return self._error_verdict(resource, ErrorKind.MALFORMED_RESPONSE)

        logger.info(f"✓ {self.name}: {resource} -> {verdict.level.value if verdict.level else 'no verdict'}")
        return verdict

    # ===== Subclass Hooks =====

    def _fetch(self, subject: Subject, resource: str) -> Dict:
        raise NotImplementedError

    def _translate(self, resource: str, payload: Dict) -> ProviderVerdict:
        raise NotImplementedError

    # ===== Helper Methods =====

    def _get_json(self, url: str, **kwargs) -> Dict:
        try:
            response = self.http_session.get(url, timeout=self.timeout, **kwargs)
        except requests.Timeout:
            raise ProviderError(ErrorKind.NETWORK_TIMEOUT, "request timeout")
        except requests.RequestException as e:
            raise ProviderError(ErrorKind.NETWORK_ERROR, str(e))

        self._check_status(response)

        try:
            payload = response.json()
        except ValueError:
            raise ProviderError(ErrorKind.MALFORMED_RESPONSE, "response is not JSON")

        if not isinstance(payload, dict):
            raise ProviderError(ErrorKind.MALFORMED_RESPONSE, "response is not a JSON object")
        return payload

    def _check_status(self, response: requests.Response):
        status = response.status_code
        if status == 429:
            raise ProviderError(ErrorKind.QUOTA_EXCEEDED, "provider rate limit exceeded", status)
        if status in (401, 403):
            logger.error(f"❌ {self.name} authentication failed (invalid API key)")
            raise ProviderError(ErrorKind.PROVIDER_HTTP_ERROR, "authentication failed", status)
        if not 200 <= status < 300:
            raise ProviderError(ErrorKind.PROVIDER_HTTP_ERROR, f"status code {status}", status)

    def _error_verdict(self, resource: str, kind: ErrorKind, status: Optional[int] = None) -> ProviderVerdict:
        return ProviderVerdict(
            provider=self.name,
            subject_id=resource,
            error=kind,
            error_status=status
        )


class ReputationAdapter(ProviderAdapter):
    """File-hash and URL reputation (VirusTotal public API v2)"""

    name = 'virustotal'
    default_base_url = 'https://www.virustotal.com/vtapi/v2'

    # Positives needed for each level
    SUSPICIOUS_MIN_POSITIVES = 1
    MALICIOUS_MIN_POSITIVES = 6

    def supports(self, subject: Subject) -> bool:
        if subject.kind == SubjectKind.APP:
            return subject.file_hash is not None
        return subject.kind == SubjectKind.URL

    def resource_for(self, subject: Subject) -> str:
        if subject.kind == SubjectKind.APP:
            return subject.file_hash
        return subject.identifier

    @classmethod
    def classify(cls, positives: int) -> ThreatLevel:
        if positives >= cls.MALICIOUS_MIN_POSITIVES:
            return ThreatLevel.MALICIOUS
        if positives >= cls.SUSPICIOUS_MIN_POSITIVES:
            return ThreatLevel.SUSPICIOUS
        return ThreatLevel.CLEAN

    def _fetch(self, subject: Subject, resource: str) -> Dict:
        endpoint = 'file/report' if subject.kind == SubjectKind.APP else 'url/report'
        return self._get_json(
            f"{self.base_url}/{endpoint}",
            params={'apikey': self.api_key, 'resource': resource}
        )

    def _check_status(self, response: requests.Response):
        # The public v2 API answers 204 once the per-minute quota is spent
        if response.status_code == 204:
            raise ProviderError(ErrorKind.QUOTA_EXCEEDED, "public API quota exceeded", 204)
        super()._check_status(response)

    def _translate(self, resource: str, payload: Dict) -> ProviderVerdict:
        if payload.get('response_code') != 1:
            # Not in the dataset yet: no evidence either way
            return ProviderVerdict(provider=self.name, subject_id=resource)

        positives = int(payload['positives'])
        total = int(payload['total'])
        if positives < 0 or total < positives:
            raise ProviderError(ErrorKind.MALFORMED_RESPONSE, f"impossible ratio {positives}/{total}")

        threats = []
        if positives > 0:
            threats.append(f"{positives}/{total} engines detected threats")

        return ProviderVerdict(
            provider=self.name,
            subject_id=resource,
            level=self.classify(positives),
            detection_ratio=(positives, total),
            detections=self._detection_names(payload.get('scans')),
            scan_date=payload.get('scan_date'),
            threats=threats
        )

    @staticmethod
    def _detection_names(scans) -> List[str]:
        if not isinstance(scans, dict):
            return []

        names = []
        for result in scans.values():
            if isinstance(result, dict) and result.get('detected') and result.get('result'):
                name = str(result['result'])
                if name not in names:
                    names.append(name)
        return names[:MAX_DETECTION_NAMES]


class AbuseAdapter(ProviderAdapter):
    """IP abuse reputation (AbuseIPDB v2 check)"""

    name = 'abuseipdb'
    default_base_url = 'https://api.abuseipdb.com/api/v2'

    MEDIUM_MIN_SCORE = 25
    HIGH_MIN_SCORE = 76
    MULTIPLE_REPORTS_THRESHOLD = 5

    def __init__(self, *args, max_age_days: int = 90, **kwargs):
        super().__init__(*args, **kwargs)
        self.max_age_days = max_age_days

    def supports(self, subject: Subject) -> bool:
        if subject.kind == SubjectKind.IP:
            return True
        return subject.kind == SubjectKind.URL and is_ip_literal(url_host(subject.identifier))

    def resource_for(self, subject: Subject) -> str:
        if subject.kind == SubjectKind.URL:
            return url_host(subject.identifier)
        return subject.identifier

    @classmethod
    def classify(cls, abuse_score: int) -> ThreatLevel:
        if abuse_score >= cls.HIGH_MIN_SCORE:
            return ThreatLevel.MALICIOUS
        if abuse_score >= cls.MEDIUM_MIN_SCORE:
            return ThreatLevel.SUSPICIOUS
        return ThreatLevel.CLEAN

    def _fetch(self, subject: Subject, resource: str) -> Dict:
        return self._get_json(
            f"{self.base_url}/check",
            headers={
                'Key': self.api_key,
                'Accept': 'application/json'
            },
            params={
                'ipAddress': resource,
                'maxAgeInDays': str(self.max_age_days),
                'verbose': ''
            }
        )

    def _translate(self, resource: str, payload: Dict) -> ProviderVerdict:
        data = payload['data']
        abuse_score = int(data['abuseConfidenceScore'])
        report_count = int(data.get('totalReports') or 0)
        level = self.classify(abuse_score)

        threats = []
        if level == ThreatLevel.MALICIOUS:
            threats.append(f"High abuse confidence score: {abuse_score}%")
        elif level == ThreatLevel.SUSPICIOUS:
            threats.append(f"Moderate abuse confidence score: {abuse_score}%")
        if report_count > self.MULTIPLE_REPORTS_THRESHOLD:
            threats.append(f"Multiple abuse reports: {report_count}")

        return ProviderVerdict(
            provider=self.name,
            subject_id=resource,
            level=level,
            abuse_score=abuse_score,
            report_count=report_count,
            isp=data.get('isp'),
            whitelisted=data.get('isWhitelisted'),
            country_code=data.get('countryCode'),
            threats=threats
        )


class PhoneValidationAdapter(ProviderAdapter):
    """Phone number validation (numverify). Supplies facts, never a level."""

    name = 'numverify'
    default_base_url = 'http://apilayer.net/api'

    USAGE_LIMIT_CODE = 104

    def supports(self, subject: Subject) -> bool:
        return subject.kind == SubjectKind.PHONE_NUMBER

    def _fetch(self, subject: Subject, resource: str) -> Dict:
        payload = self._get_json(
            f"{self.base_url}/validate",
            params={
                'access_key': self.api_key,
                'number': resource,
                'format': 1
            }
        )

        # numverify reports API errors in a 200 body
        if payload.get('success') is False:
            error = payload.get('error')
            if not isinstance(error, dict):
                raise ProviderError(ErrorKind.PROVIDER_HTTP_ERROR, str(error or 'unknown error'))
            code = error.get('code')
            code = code if isinstance(code, int) else None
            info = str(error.get('info') or '')
            if code == self.USAGE_LIMIT_CODE:
                raise ProviderError(ErrorKind.QUOTA_EXCEEDED, info, code)
            raise ProviderError(ErrorKind.PROVIDER_HTTP_ERROR, info, code)

        return payload

    def _translate(self, resource: str, payload: Dict) -> ProviderVerdict:
        if 'valid' not in payload:
            raise ProviderError(ErrorKind.MALFORMED_RESPONSE, "missing 'valid' field")

        line_type = payload.get('line_type')
        if line_type is not None and not isinstance(line_type, str):
            raise ProviderError(ErrorKind.MALFORMED_RESPONSE, f"unexpected line_type {line_type!r}")
        return ProviderVerdict(
            provider=self.name,
            subject_id=resource,
            valid=bool(payload['valid']),
            line_type=line_type.lower() if line_type else None,
            carrier=payload.get('carrier') or None,
            country_code=payload.get('country_code') or None,
            country_name=payload.get('country_name') or None
        )
