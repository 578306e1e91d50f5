import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Optional, Set, Tuple

import tldextract

from trinetra_intel.core.subjects import is_ip_literal, normalize_permission, url_host
from trinetra_intel.core.verdicts import HeuristicFinding, ProviderVerdict, Subject, SubjectKind

logger = logging.getLogger(__name__)

# permission -> (score it lowers, penalty, threat shown to the user)
PERMISSION_RULES: Dict[str, Tuple[str, int, str]] = {
    'READ_CONTACTS': ('privacy', 15, 'Can access your contacts'),
    'READ_SMS': ('privacy', 20, 'Can read your text messages'),
    'ACCESS_FINE_LOCATION': ('privacy', 10, 'Can track your precise location'),
    'RECORD_AUDIO': ('privacy', 15, 'Can record audio without notification'),
    'CAMERA': ('privacy', 10, 'Can access camera'),
    'READ_CALL_LOG': ('privacy', 15, 'Can access call history'),
    'WRITE_EXTERNAL_STORAGE': ('security', 5, 'Can modify files on device'),
    'INSTALL_PACKAGES': ('security', 20, 'Can install other apps'),
    'SYSTEM_ALERT_WINDOW': ('security', 10, 'Can display over other apps'),
}

LOW_SCORE_THRESHOLD = 70

KNOWN_LINE_TYPES = {'mobile', 'landline'}
SUSPICIOUS_CARRIER_KEYWORDS = ('voip', 'virtual', 'prepaid')
VOIP_RISK = 2
SUSPICIOUS_CARRIER_RISK = 2
UNKNOWN_LINE_TYPE_RISK = 1
INVALID_NUMBER_RISK = 4

BLOCKLIST_SECURITY_PENALTY = 60

# Bundled public-suffix snapshot only; never fetched at runtime
_extract_domain = tldextract.TLDExtract(suffix_list_urls=())


@dataclass(frozen=True)
class HeuristicFacts:
    """Static, locally known facts about a subject"""
    kind: SubjectKind
    permissions: Tuple[str, ...] = ()
    host: Optional[str] = None
    line_type: Optional[str] = None
    carrier: Optional[str] = None
    valid: Optional[bool] = None

    @classmethod
    def for_subject(cls, subject: Subject, phone_verdict: Optional[ProviderVerdict] = None) -> 'HeuristicFacts':
        if subject.kind == SubjectKind.APP:
            return cls(kind=subject.kind, permissions=subject.permissions)
        if subject.kind == SubjectKind.URL:
            return cls(kind=subject.kind, host=url_host(subject.identifier))
        if subject.kind == SubjectKind.IP:
            return cls(kind=subject.kind, host=subject.identifier)

        if phone_verdict is None or phone_verdict.is_error:
            return cls(kind=subject.kind)
        return cls(
            kind=subject.kind,
            line_type=phone_verdict.line_type,
            carrier=phone_verdict.carrier,
            valid=phone_verdict.valid
        )


@dataclass
class LocalBlocklist:
    domains: Set[str] = field(default_factory=set)
    ips: Set[str] = field(default_factory=set)

    @classmethod
    def load(cls, path: Optional[str]) -> 'LocalBlocklist':
        """
        Load known-bad domains and IPs from a JSON file

        Args:
            path: File with {"bad_domains": [...], "bad_ips": [...]}

        Returns:
            LocalBlocklist, empty when the file is missing or unreadable
        """
        if not path:
            return cls()

        file_path = Path(path)
        if not file_path.exists():
            logger.warning(f"⚠️ No blocklist file at {file_path}, using empty list")
            return cls()

        try:
            with open(file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"❌ JSON decode error in blocklist: {e}")
            return cls()
        except OSError as e:
            logger.error(f"❌ IO error loading blocklist: {e}")
            return cls()

        blocklist = cls(
            domains={d.lower().strip() for d in data.get('bad_domains', []) if d},
            ips={ip.strip() for ip in data.get('bad_ips', []) if ip}
        )
        logger.info(f"✓ Loaded {len(blocklist.domains)} domains and {len(blocklist.ips)} IPs from: {file_path}")
        return blocklist

    def matches(self, host: str) -> bool:
        host = (host or '').lower()
        if not host:
            return False
        if is_ip_literal(host):
            return host in self.ips

        parts = _extract_domain(host)
        registered = '.'.join(p for p in (parts.domain, parts.suffix) if p)
        return host in self.domains or registered in self.domains


class HeuristicScorer:
    def __init__(self, blocklist: Optional[LocalBlocklist] = None):
        """
        Offline risk scoring from static facts. Pure: no network, no clock.

        Args:
            blocklist: Known-bad domains/IPs for URL and IP subjects
        """
        self.blocklist = blocklist or LocalBlocklist()

    def score(self, facts: HeuristicFacts) -> HeuristicFinding:
        if facts.kind == SubjectKind.APP:
            return self.score_permissions(facts.permissions)
        if facts.kind == SubjectKind.PHONE_NUMBER:
            return self.score_phone(facts.line_type, facts.carrier, facts.valid)
        return self.score_host(facts.host)

    def score_permissions(self, permissions: Iterable[str]) -> HeuristicFinding:
        """
        Privacy/security scores from declared Android permissions

        Args:
            permissions: Short ('READ_SMS') or full ('android.permission.READ_SMS') names

        Returns:
            HeuristicFinding with both scores clamped to [0, 100]
        """
        scores = {'privacy': 100, 'security': 100}
        threats = []

        for permission in dict.fromkeys(normalize_permission(p) for p in permissions):
            rule = PERMISSION_RULES.get(permission)
            if rule is None:
                continue
            category, penalty, threat = rule
            scores[category] -= penalty
            threats.append(threat)

        privacy = _clamp(scores['privacy'])
        security = _clamp(scores['security'])

        recommendations = []
        if threats:
            recommendations.append('Review app permissions in settings')
        if privacy < LOW_SCORE_THRESHOLD:
            recommendations.append('Consider using privacy-focused alternatives')
        if security < LOW_SCORE_THRESHOLD:
            recommendations.append('Monitor app behavior closely')

        return HeuristicFinding(
            threats=threats,
            recommendations=recommendations,
            privacy_score=privacy,
            security_score=security
        )

    def score_phone(self, line_type: Optional[str], carrier: Optional[str], valid: Optional[bool]) -> HeuristicFinding:
        """
        Spam risk points from line type and carrier

        Only runs on validation data; a number nobody could look up gets no
        points. Country is not an input.
        """
        if valid is None:
            return HeuristicFinding()

        risk = 0
        threats = []

        if valid is False:
            risk += INVALID_NUMBER_RISK
            threats.append('Invalid or unverifiable number')
        else:
            kind = (line_type or '').lower()
            if kind == 'voip':
                risk += VOIP_RISK
                threats.append('VoIP number')
            elif kind not in KNOWN_LINE_TYPES:
                risk += UNKNOWN_LINE_TYPE_RISK
                threats.append('Unknown line type')

            if carrier and any(word in carrier.lower() for word in SUSPICIOUS_CARRIER_KEYWORDS):
                risk += SUSPICIOUS_CARRIER_RISK
                threats.append('Suspicious carrier')

        return HeuristicFinding(threats=threats, risk_score=risk)

    def score_host(self, host: Optional[str]) -> HeuristicFinding:
        if not host or not self.blocklist.matches(host):
            return HeuristicFinding()

        return HeuristicFinding(
            threats=['Listed in local threat blocklist'],
            security_score=_clamp(100 - BLOCKLIST_SECURITY_PENALTY)
        )


def _clamp(value: int, low: int = 0, high: int = 100) -> int:
    return max(low, min(high, value))
