from typing import Dict, Iterable, List, Optional, Tuple

from trinetra_intel.core.verdicts import (
    HeuristicFinding,
    PhoneRiskLevel,
    ProviderVerdict,
    RiskVerdict,
    Source,
    SpamCheckResult,
    Subject,
    SubjectKind,
    ThreatLevel,
)


# Score penalty contributed by each provider level
LEVEL_PENALTIES: Dict[ThreatLevel, int] = {
    ThreatLevel.MALICIOUS: 40,
    ThreatLevel.SUSPICIOUS: 15,
    ThreatLevel.CLEAN: 0,
}

MALICIOUS_SCORE_BELOW = 50
SUSPICIOUS_SCORE_BELOW = 70

SPAM_RISK_SCORE = 4
MEDIUM_RISK_SCORE = 2

PHONE_RISK_LEVELS: Dict[PhoneRiskLevel, ThreatLevel] = {
    PhoneRiskLevel.HIGH: ThreatLevel.MALICIOUS,
    PhoneRiskLevel.MEDIUM: ThreatLevel.SUSPICIOUS,
    PhoneRiskLevel.LOW: ThreatLevel.CLEAN,
}

LEVEL_RECOMMENDATIONS: Dict[SubjectKind, Dict[ThreatLevel, List[str]]] = {
    SubjectKind.APP: {
        ThreatLevel.MALICIOUS: [
            'URGENT: Uninstall this app immediately',
            'Run full device scan',
            'Change passwords for sensitive accounts',
        ],
        ThreatLevel.SUSPICIOUS: [
            'Review app carefully before using',
            'Monitor app behavior',
            'Consider finding alternative app',
        ],
    },
    SubjectKind.URL: {
        ThreatLevel.MALICIOUS: ['Do not open this link', 'Do not enter credentials on this site'],
        ThreatLevel.SUSPICIOUS: ['Open this link with caution'],
    },
    SubjectKind.IP: {
        ThreatLevel.MALICIOUS: ['Block connections to this IP address'],
        ThreatLevel.SUSPICIOUS: ['Monitor connections to this IP address'],
    },
    SubjectKind.PHONE_NUMBER: {
        ThreatLevel.MALICIOUS: ['Block this number'],
        ThreatLevel.SUSPICIOUS: ['Be cautious when answering calls from this number'],
    },
}


def classify_phone_risk(risk_score: int) -> Tuple[bool, PhoneRiskLevel]:
    """
    Spam policy for phone numbers

    Returns:
        (is_spam, risk_level). Only high risk counts as spam; medium is
        advisory.
    """
    if risk_score >= SPAM_RISK_SCORE:
        return True, PhoneRiskLevel.HIGH
    if risk_score >= MEDIUM_RISK_SCORE:
        return False, PhoneRiskLevel.MEDIUM
    return False, PhoneRiskLevel.LOW


class EvidenceFusion:
    """Merges provider verdicts and the heuristic finding into one RiskVerdict"""

    def fuse(
        self,
        subject: Subject,
        provider_verdicts: Iterable[ProviderVerdict],
        heuristic: Optional[HeuristicFinding] = None
    ) -> RiskVerdict:
        """
        Build the final verdict for a subject

        Args:
            subject: Subject that was scanned
            provider_verdicts: Every ProviderVerdict gathered, errored ones included
            heuristic: Offline finding; a neutral one is assumed when missing

        Returns:
            RiskVerdict. With no usable evidence it defaults to Clean/100.
        """
        provider_verdicts = list(provider_verdicts)
        heuristic = heuristic or HeuristicFinding()

        threats: List[str] = []
        recommendations: List[str] = []
        levels: List[ThreatLevel] = []

        for verdict in provider_verdicts:
            if verdict.is_error:
                recommendations.append(f"unable to verify via {verdict.provider}")
                continue
            threats.extend(verdict.threats)
            recommendations.extend(verdict.recommendations)
            if verdict.level is not None:
                levels.append(verdict.level)

        threats.extend(heuristic.threats)
        recommendations.extend(heuristic.recommendations)
        threats = _dedupe(threats)

        heuristic_level = self._heuristic_level(subject, heuristic)
        level = self._decide_level(levels, heuristic_level, threats)
        score = self._score(subject, levels, heuristic)

        recommendations.extend(LEVEL_RECOMMENDATIONS.get(subject.kind, {}).get(level, []))

        has_live = any(not v.is_error for v in provider_verdicts)
        return RiskVerdict(
            subject=subject,
            level=level,
            score=score,
            threats=threats,
            recommendations=_dedupe(recommendations),
            sources=provider_verdicts,
            source=Source.LIVE if has_live else Source.HEURISTIC
        )

    def assess_phone(
        self,
        phone_number: str,
        phone_verdict: Optional[ProviderVerdict],
        heuristic: HeuristicFinding
    ) -> SpamCheckResult:
        """Spam decision for a single number"""
        is_spam, risk_level = classify_phone_risk(heuristic.risk_score)

        if heuristic.threats:
            reason = ', '.join(heuristic.threats)
        elif phone_verdict is None or phone_verdict.is_error:
            reason = 'Unable to verify number'
        else:
            reason = 'Number appears legitimate'

        return SpamCheckResult(
            phone_number=phone_number,
            is_spam=is_spam,
            risk_level=risk_level,
            risk_score=heuristic.risk_score,
            reason=reason,
            phone_info=phone_verdict
        )

    # ===== Helper Methods =====

    @staticmethod
    def _heuristic_level(subject: Subject, heuristic: HeuristicFinding) -> ThreatLevel:
        if subject.kind == SubjectKind.PHONE_NUMBER:
            _, risk_level = classify_phone_risk(heuristic.risk_score)
            return PHONE_RISK_LEVELS[risk_level]

        lowest = min(heuristic.privacy_score, heuristic.security_score)
        if lowest < MALICIOUS_SCORE_BELOW:
            return ThreatLevel.MALICIOUS
        if lowest < SUSPICIOUS_SCORE_BELOW:
            return ThreatLevel.SUSPICIOUS
        return ThreatLevel.CLEAN

    @staticmethod
    def _decide_level(levels: List[ThreatLevel], heuristic_level: ThreatLevel, threats: List[str]) -> ThreatLevel:
        if ThreatLevel.MALICIOUS in levels or heuristic_level == ThreatLevel.MALICIOUS:
            return ThreatLevel.MALICIOUS
        if ThreatLevel.SUSPICIOUS in levels or heuristic_level == ThreatLevel.SUSPICIOUS or len(threats) > 1:
            return ThreatLevel.SUSPICIOUS
        return ThreatLevel.CLEAN

    @staticmethod
    def _score(subject: Subject, levels: List[ThreatLevel], heuristic: HeuristicFinding) -> int:
        provider_penalty = min(100, sum(LEVEL_PENALTIES[level] for level in levels))

        phone_penalty = 0
        if subject.kind == SubjectKind.PHONE_NUMBER:
            _, risk_level = classify_phone_risk(heuristic.risk_score)
            phone_penalty = LEVEL_PENALTIES[PHONE_RISK_LEVELS[risk_level]]

        penalty = max(
            100 - heuristic.privacy_score,
            100 - heuristic.security_score,
            phone_penalty,
            provider_penalty
        )
        return max(0, min(100, 100 - penalty))


def _dedupe(items: Iterable[str]) -> List[str]:
    return list(dict.fromkeys(item for item in items if item))
