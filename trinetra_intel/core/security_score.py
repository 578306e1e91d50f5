from typing import Iterable, List

from trinetra_intel.core.verdicts import DeviceSecurityScore, RiskVerdict, ThreatLevel, utcnow

MALICIOUS_WEIGHT = 20
SUSPICIOUS_WEIGHT = 10
FULL_SCAN_BELOW = 70
FACTORY_RESET_BELOW = 60


class SecurityScoreAggregator:
    """Reduces a set of app verdicts to one device-level score"""

    def aggregate(self, verdicts: Iterable[RiskVerdict]) -> DeviceSecurityScore:
        """
        Args:
            verdicts: RiskVerdicts of the scanned apps

        Returns:
            DeviceSecurityScore; an empty set scores 100
        """
        verdicts = list(verdicts)
        malicious = sum(1 for v in verdicts if v.level == ThreatLevel.MALICIOUS)
        suspicious = sum(1 for v in verdicts if v.level == ThreatLevel.SUSPICIOUS)
        clean = len(verdicts) - malicious - suspicious

        score = max(0, min(100, 100 - MALICIOUS_WEIGHT * malicious - SUSPICIOUS_WEIGHT * suspicious))

        return DeviceSecurityScore(
            score=score,
            threat_count=malicious,
            suspicious_count=suspicious,
            clean_count=clean,
            recommendations=self._recommendations(score, malicious, suspicious),
            last_scan=max((v.scanned_at for v in verdicts), default=None) or utcnow()
        )

    @staticmethod
    def _recommendations(score: int, malicious: int, suspicious: int) -> List[str]:
        recommendations = []
        if malicious > 0:
            recommendations.append(f"Remove {malicious} malicious app(s)")
        if suspicious > 0:
            recommendations.append(f"Review {suspicious} suspicious app(s)")
        if score < FULL_SCAN_BELOW:
            recommendations.append('Run full device scan immediately')
        if score < FACTORY_RESET_BELOW:
            recommendations.append('Consider factory reset')
            recommendations.append('Enable real-time protection')
        return recommendations
