import logging
import threading
from typing import List, Set

from trinetra_intel.core.providers import PhoneValidationAdapter
from trinetra_intel.core.subjects import make_subject
from trinetra_intel.core.verdicts import PhoneRiskLevel, SpamCheckResult, SubjectKind
from trinetra_intel.services.scan_service import BatchScanner

logger = logging.getLogger(__name__)


class CallScreeningService:
    def __init__(self, scanner: BatchScanner):
        """
        Spam checks for incoming numbers plus user block/allow lists

        Args:
            scanner: Shared scanner used for number validation
        """
        self.scanner = scanner
        self._lock = threading.Lock()
        self._blocked: Set[str] = set()
        self._allowed: Set[str] = set()

    def check(self, phone_number: str) -> SpamCheckResult:
        """
        Decide whether a number is spam

        Args:
            phone_number: Raw number as dialed or received

        Returns:
            SpamCheckResult

        Raises:
            InvalidSubject: if the number cannot be normalized
        """
        subject = make_subject(SubjectKind.PHONE_NUMBER, phone_number)
        number = subject.identifier

        with self._lock:
            allowed = number in self._allowed
            blocked = number in self._blocked

        if allowed:
            return SpamCheckResult(
                phone_number=number,
                is_spam=False,
                risk_level=PhoneRiskLevel.LOW,
                reason='Number is whitelisted'
            )
        if blocked:
            return SpamCheckResult(
                phone_number=number,
                is_spam=True,
                risk_level=PhoneRiskLevel.HIGH,
                reason='Number is blacklisted'
            )

        provider_verdicts, heuristic = self.scanner.gather_evidence(subject)
        phone_verdict = next(
            (v for v in provider_verdicts if v.provider == PhoneValidationAdapter.name),
            None
        )
        result = self.scanner.fusion.assess_phone(number, phone_verdict, heuristic)

        if result.is_spam:
            logger.warning(f"⚠️ Spam number detected: {number} ({result.reason})")
        return result

    def block(self, phone_number: str) -> str:
        number = make_subject(SubjectKind.PHONE_NUMBER, phone_number).identifier
        with self._lock:
            self._allowed.discard(number)
            self._blocked.add(number)
        logger.info(f"✓ Blocked {number}")
        return number

    def allow(self, phone_number: str) -> str:
        number = make_subject(SubjectKind.PHONE_NUMBER, phone_number).identifier
        with self._lock:
            self._blocked.discard(number)
            self._allowed.add(number)
        logger.info(f"✓ Allowed {number}")
        return number

    def blocked(self) -> List[str]:
        with self._lock:
            return sorted(self._blocked)

    def allowed(self) -> List[str]:
        with self._lock:
            return sorted(self._allowed)
