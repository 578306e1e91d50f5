import pytest

from trinetra_intel.core.cache import MemoryVerdictCache
from trinetra_intel.core.errors import InvalidSubject
from trinetra_intel.core.providers import PhoneValidationAdapter
from trinetra_intel.core.rate_limiter import RateLimiter
from trinetra_intel.core.verdicts import PhoneRiskLevel
from trinetra_intel.services.call_screening import CallScreeningService
from trinetra_intel.services.scan_service import BatchScanner

from conftest import numverify_payload


def _service(session):
    adapter = PhoneValidationAdapter("nv-key", RateLimiter(), http_session=session)
    return CallScreeningService(BatchScanner(adapters=[adapter], cache=MemoryVerdictCache()))


def test_spam_number_is_flagged(make_session, make_response):
    session = make_session(make_response(payload=numverify_payload(line_type="voip", carrier="Virtual Mobile")))
    result = _service(session).check("+91 98765 4321")

    assert result.phone_number == "+91987654321"
    assert result.is_spam is True
    assert result.risk_level == PhoneRiskLevel.HIGH
    assert result.risk_score == 4
    assert result.phone_info.carrier == "Virtual Mobile"


def test_regular_number_is_legitimate(make_session, make_response):
    session = make_session(make_response(payload=numverify_payload()))
    result = _service(session).check("+91987654321")

    assert result.is_spam is False
    assert result.reason == "Number appears legitimate"


def test_allow_list_skips_lookup(make_session):
    session = make_session()
    service = _service(session)
    service.allow("+91-98765-4321")

    result = service.check("+91987654321")
    assert result.is_spam is False
    assert result.reason == "Number is whitelisted"
    session.get.assert_not_called()


def test_block_list_marks_spam(make_session):
    service = _service(make_session())
    service.block("+14155550100")

    result = service.check("+1 (415) 555-0100")
    assert result.is_spam is True
    assert result.risk_level == PhoneRiskLevel.HIGH
    assert result.reason == "Number is blacklisted"


def test_block_and_allow_are_exclusive(make_session):
    service = _service(make_session())
    service.block("+14155550100")
    service.allow("+14155550100")

    assert service.blocked() == []
    assert service.allowed() == ["+14155550100"]


def test_invalid_number_is_rejected(make_session):
    with pytest.raises(InvalidSubject):
        _service(make_session()).check("12")
