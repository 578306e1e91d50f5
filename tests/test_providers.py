import pytest
import requests

from trinetra_intel.core.errors import ErrorKind
from trinetra_intel.core.providers import AbuseAdapter, PhoneValidationAdapter, ReputationAdapter
from trinetra_intel.core.rate_limiter import ProviderQuota, RateLimiter
from trinetra_intel.core.subjects import make_subject
from trinetra_intel.core.verdicts import Source, ThreatLevel

APK_HASH = "a" * 64


def _reputation(session, limiter=None):
    return ReputationAdapter("vt-key", limiter or RateLimiter(), http_session=session)


def _app():
    return make_subject("app", "com.example.flashlight", file_hash=APK_HASH)


# ===== Reputation =====

def test_clean_hash_report(make_session, make_response, payloads):
    session = make_session(make_response(payload=payloads.vt(0, 70)))
    verdict = _reputation(session).check(_app())

    assert verdict.level == ThreatLevel.CLEAN
    assert verdict.detection_ratio == (0, 70)
    assert verdict.threats == []
    assert verdict.error is None
    assert verdict.source == Source.LIVE

    args, kwargs = session.get.call_args
    assert args[0] == "https://www.virustotal.com/vtapi/v2/file/report"
    assert kwargs["params"] == {"apikey": "vt-key", "resource": APK_HASH}
    assert kwargs["timeout"] == 10.0


def test_malicious_hash_report(make_session, make_response, payloads):
    payload = payloads.vt(8, 70, detections=["Android.Trojan.Agent", "Trojan:AndroidOS/Fakeapp", "Android.Trojan.Agent"])
    verdict = _reputation(make_session(make_response(payload=payload))).check(_app())

    assert verdict.level == ThreatLevel.MALICIOUS
    assert "8/70 engines detected threats" in verdict.threats
    assert verdict.detections == ["Android.Trojan.Agent", "Trojan:AndroidOS/Fakeapp"]
    assert verdict.subject_id == APK_HASH


@pytest.mark.parametrize("positives, level", [
    (0, ThreatLevel.CLEAN),
    (1, ThreatLevel.SUSPICIOUS),
    (5, ThreatLevel.SUSPICIOUS),
    (6, ThreatLevel.MALICIOUS),
])
def test_reputation_thresholds(positives, level):
    assert ReputationAdapter.classify(positives) == level


def test_url_uses_url_report(make_session, make_response, payloads):
    session = make_session(make_response(payload=payloads.vt(2, 90)))
    subject = make_subject("url", "http://free-recharge-offer.net/claim")
    verdict = _reputation(session).check(subject)

    assert verdict.level == ThreatLevel.SUSPICIOUS
    assert session.get.call_args[0][0].endswith("/url/report")
    assert session.get.call_args[1]["params"]["resource"] == "http://free-recharge-offer.net/claim"


def test_unknown_resource_carries_no_level(make_session, make_response):
    session = make_session(make_response(payload={"response_code": 0, "verbose_msg": "not found"}))
    verdict = _reputation(session).check(_app())
    assert verdict.level is None
    assert verdict.error is None


def test_reputation_support_rules():
    adapter = _reputation(None)
    assert adapter.supports(_app())
    assert not adapter.supports(make_subject("app", "com.example.nohash"))
    assert adapter.supports(make_subject("url", "example.com"))
    assert not adapter.supports(make_subject("ip", "8.8.8.8"))


@pytest.mark.parametrize("failure, kind, status", [
    (requests.Timeout("slow"), ErrorKind.NETWORK_TIMEOUT, None),
    (requests.ConnectionError("down"), ErrorKind.NETWORK_ERROR, None),
])
def test_network_failures_become_errored_verdicts(make_session, failure, kind, status):
    verdict = _reputation(make_session(failure)).check(_app())
    assert verdict.error == kind
    assert verdict.error_status == status
    assert verdict.level is None
    assert verdict.detection_ratio is None
    assert verdict.threats == []


@pytest.mark.parametrize("status_code, kind", [
    (204, ErrorKind.QUOTA_EXCEEDED),
    (429, ErrorKind.QUOTA_EXCEEDED),
    (403, ErrorKind.PROVIDER_HTTP_ERROR),
    (500, ErrorKind.PROVIDER_HTTP_ERROR),
])
def test_http_status_becomes_errored_verdict(make_session, make_response, status_code, kind):
    verdict = _reputation(make_session(make_response(status_code=status_code))).check(_app())
    assert verdict.error == kind
    assert verdict.error_status == status_code


def test_invalid_json_is_malformed(make_session, make_response):
    verdict = _reputation(make_session(make_response(invalid_json=True))).check(_app())
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE


def test_missing_fields_are_malformed(make_session, make_response):
    verdict = _reputation(make_session(make_response(payload={"response_code": 1}))).check(_app())
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE


def test_impossible_ratio_is_malformed(make_session, make_response, payloads):
    verdict = _reputation(make_session(make_response(payload=payloads.vt(9, 4)))).check(_app())
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE


def test_scans_list_yields_no_detection_names(make_session, make_response, payloads):
    payload = payloads.vt(7, 70)
    payload["scans"] = ["x"]
    verdict = _reputation(make_session(make_response(payload=payload))).check(_app())

    assert verdict.error is None
    assert verdict.level == ThreatLevel.MALICIOUS
    assert verdict.detections == []


def test_local_quota_skips_the_request(make_session, fake_clock):
    session = make_session()
    limiter = RateLimiter(
        {"virustotal": ProviderQuota(daily_quota=0)},
        clock=fake_clock,
        sleep=fake_clock.sleep,
        monotonic=fake_clock.monotonic
    )
    verdict = _reputation(session, limiter).check(_app())

    assert verdict.error == ErrorKind.QUOTA_EXCEEDED
    session.get.assert_not_called()


def test_adapter_without_key_is_not_configured():
    assert not ReputationAdapter(None, RateLimiter()).is_configured
    assert ReputationAdapter("key", RateLimiter()).is_configured


# ===== Abuse =====

def _abuse(session):
    return AbuseAdapter("abuse-key", RateLimiter(), http_session=session)


def test_high_abuse_score(make_session, make_response, payloads):
    session = make_session(make_response(payload=payloads.abuse(92, reports=14)))
    verdict = _abuse(session).check(make_subject("ip", "203.0.113.7"))

    assert verdict.level == ThreatLevel.MALICIOUS
    assert verdict.abuse_score == 92
    assert verdict.report_count == 14
    assert verdict.isp == "Example Hosting"
    assert verdict.threats == ["High abuse confidence score: 92%", "Multiple abuse reports: 14"]

    kwargs = session.get.call_args[1]
    assert kwargs["headers"] == {"Key": "abuse-key", "Accept": "application/json"}
    assert kwargs["params"] == {"ipAddress": "203.0.113.7", "maxAgeInDays": "90", "verbose": ""}


def test_moderate_abuse_score(make_session, make_response, payloads):
    verdict = _abuse(make_session(make_response(payload=payloads.abuse(40, reports=2)))).check(
        make_subject("ip", "203.0.113.7")
    )
    assert verdict.level == ThreatLevel.SUSPICIOUS
    assert verdict.threats == ["Moderate abuse confidence score: 40%"]


@pytest.mark.parametrize("score, level", [
    (0, ThreatLevel.CLEAN),
    (24, ThreatLevel.CLEAN),
    (25, ThreatLevel.SUSPICIOUS),
    (75, ThreatLevel.SUSPICIOUS),
    (76, ThreatLevel.MALICIOUS),
    (100, ThreatLevel.MALICIOUS),
])
def test_abuse_thresholds(score, level):
    assert AbuseAdapter.classify(score) == level


def test_abuse_checks_ip_hosts_of_urls(make_session, make_response, payloads):
    session = make_session(make_response(payload=payloads.abuse(10)))
    adapter = _abuse(session)
    subject = make_subject("url", "http://198.51.100.4/login")

    assert adapter.supports(subject)
    assert not adapter.supports(make_subject("url", "http://example.com/"))

    verdict = adapter.check(subject)
    assert verdict.subject_id == "198.51.100.4"
    assert verdict.level == ThreatLevel.CLEAN
    assert verdict.threats == []


def test_abuse_missing_data_is_malformed(make_session, make_response):
    verdict = _abuse(make_session(make_response(payload={"errors": []}))).check(make_subject("ip", "1.2.3.4"))
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE


# ===== Phone validation =====

def _numverify(session):
    return PhoneValidationAdapter("nv-key", RateLimiter(), http_session=session)


def test_phone_facts_are_surfaced(make_session, make_response, payloads):
    session = make_session(make_response(payload=payloads.numverify(line_type="VoIP", carrier="Virtual Mobile")))
    verdict = _numverify(session).check(make_subject("phone", "+91987654321"))

    assert verdict.valid is True
    assert verdict.line_type == "voip"
    assert verdict.carrier == "Virtual Mobile"
    assert verdict.country_code == "IN"
    assert verdict.level is None
    assert session.get.call_args[1]["params"] == {"access_key": "nv-key", "number": "+91987654321", "format": 1}


def test_numverify_usage_limit_is_quota(make_session, make_response):
    body = {"success": False, "error": {"code": 104, "type": "usage_limit_reached", "info": "limit"}}
    verdict = _numverify(make_session(make_response(payload=body))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.QUOTA_EXCEEDED
    assert verdict.error_status == 104


def test_numverify_api_error_keeps_code(make_session, make_response):
    body = {"success": False, "error": {"code": 101, "type": "invalid_access_key"}}
    verdict = _numverify(make_session(make_response(payload=body))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.PROVIDER_HTTP_ERROR
    assert verdict.error_status == 101


def test_numverify_without_valid_flag_is_malformed(make_session, make_response):
    verdict = _numverify(make_session(make_response(payload={"number": "1"}))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE


def test_numverify_string_error_is_provider_error(make_session, make_response):
    body = {"success": False, "error": "usage limit"}
    verdict = _numverify(make_session(make_response(payload=body))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.PROVIDER_HTTP_ERROR
    assert verdict.error_status is None


def test_numverify_non_numeric_error_code_is_dropped(make_session, make_response):
    body = {"success": False, "error": {"code": "bad", "info": "nope"}}
    verdict = _numverify(make_session(make_response(payload=body))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.PROVIDER_HTTP_ERROR
    assert verdict.error_status is None


def test_numverify_non_string_line_type_is_malformed(make_session, make_response, payloads):
    body = payloads.numverify()
    body["line_type"] = 5
    verdict = _numverify(make_session(make_response(payload=body))).check(make_subject("phone", "+14155550100"))
    assert verdict.error == ErrorKind.MALFORMED_RESPONSE
