import pytest
from fastapi.testclient import TestClient

from trinetra_intel.api import routes
from trinetra_intel.core.cache import MemoryVerdictCache
from trinetra_intel.core.providers import PhoneValidationAdapter
from trinetra_intel.core.rate_limiter import RateLimiter
from trinetra_intel.main import app
from trinetra_intel.services.call_screening import CallScreeningService
from trinetra_intel.services.scan_service import BatchScanner

from conftest import numverify_payload

PREFIX = "/api/v1"


@pytest.fixture
def client(make_session, make_response):
    session = make_session(*[make_response(payload=numverify_payload()) for _ in range(5)])
    adapter = PhoneValidationAdapter("nv-key", RateLimiter(), http_session=session)
    scanner = BatchScanner(adapters=[adapter], cache=MemoryVerdictCache(), rate_limiter=RateLimiter())
    screening = CallScreeningService(scanner)

    app.dependency_overrides[routes.get_scanner] = lambda: scanner
    app.dependency_overrides[routes.get_call_screening] = lambda: screening
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_batch_scan(client):
    response = client.post(f"{PREFIX}/scan/batch", json={"subjects": [
        {"kind": "app", "identifier": "com.spy.recorder",
         "permissions": ["android.permission.READ_SMS", "RECORD_AUDIO", "INSTALL_PACKAGES"]},
        {"kind": "phone", "identifier": "+91 98765 4321"},
    ]})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 2
    assert (body["malicious"], body["suspicious"], body["clean"], body["errors"]) == (0, 1, 1, 0)
    assert "cancelled" not in body

    app_verdict, phone_verdict = body["verdicts"]
    assert app_verdict["subject"]["identifier"] == "com.spy.recorder"
    assert app_verdict["level"] == "suspicious"
    assert app_verdict["score"] == 65
    assert app_verdict["source"] == "heuristic"
    assert "scannedAt" in app_verdict

    assert phone_verdict["subject"]["identifier"] == "+91987654321"
    assert phone_verdict["source"] == "live"
    assert phone_verdict["sources"][0]["lineType"] == "mobile"


def test_batch_scan_rejects_invalid_subjects(client):
    response = client.post(f"{PREFIX}/scan/batch", json={"subjects": [
        {"kind": "ip", "identifier": "8.8.8.8"},
        {"kind": "ip", "identifier": "not-an-ip"},
    ]})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "invalid_subject"
    assert detail["subjects"][0]["index"] == 1


def test_scan_single_app(client):
    response = client.post(f"{PREFIX}/scan/app", json={
        "packageName": "com.spy.recorder",
        "permissions": ["READ_SMS", "RECORD_AUDIO", "INSTALL_PACKAGES"],
    })

    assert response.status_code == 200
    body = response.json()
    assert body["subject"]["kind"] == "app"
    assert body["level"] == "suspicious"
    assert body["score"] == 65


def test_check_single_url_and_ip(client):
    body = client.post(f"{PREFIX}/scan/url", json={"url": "Example.com/login"}).json()
    assert body["subject"]["identifier"] == "http://example.com/login"
    assert body["level"] == "clean"
    assert body["source"] == "heuristic"

    body = client.post(f"{PREFIX}/scan/ip", json={"ipAddress": "8.8.8.8"}).json()
    assert body["subject"]["identifier"] == "8.8.8.8"
    assert body["score"] == 100


def test_single_scan_rejects_invalid_subject(client):
    response = client.post(f"{PREFIX}/scan/url", json={"url": "ftp://example.com/"})
    assert response.status_code == 400
    assert response.json()["detail"]["subjects"][0]["reason"] == "unsupported scheme 'ftp'"


def test_security_score(client):
    response = client.post(f"{PREFIX}/security-score", json={"installedApps": [
        {"packageName": "com.spy.recorder", "permissions": ["READ_SMS", "RECORD_AUDIO", "INSTALL_PACKAGES"]},
        {"packageName": "com.example.notes", "permissions": []},
    ]})

    assert response.status_code == 200
    body = response.json()
    assert body["score"] == 90
    assert body["threatCount"] == 0
    assert body["suspiciousCount"] == 1
    assert body["cleanCount"] == 1
    assert body["recommendations"] == ["Review 1 suspicious app(s)"]
    assert "lastScan" in body


def test_security_score_samples_first_apps(client):
    apps = [{"packageName": f"com.example.app{i}", "permissions": ["READ_SMS", "READ_CONTACTS"]} for i in range(15)]
    body = client.post(f"{PREFIX}/security-score", json={"installedApps": apps}).json()
    assert body["suspiciousCount"] + body["cleanCount"] + body["threatCount"] == 10


def test_phone_check_and_lists(client):
    body = client.post(f"{PREFIX}/phone/check", json={"phoneNumber": "+91987654321"}).json()
    assert body["isSpam"] is False
    assert body["riskLevel"] == "low"

    assert client.post(f"{PREFIX}/phone/block", json={"phoneNumber": "+91987654321"}).json() == {
        "phoneNumber": "+91987654321", "status": "blocked"
    }
    assert client.get(f"{PREFIX}/phone/blocked").json() == {"numbers": ["+91987654321"]}

    body = client.post(f"{PREFIX}/phone/check", json={"phoneNumber": "+91987654321"}).json()
    assert body["isSpam"] is True
    assert body["reason"] == "Number is blacklisted"

    client.post(f"{PREFIX}/phone/allow", json={"phoneNumber": "+91987654321"})
    assert client.get(f"{PREFIX}/phone/allowed").json() == {"numbers": ["+91987654321"]}
    assert client.get(f"{PREFIX}/phone/blocked").json() == {"numbers": []}


def test_phone_check_rejects_garbage(client):
    response = client.post(f"{PREFIX}/phone/check", json={"phoneNumber": "abc"})
    assert response.status_code == 400


def test_scanner_status_and_cache(client):
    status = client.get(f"{PREFIX}/scanner/status").json()
    assert status["providers"] == {"numverify": True}
    assert status["rateLimits"] == {}

    assert client.get(f"{PREFIX}/cache/stats").json()["total_entries"] == 0
    assert client.delete(f"{PREFIX}/cache/expired").json() == {"deleted": 0}


def test_health(client):
    body = client.get(f"{PREFIX}/health").json()
    assert body["status"] == "healthy"
