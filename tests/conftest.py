import os
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests

# Keep the import-time engine off MySQL and the blocklist off disk
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOCAL_BLOCKLIST_PATH", "")


class FakeClock:
    """
    Epoch-seconds wall clock plus a monotonic counter; sleep() moves both
    forward, jump() resets only the wall clock.
    """

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start
        self.ticks = 0.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def monotonic(self) -> float:
        return self.ticks

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float):
        self.now += seconds
        self.ticks += seconds

    def jump(self, seconds: float):
        self.now += seconds


def _response(status_code: int = 200, payload=None, invalid_json: bool = False):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("Expecting value")
    else:
        response.json.return_value = payload if payload is not None else {}
    return response


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def make_response():
    return _response


@pytest.fixture
def make_session():
    """Session whose get() returns the given responses (or raises exceptions) in order"""
    def factory(*responses):
        session = MagicMock(spec=requests.Session)
        session.get.side_effect = list(responses)
        return session
    return factory


def vt_payload(positives: int, total: int = 70, detections=None):
    scans = {}
    for index, name in enumerate(detections or []):
        scans[f"Engine{index}"] = {"detected": True, "result": name}
    scans["CleanEngine"] = {"detected": False, "result": None}
    return {
        "response_code": 1,
        "positives": positives,
        "total": total,
        "scan_date": "2024-05-01 10:00:00",
        "scans": scans,
    }


def abuse_payload(score: int, reports: int = 0):
    return {
        "data": {
            "ipAddress": "203.0.113.7",
            "abuseConfidenceScore": score,
            "totalReports": reports,
            "countryCode": "NL",
            "isp": "Example Hosting",
            "isWhitelisted": False,
        }
    }


def numverify_payload(valid: bool = True, line_type: str = "mobile", carrier: str = "Airtel"):
    return {
        "valid": valid,
        "number": "91987654321",
        "international_format": "+91987654321",
        "country_code": "IN",
        "country_name": "India (Republic of)",
        "carrier": carrier,
        "line_type": line_type,
    }


@pytest.fixture
def payloads():
    return SimpleNamespace(vt=vt_payload, abuse=abuse_payload, numverify=numverify_payload)
