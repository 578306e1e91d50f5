from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any

# ==========================================
# 🧱 SHARED
# ==========================================

class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

# ==========================================
# 📥 INPUT MODELS
# ==========================================

class SubjectIn(CamelModel):
    kind: str
    identifier: str
    permissions: Optional[List[str]] = None
    file_hash: Optional[str] = None

class InstalledApp(CamelModel):
    package_name: str
    app_name: Optional[str] = None
    permissions: List[str] = []
    file_hash: Optional[str] = None

class BatchScanRequest(CamelModel):
    subjects: List[SubjectIn] = Field(default_factory=list)

class SecurityScoreRequest(CamelModel):
    installed_apps: List[InstalledApp] = Field(default_factory=list)

class PhoneNumberRequest(CamelModel):
    phone_number: str

class UrlCheckRequest(CamelModel):
    url: str

class IpCheckRequest(CamelModel):
    ip_address: str

# ==========================================
# 📤 RESPONSE MODELS
# ==========================================

class PhoneListResponse(CamelModel):
    numbers: List[str]

class PhoneListUpdate(CamelModel):
    phone_number: str
    status: str

class ScannerStatus(CamelModel):
    """Provider configuration, remaining quotas and cache counters"""
    providers: Dict[str, bool]
    rate_limits: Dict[str, Dict[str, Any]]
    cache: Dict[str, int]
