from sqlalchemy import Column, Integer, String, DateTime, JSON, UniqueConstraint
from datetime import datetime, timezone
from trinetra_intel.database import Base


def naive_utcnow() -> datetime:
    """UTC now without tzinfo, the way DateTime columns store it"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class VerdictCacheEntry(Base):
    __tablename__ = "verdict_cache"
    __table_args__ = (
        UniqueConstraint("provider", "subject_id", name="uq_verdict_cache_provider_subject"),
    )
    
    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(100), index=True)
    subject_id = Column(String(512), index=True)
    
    level = Column(String(20), nullable=True)
    # Serialized ProviderVerdict
    payload = Column(JSON)
    
    created_at = Column(DateTime, default=naive_utcnow)
    expires_at = Column(DateTime, index=True)
