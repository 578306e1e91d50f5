import logging
import threading
import time
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from trinetra_intel.core.verdicts import ProviderVerdict, ThreatLevel
from trinetra_intel.models import VerdictCacheEntry, naive_utcnow

logger = logging.getLogger(__name__)


class VerdictCache:
    """
    Keyed store of provider verdicts with per-entry TTL

    Keys are (provider, subject_id). Misses and expired entries both read
    as None. Errored verdicts are never stored.
    """

    def get(self, provider: str, subject_id: str) -> Optional[ProviderVerdict]:
        raise NotImplementedError

    def put(self, provider: str, subject_id: str, verdict: ProviderVerdict, ttl: float):
        raise NotImplementedError

    def clear_expired(self) -> int:
        raise NotImplementedError

    def stats(self) -> Dict:
        raise NotImplementedError

    @staticmethod
    def _cacheable(verdict: ProviderVerdict, ttl: float) -> bool:
        return not verdict.is_error and ttl > 0


class MemoryVerdictCache(VerdictCache):
    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_every: int = 256):
        """
        In-process verdict cache

        Args:
            clock: Monotonic seconds, injectable for tests
            sweep_every: Expired entries are purged after this many puts
        """
        self._clock = clock
        self._sweep_every = max(sweep_every, 1)
        self._puts_since_sweep = 0
        self._lock = threading.Lock()
        self._entries: Dict[Tuple[str, str], Tuple[ProviderVerdict, float]] = {}

    def get(self, provider: str, subject_id: str) -> Optional[ProviderVerdict]:
        key = (provider, subject_id)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None

            verdict, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None

        return verdict.model_copy(update={'cached': True})

    def put(self, provider: str, subject_id: str, verdict: ProviderVerdict, ttl: float):
        if not self._cacheable(verdict, ttl):
            return
        now = self._clock()
        with self._lock:
            self._entries[(provider, subject_id)] = (verdict, now + ttl)
            self._puts_since_sweep += 1
            if self._puts_since_sweep >= self._sweep_every:
                swept = self._purge(now)
                logger.debug(f"Swept {swept} expired cache entries")

    def clear_expired(self) -> int:
        with self._lock:
            cleared = self._purge(self._clock())

        logger.info(f"✓ Cleared {cleared} expired cache entries")
        return cleared

    def _purge(self, now: float) -> int:
        """Drop expired entries; caller holds the lock"""
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
        self._puts_since_sweep = 0
        return len(expired)

    def stats(self) -> Dict:
        with self._lock:
            levels = [verdict.level for verdict, _ in self._entries.values()]
        return _level_stats(levels)


class DatabaseVerdictCache(VerdictCache):
    def __init__(self, session_factory: sessionmaker, clock: Callable[[], datetime] = naive_utcnow):
        """
        Verdict cache persisted in the `verdict_cache` table

        Args:
            session_factory: SQLAlchemy sessionmaker; one session per operation
                so the cache is safe to share between request threads
            clock: Naive-UTC "now", injectable for tests
        """
        self.session_factory = session_factory
        self._clock = clock

    def get(self, provider: str, subject_id: str) -> Optional[ProviderVerdict]:
        db = self.session_factory()
        try:
            entry = db.query(VerdictCacheEntry).filter_by(
                provider=provider,
                subject_id=subject_id
            ).first()

            if entry and entry.expires_at > self._clock():
                verdict = ProviderVerdict.model_validate(entry.payload)
                return verdict.model_copy(update={'cached': True})
        except SQLAlchemyError as e:
            logger.error(f"❌ Cache retrieval error: {e}")
        except ValidationError as e:
            logger.error(f"❌ Corrupt cache entry for {provider}:{subject_id}: {e}")
        finally:
            db.close()

        return None

    def put(self, provider: str, subject_id: str, verdict: ProviderVerdict, ttl: float):
        if not self._cacheable(verdict, ttl):
            return

        db = self.session_factory()
        try:
            expires_at = self._clock() + timedelta(seconds=ttl)
            payload = verdict.model_dump(mode='json')
            level = verdict.level.value if verdict.level else None

            existing = db.query(VerdictCacheEntry).filter_by(
                provider=provider,
                subject_id=subject_id
            ).first()

            if existing:
                existing.level = level
                existing.payload = payload
                existing.expires_at = expires_at
            else:
                db.add(VerdictCacheEntry(
                    provider=provider,
                    subject_id=subject_id,
                    level=level,
                    payload=payload,
                    created_at=self._clock(),
                    expires_at=expires_at
                ))

            db.commit()

        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Database error saving cache: {e}")
        finally:
            db.close()

    def clear_expired(self) -> int:
        """Delete expired rows (maintenance task)"""
        db = self.session_factory()
        try:
            deleted = db.query(VerdictCacheEntry).filter(
                VerdictCacheEntry.expires_at <= self._clock()
            ).delete()
            db.commit()
            logger.info(f"✓ Cleared {deleted} expired cache entries")
            return deleted
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ Error clearing cache: {e}")
            return 0
        finally:
            db.close()

    def stats(self) -> Dict:
        db = self.session_factory()
        try:
            levels = [row.level for row in db.query(VerdictCacheEntry.level).all()]
            return _level_stats([ThreatLevel(level) if level else None for level in levels])
        except SQLAlchemyError as e:
            logger.error(f"❌ Error getting cache stats: {e}")
            return _level_stats([])
        finally:
            db.close()


def _level_stats(levels) -> Dict:
    return {
        'total_entries': len(levels),
        'malicious_entries': sum(1 for level in levels if level == ThreatLevel.MALICIOUS),
        'suspicious_entries': sum(1 for level in levels if level == ThreatLevel.SUSPICIOUS),
        'clean_entries': sum(1 for level in levels if level == ThreatLevel.CLEAN),
    }
