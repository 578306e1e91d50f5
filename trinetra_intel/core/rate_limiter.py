import logging
import threading
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderQuota:
    """
    Call budget for one provider

    Attributes:
        min_interval: Minimum seconds between two calls (0 = no spacing)
        daily_quota: Calls allowed per UTC day (None = unlimited)
    """
    min_interval: float = 0.0
    daily_quota: Optional[int] = None


class _ProviderState:
    def __init__(self, quota: ProviderQuota):
        self.quota = quota
        self.lock = threading.Lock()
        self.last_call_at: Optional[float] = None
        self.day: Optional[date] = None
        self.calls_today = 0


class RateLimiter:
    def __init__(
        self,
        quotas: Optional[Dict[str, ProviderQuota]] = None,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic
    ):
        """
        Per-provider call spacing and daily quota, shared by all scans

        Args:
            quotas: Provider name -> ProviderQuota
            clock: Wall clock in epoch seconds, only used to decide the UTC day
            sleep: Blocking wait used between calls
            monotonic: Clock that measures the spacing between calls
        """
        self._clock = clock
        self._sleep = sleep
        self._monotonic = monotonic
        self._registry_lock = threading.Lock()
        self._states: Dict[str, _ProviderState] = {}

        for provider, quota in (quotas or {}).items():
            self.configure(provider, quota)

    def configure(self, provider: str, quota: ProviderQuota):
        with self._registry_lock:
            self._states[provider] = _ProviderState(quota)

    def acquire(self, provider: str) -> bool:
        """
        Block until the next call to `provider` is allowed

        Args:
            provider: Provider name

        Returns:
            True once the call is granted, False immediately if today's
            quota is already spent
        """
        state = self._states.get(provider)
        if state is None:
            return True

        # Holding the lock while sleeping serializes callers from every batch
        with state.lock:
            self._roll_day(state, self._clock())

            quota = state.quota
            if quota.daily_quota is not None and state.calls_today >= quota.daily_quota:
                logger.warning(f"⚠️ {provider} daily quota of {quota.daily_quota} exhausted")
                return False

            now = self._monotonic()
            if state.last_call_at is not None and quota.min_interval > 0:
                wait = quota.min_interval - (now - state.last_call_at)
                if wait > 0:
                    logger.debug(f"{provider}: waiting {wait:.2f}s for rate limit")
                    self._sleep(wait)
                    now = self._monotonic()
                    self._roll_day(state, self._clock())

            state.last_call_at = now
            state.calls_today += 1
            return True

    def remaining_today(self, provider: str) -> Optional[int]:
        """Calls left today, or None when the provider has no daily quota"""
        state = self._states.get(provider)
        if state is None or state.quota.daily_quota is None:
            return None

        with state.lock:
            self._roll_day(state, self._clock())
            return max(state.quota.daily_quota - state.calls_today, 0)

    def status(self) -> Dict[str, Dict]:
        return {
            provider: {
                'min_interval_seconds': state.quota.min_interval,
                'daily_quota': state.quota.daily_quota,
                'remaining_today': self.remaining_today(provider)
            }
            for provider, state in list(self._states.items())
        }

    # ===== Helper Methods =====

    @staticmethod
    def _roll_day(state: _ProviderState, now: float):
        today = datetime.fromtimestamp(now, tz=timezone.utc).date()
        if state.day != today:
            state.day = today
            state.calls_today = 0
