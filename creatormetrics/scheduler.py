"""Background threads driving the daily rollup.

Two independent cadences:

- hourly: re-roll *today* (UTC) for every eligible tenant, every
  ``hourly_interval_seconds``;
- daily: at a fixed local wall-clock time (02:15 by default) finalize
  *yesterday* (UTC). Each fire computes the delay to the next occurrence.

Tenants are processed one at a time within a run. A tenant that fails is
logged and left for the next tick; a run that fails never stops its timer.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from .config import SchedulerConfig
from .ports import SubscriptionDirectory
from .rollup import Aggregator

logger = logging.getLogger(__name__)

# Stats fields that accumulate across runs.
_COUNTERS = ("run_count", "error_count")


def seconds_until_next(hour: int, minute: int, now: datetime) -> float:
    """Seconds from now to the next hour:minute in now's wall-clock time."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class RollupScheduler:
    """Owns the hourly and daily rollup threads; start()/stop() control both."""

    def __init__(
        self,
        aggregator: Aggregator,
        subscriptions: SubscriptionDirectory,
        config: Optional[SchedulerConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.aggregator = aggregator
        self.subscriptions = subscriptions
        self.config = config or SchedulerConfig()
        # Local wall-clock time; the daily fire time is expressed in it.
        self._clock = clock or (lambda: datetime.now().astimezone())
        self._stop_event = threading.Event()
        self._threads: List[threading.Thread] = []
        self._stats_lock = threading.Lock()
        self._stats: Dict[str, Dict[str, Any]] = {
            "hourly": _empty_stats(),
            "daily": _empty_stats(),
        }

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> None:
        """Start both cadence loops in background threads."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._hourly_loop, daemon=True, name="RollupScheduler-hourly"),
            threading.Thread(target=self._daily_loop, daemon=True, name="RollupScheduler-daily"),
        ]
        for thread in self._threads:
            thread.start()
        logger.info(
            "RollupScheduler: started (hourly every %ds, daily at %02d:%02d)",
            self.config.hourly_interval_seconds,
            self.config.daily_hour,
            self.config.daily_minute,
        )

    def stop(self) -> None:
        """Signal stop and wait for both threads to finish."""
        if not self._threads:
            return
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=10)
            if thread.is_alive():
                logger.warning("RollupScheduler: %s did not stop within timeout", thread.name)
        self._threads = []
        logger.info("RollupScheduler: stopped")

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    def _hourly_loop(self) -> None:
        while not self._stop_event.wait(timeout=self.config.hourly_interval_seconds):
            try:
                self.run_hourly()
            except Exception:
                logger.exception("Hourly rollup failed")

    def _daily_loop(self) -> None:
        while True:
            now = self._clock()
            delay = seconds_until_next(self.config.daily_hour, self.config.daily_minute, now)
            self._update_stats("daily", next_run=(now + timedelta(seconds=delay)).isoformat())
            if self._stop_event.wait(timeout=delay):
                return
            try:
                self.run_daily()
            except Exception:
                logger.exception("Daily rollup failed")

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def run_hourly(self) -> int:
        """Refresh today's snapshots for every eligible tenant."""
        today = self._clock().astimezone(timezone.utc).date()
        return self._run("hourly", today)

    def run_daily(self) -> int:
        """Finalize yesterday's snapshots for every eligible tenant."""
        yesterday = self._clock().astimezone(timezone.utc).date() - timedelta(days=1)
        return self._run("daily", yesterday)

    def _run(self, cadence: str, day) -> int:
        self._update_stats(cadence, last_run=datetime.now(timezone.utc).isoformat(), run_count=1)
        try:
            tenants = list(self.subscriptions.list_eligible_tenants(self.config.eligible_statuses))
        except Exception:
            self._update_stats(cadence, error_count=1)
            raise

        completed = 0
        for tenant_id in tenants:
            if self._stop_event.is_set():
                break
            try:
                self._rollup_tenant(tenant_id, day)
                completed += 1
            except Exception:
                self._update_stats(cadence, error_count=1)
                logger.exception("%s rollup failed for tenant %s", cadence.capitalize(), tenant_id)

        self._update_stats(cadence, tenants_last_run=completed)
        logger.info("%s rollup completed for %d/%d tenants", cadence.capitalize(), completed, len(tenants))
        return completed

    def _rollup_tenant(self, tenant_id: str, day) -> None:
        timeout = self.config.tenant_timeout_seconds
        if timeout <= 0:
            self.aggregator.rollup_day(tenant_id, day)
            return

        # An abandoned worker keeps running; its upsert is idempotent.
        errors: List[BaseException] = []

        def work() -> None:
            try:
                self.aggregator.rollup_day(tenant_id, day)
            except BaseException as exc:
                errors.append(exc)

        worker = threading.Thread(target=work, daemon=True, name=f"RollupTenant-{tenant_id}")
        worker.start()
        worker.join(timeout=timeout)
        if worker.is_alive():
            raise TimeoutError(f"rollup for tenant {tenant_id} exceeded {timeout}s")
        if errors:
            raise errors[0]

    def _update_stats(self, cadence: str, **changes: Any) -> None:
        """Add to the integer counters; overwrite every other field."""
        with self._stats_lock:
            stats = self._stats[cadence]
            for name, value in changes.items():
                if name in _COUNTERS:
                    stats[name] += value
                else:
                    stats[name] = value

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            hourly = dict(self._stats["hourly"])
            daily = dict(self._stats["daily"])
        return {"is_running": self.is_running, "hourly": hourly, "daily": daily}


def _empty_stats() -> Dict[str, Any]:
    return {
        "last_run": None,
        "next_run": None,
        "run_count": 0,
        "error_count": 0,
        "tenants_last_run": 0,
    }
