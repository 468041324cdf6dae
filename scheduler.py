import logging
import threading
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from alerts import AlertStore, scan
from config import DEFAULT_CHECK_INTERVAL_SECONDS, DEFAULT_STALE_AFTER_DAYS
from errors import StoreFetchError
from notifications import dispatch_notification
from validation import EMERGENCY

logger = logging.getLogger(__name__)

SCAN_JOB_ID = "pool_alert_scan"
IDLE = "idle"
SCANNING = "scanning"


def _utcnow():
    return datetime.now(timezone.utc)


class AlertMonitor:
    """Runs the read -> classify -> merge -> notify pipeline and serves the alert views.

    ``reading_source`` is any object with ``get_readings()`` or a plain callable
    returning the full reading history.
    """

    def __init__(self, reading_source, store=None, notifier=None,
                 stale_after_days=DEFAULT_STALE_AFTER_DAYS, clock=_utcnow,
                 notifications_enabled=True):
        self.reading_source = reading_source
        self.store = store if store is not None else AlertStore()
        self.notifier = notifier
        self.stale_after = timedelta(days=stale_after_days)
        self.clock = clock
        self.notifications_enabled = notifications_enabled
        self.last_check = None
        self.dispatch = dispatch_notification

    def fetch_readings(self):
        fetch = getattr(self.reading_source, "get_readings", self.reading_source)
        try:
            return list(fetch())
        except StoreFetchError:
            raise
        except Exception as e:
            raise StoreFetchError(f"Reading store failed: {e}") from e

    def run_scan(self):
        """One evaluation cycle. Returns the alerts newly added to the active set.

        Raises StoreFetchError if the readings could not be fetched; nothing is
        changed in that case.
        """
        readings = self.fetch_readings()
        now = self.clock()
        candidates = scan(readings, self.store.dismissed_ids(), now=now, stale_after=self.stale_after)
        added = self.store.merge(candidates)
        self.last_check = now

        emergencies = [a for a in added if a.severity == EMERGENCY]
        if emergencies and self.notifications_enabled and self.notifier is not None:
            self.dispatch(self.notifier, emergencies)

        logger.info("Scanned %d readings: %d candidate(s), %d new, %d active",
                    len(readings), len(candidates), len(added), len(self.store.active_alerts()))
        return added

    # Consumer surface

    def subscribe(self, on_alerts_changed):
        return self.store.subscribe(on_alerts_changed)

    def acknowledge(self, alert_id):
        return self.store.acknowledge(alert_id)

    def dismiss(self, alert_id):
        return self.store.dismiss(alert_id)

    def clear_acknowledged(self):
        return self.store.clear_acknowledged()

    def active_alerts(self):
        return self.store.active_alerts()

    def summary(self):
        return {
            "emergency_count": self.store.emergency_count,
            "critical_count": self.store.critical_count,
            "acknowledged_count": self.store.acknowledged_count,
            "last_check": self.last_check,
        }


class MonitorScheduler:
    """Runs ``monitor.run_scan`` every ``interval_seconds`` and on demand.

    Ticks follow the wall clock (APScheduler interval trigger), not the end
    of the previous scan. A trigger that arrives while a scan is running is
    dropped; the next tick sees the same data. After ``stop()`` no new scan
    starts, while one already running is allowed to finish.
    """

    def __init__(self, monitor, interval_seconds=DEFAULT_CHECK_INTERVAL_SECONDS, scheduler=None):
        self.monitor = monitor
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler if scheduler is not None else BackgroundScheduler()
        self.state = IDLE
        self._scan_lock = threading.Lock()
        self._stopped = threading.Event()
        monitor.dispatch = self._post_notification

    def start(self, run_now=True):
        if self._stopped.is_set():
            raise RuntimeError("MonitorScheduler cannot be restarted after stop(); create a new one")
        options = {}
        if run_now:
            options["next_run_time"] = _utcnow()
        self.scheduler.add_job(
            self.tick,
            'interval',
            seconds=self.interval_seconds,
            id=SCAN_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            **options
        )
        if not self.scheduler.running:
            self.scheduler.start()
        logger.info("Pool alert scan scheduled every %ss", self.interval_seconds)

    def tick(self):
        self.trigger()

    def trigger(self):
        """Run a scan now. Returns the new alerts, or None if the scan was skipped or failed."""
        if self._stopped.is_set():
            return None
        if not self._scan_lock.acquire(blocking=False):
            logger.info("Scan already in progress, trigger dropped")
            return None
        try:
            if self._stopped.is_set():
                return None
            self.state = SCANNING
            return self.monitor.run_scan()
        except StoreFetchError as e:
            logger.warning("Scan aborted, will retry on next tick: %s", e)
            return None
        finally:
            self.state = IDLE
            self._scan_lock.release()

    def stop(self):
        self._stopped.set()
        if self.scheduler.get_job(SCAN_JOB_ID) is not None:
            self.scheduler.remove_job(SCAN_JOB_ID)
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Pool alert scheduler stopped")

    @property
    def stopped(self):
        return self._stopped.is_set()

    def _post_notification(self, sink, alerts):
        # Hand delivery to the scheduler's thread pool so the scan is not held up.
        try:
            if self.scheduler.running:
                self.scheduler.add_job(dispatch_notification, args=[sink, alerts])
            else:
                dispatch_notification(sink, alerts)
        except Exception as e:
            logger.warning("Could not queue notification: %s", e)
