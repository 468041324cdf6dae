"""Alert generation from the latest readings, and the live alert collection."""
import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from config import DEFAULT_STALE_AFTER_DAYS
from errors import UnknownParameterError
from readings import as_utc, latest_per_facility
from thresholds import TRACKED_PARAMETERS, normalize_parameter
from validation import CRITICAL, EMERGENCY, classify

logger = logging.getLogger(__name__)

STALE_TRIGGER = "stale"
ID_SEPARATOR = ":"


@dataclass
class Alert:
    id: str
    facility_id: str
    facility_name: str
    severity: str
    message: str
    timestamp: datetime
    chemical: Optional[str] = None
    value: Optional[float] = None
    recommendation: Optional[str] = None
    acknowledged: bool = False


def alert_id(facility_id, trigger, severity=None):
    """Stable id for a (facility, parameter, severity) violation or a staleness flag.

    No time component, so the same violation seen on a later scan maps to
    the same id and stays de-duplicated and dismissable. Parts are joined
    with ":" since facility ids such as "POOL-004" already use dashes.
    """
    parts = [str(facility_id), trigger]
    if severity:
        parts.append(severity)
    return ID_SEPARATOR.join(parts)


def _ordered_parameters(values):
    keys = [normalize_parameter(k) for k in values]
    tracked = [k for k in TRACKED_PARAMETERS if k in keys]
    return tracked + [k for k in keys if k not in TRACKED_PARAMETERS]


def check_chemicals(reading):
    """Candidate alerts for every critical or emergency parameter on one reading."""
    found = []
    values = {normalize_parameter(k): v for k, v in reading.values.items()}
    for parameter in _ordered_parameters(values):
        raw = values[parameter]
        if raw is None:
            continue
        try:
            result = classify(raw, parameter)
        except UnknownParameterError as e:
            logger.warning("%s on reading for %s, skipping", e, reading.facility_id)
            continue
        except (TypeError, ValueError):
            logger.warning("Non-numeric %s=%r for %s, skipping", parameter, raw, reading.facility_id)
            continue
        if not result.is_alert:
            continue
        found.append(Alert(
            id=alert_id(reading.facility_id, parameter, result.status),
            facility_id=reading.facility_id,
            facility_name=reading.facility_name,
            severity=result.status,
            message=result.message,
            timestamp=reading.timestamp,
            chemical=parameter,
            value=result.value,
            recommendation=result.recommendation,
        ))
    return found


def check_staleness(reading, now, stale_after=timedelta(days=DEFAULT_STALE_AFTER_DAYS)):
    """A critical alert when the reading is strictly older than ``stale_after``."""
    age = as_utc(now) - as_utc(reading.timestamp)
    if age <= stale_after:
        return None
    days = age.days
    return Alert(
        id=alert_id(reading.facility_id, STALE_TRIGGER),
        facility_id=reading.facility_id,
        facility_name=reading.facility_name,
        severity=CRITICAL,
        message=f"No tests for {days} days - compliance check required",
        timestamp=reading.timestamp,
        recommendation="Test the water and record the results to restore MAHC compliance.",
    )


def scan(readings, dismissed_ids=(), now=None, stale_after=timedelta(days=DEFAULT_STALE_AFTER_DAYS)):
    """Evaluate the newest reading of every facility and return candidate alerts.

    Candidates whose id has been dismissed are filtered out. A problem with
    one reading or parameter never stops the others from being checked.
    """
    now = now or datetime.now(timezone.utc)
    dismissed = set(dismissed_ids)
    candidates = []
    for reading in latest_per_facility(readings).values():
        candidates.extend(check_chemicals(reading))
        stale = check_staleness(reading, now, stale_after)
        if stale is not None:
            candidates.append(stale)
    return [a for a in candidates if a.id not in dismissed]


class AlertStore:
    """Active alerts plus the permanently suppressed (dismissed) ids.

    Every mutation happens under one lock. ``dismissed`` only grows for the
    life of the store and an id in it is never admitted to ``active``.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._active = OrderedDict()
        self._dismissed = set()
        self._listeners = []

    def subscribe(self, callback):
        """Call ``callback(active_alerts)`` after every change, under the store lock.

        Returns an unsubscribe function.
        """
        with self._lock:
            self._listeners.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._listeners:
                    self._listeners.remove(callback)
        return unsubscribe

    def _changed(self):
        # Called with the lock held so listeners see changes in the order they happen.
        snapshot = self._snapshot()
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Alert listener %r failed", callback)

    def _snapshot(self):
        return [replace(a) for a in self._active.values()]

    def merge(self, candidates):
        """Insert candidates that are neither active nor dismissed; return the ones added."""
        added = []
        with self._lock:
            for alert in candidates:
                if alert.id in self._dismissed or alert.id in self._active:
                    continue
                self._active[alert.id] = replace(alert)
                added.append(replace(alert))
            if added:
                self._changed()
        return added

    def acknowledge(self, alert_id):
        with self._lock:
            alert = self._active.get(alert_id)
            if alert is None or alert.acknowledged:
                return alert is not None
            alert.acknowledged = True
            self._changed()
        return True

    def dismiss(self, alert_id):
        with self._lock:
            removed = self._active.pop(alert_id, None)
            self._dismissed.add(alert_id)
            if removed is not None:
                self._changed()
        return removed is not None

    def clear_acknowledged(self):
        with self._lock:
            cleared = [i for i, a in self._active.items() if a.acknowledged]
            for i in cleared:
                del self._active[i]
                self._dismissed.add(i)
            if cleared:
                self._changed()
        return cleared

    def active_alerts(self):
        with self._lock:
            return self._snapshot()

    def unacknowledged_alerts(self):
        return [a for a in self.active_alerts() if not a.acknowledged]

    def dismissed_ids(self):
        with self._lock:
            return frozenset(self._dismissed)

    def is_active(self, alert_id):
        with self._lock:
            return alert_id in self._active

    @property
    def acknowledged_count(self):
        return sum(1 for a in self.active_alerts() if a.acknowledged)

    @property
    def emergency_count(self):
        return sum(1 for a in self.unacknowledged_alerts() if a.severity == EMERGENCY)

    @property
    def critical_count(self):
        return sum(1 for a in self.unacknowledged_alerts() if a.severity == CRITICAL)
