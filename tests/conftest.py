from datetime import datetime, timedelta, timezone

import pytest

from notifications import NotificationSink
from readings import ChemicalReading

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)

IN_RANGE = {"free_chlorine": 2.0, "ph": 7.4, "alkalinity": 100}


def make_reading(facility_id="POOL-001", age=timedelta(hours=1), values=None, name=None, now=NOW):
    return ChemicalReading(
        facility_id=facility_id,
        facility_name=name or f"{facility_id} Pool",
        timestamp=now - age,
        technician="tech-1",
        values=dict(IN_RANGE if values is None else values),
    )


class FakeSource:
    def __init__(self, readings=None, error=None):
        self.readings = list(readings or [])
        self.error = error
        self.calls = 0

    def get_readings(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.readings)


class RecordingNotifier(NotificationSink):
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def notify(self, alerts):
        if self.error is not None:
            raise self.error
        self.sent.append(list(alerts))


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def notifier():
    return RecordingNotifier()
