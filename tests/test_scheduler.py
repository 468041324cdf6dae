import threading
from datetime import timedelta

import pytest
from apscheduler.schedulers.background import BackgroundScheduler

from errors import NotificationFailure, StoreFetchError
from scheduler import IDLE, SCAN_JOB_ID, SCANNING, AlertMonitor, MonitorScheduler

from conftest import NOW, FakeSource, RecordingNotifier, make_reading

DISTRESSED = {"free_chlorine": 0.3, "ph": 6.5}


def build_monitor(readings, notifier=None, **kwargs):
    source = FakeSource(readings)
    monitor = AlertMonitor(source, notifier=notifier, clock=lambda: NOW, **kwargs)
    return monitor, source


def test_run_scan_merges_and_records_last_check(notifier):
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)], notifier)
    added = monitor.run_scan()
    assert len(added) == 2
    assert monitor.last_check == NOW
    assert monitor.summary() == {
        "emergency_count": 1,
        "critical_count": 1,
        "acknowledged_count": 0,
        "last_check": NOW,
    }


def test_emergency_notified_once(notifier):
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)], notifier)
    monitor.run_scan()
    monitor.run_scan()
    assert len(notifier.sent) == 1
    assert [a.id for a in notifier.sent[0]] == ["POOL-004:free_chlorine:emergency"]


def test_critical_only_scan_does_not_notify(notifier):
    monitor, _ = build_monitor([make_reading("POOL-004", values={"ph": 6.5})], notifier)
    monitor.run_scan()
    assert notifier.sent == []


def test_muted_monitor_does_not_notify(notifier):
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)], notifier,
                               notifications_enabled=False)
    monitor.run_scan()
    assert notifier.sent == []


def test_notification_failure_never_reaches_the_scan():
    failing = RecordingNotifier(error=NotificationFailure("speaker unplugged"))
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)], failing)
    assert len(monitor.run_scan()) == 2


def test_dismissal_is_honoured_by_next_scan():
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)])
    monitor.run_scan()
    monitor.dismiss("POOL-004:ph:critical")
    assert monitor.run_scan() == []
    assert [a.id for a in monitor.active_alerts()] == ["POOL-004:free_chlorine:emergency"]


def test_acknowledge_and_clear_through_monitor():
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)])
    monitor.run_scan()
    monitor.acknowledge("POOL-004:ph:critical")
    assert monitor.clear_acknowledged() == ["POOL-004:ph:critical"]
    assert monitor.run_scan() == []


def test_subscribe_through_monitor():
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)])
    seen = []
    unsubscribe = monitor.subscribe(seen.append)
    monitor.run_scan()
    unsubscribe()
    monitor.dismiss("POOL-004:ph:critical")
    assert len(seen) == 1 and len(seen[0]) == 2


def test_callable_reading_source():
    monitor = AlertMonitor(lambda: [make_reading(age=timedelta(days=30))], clock=lambda: NOW)
    assert [a.id for a in monitor.run_scan()] == ["POOL-001:stale"]


def test_fetch_failure_aborts_scan_without_changes():
    source = FakeSource(error=ConnectionError("sheet offline"))
    monitor = AlertMonitor(source, clock=lambda: NOW)
    with pytest.raises(StoreFetchError):
        monitor.run_scan()
    assert monitor.last_check is None
    assert monitor.active_alerts() == []


def test_trigger_recovers_after_fetch_failure():
    source = FakeSource([make_reading("POOL-004", values={"ph": 6.5})], error=ConnectionError("offline"))
    runner = MonitorScheduler(AlertMonitor(source, clock=lambda: NOW), scheduler=BackgroundScheduler())
    assert runner.trigger() is None
    source.error = None
    assert [a.id for a in runner.trigger()] == ["POOL-004:ph:critical"]
    assert runner.state == IDLE


def test_trigger_during_scan_is_dropped():
    entered = threading.Event()
    release = threading.Event()

    def slow_source():
        entered.set()
        release.wait(5)
        return [make_reading("POOL-004", values={"ph": 6.5})]

    runner = MonitorScheduler(AlertMonitor(slow_source, clock=lambda: NOW), scheduler=BackgroundScheduler())
    results = []
    worker = threading.Thread(target=lambda: results.append(runner.trigger()))
    worker.start()
    assert entered.wait(5)
    assert runner.state == SCANNING
    assert runner.trigger() is None
    release.set()
    worker.join(5)
    assert len(results[0]) == 1
    assert runner.state == IDLE


def test_no_scan_after_stop():
    source = FakeSource([make_reading()])
    runner = MonitorScheduler(AlertMonitor(source, clock=lambda: NOW), scheduler=BackgroundScheduler())
    runner.stop()
    assert runner.stopped
    assert runner.trigger() is None
    assert source.calls == 0


def test_start_schedules_periodic_scan_and_stop_cancels_it():
    source = FakeSource([])
    runner = MonitorScheduler(AlertMonitor(source, clock=lambda: NOW), interval_seconds=60)
    runner.start(run_now=False)
    try:
        job = runner.scheduler.get_job(SCAN_JOB_ID)
        assert job is not None
        assert job.trigger.interval == timedelta(seconds=60)
        assert job.max_instances == 1
    finally:
        runner.stop()
    assert not runner.scheduler.running
    assert runner.scheduler.get_job(SCAN_JOB_ID) is None


def test_notification_sent_inline_when_scheduler_idle(notifier):
    monitor, _ = build_monitor([make_reading("POOL-004", values=DISTRESSED)], notifier)
    runner = MonitorScheduler(monitor, scheduler=BackgroundScheduler())
    runner.trigger()
    assert len(notifier.sent) == 1


def test_cannot_restart_after_stop():
    source = FakeSource([make_reading()])
    runner = MonitorScheduler(AlertMonitor(source, clock=lambda: NOW), scheduler=BackgroundScheduler())
    runner.stop()
    with pytest.raises(RuntimeError):
        runner.start(run_now=False)
    assert not runner.scheduler.running
    assert runner.trigger() is None
    assert source.calls == 0
