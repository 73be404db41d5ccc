import pytest

from rotmarks.kv_sqlite import KeyValueStore
from rotmarks.model import BrokenEntry, FixedEntry, ScanReport
from rotmarks.scheduler import DAY_S, Scheduler


class Clock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_schedule_persists_and_clears(tmp_path):
    kv = KeyValueStore(tmp_path / "state.sqlite")
    s = Scheduler(kv)
    assert s.get_schedule() == {"intervalDays": 0, "lastScan": None}

    s.set_schedule(7)
    assert Scheduler(kv).get_schedule()["intervalDays"] == 7

    s.set_schedule(0)
    assert s.get_schedule()["intervalDays"] == 0
    with pytest.raises(ValueError):
        s.set_schedule(-1)


def test_is_due_follows_interval_and_last_scan(tmp_path):
    clock = Clock()
    s = Scheduler(KeyValueStore(tmp_path / "state.sqlite"), clock=clock)
    assert s.is_due() is False

    s.set_schedule(2)
    assert s.is_due() is True

    s.record_scheduled_scan(ScanReport())
    assert s.is_due() is False
    clock.now += 2 * DAY_S - 1
    assert s.is_due() is False
    clock.now += 1
    assert s.is_due() is True


def test_recorded_scan_updates_badge(tmp_path):
    s = Scheduler(KeyValueStore(tmp_path / "state.sqlite"), clock=Clock(1000.0))
    report = ScanReport(
        fixed=[FixedEntry(id="1", title="a", old_url="http://a/", new_url="https://a/")],
        broken=[BrokenEntry(id="2", title="b", url="http://b/", error="HTTP 404")],
        unchanged=5,
    )
    s.record_scheduled_scan(report)
    assert s.get_schedule()["lastScan"] == {"timestamp": 1_000_000, "fixed": 1, "broken": 1, "unchanged": 5}
    assert s.badge() == "2"

    s.update_badge(0)
    assert s.badge() == ""
