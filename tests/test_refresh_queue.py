import logging
import threading
import time
from datetime import datetime

import pytest

from catalog_search.refresh_core.handler import SourceFileHandler
from catalog_search.refresh_core.queue import ChangeQueue
from catalog_search.refresh_core.schedule import HourlySchedule, seconds_until_next_hour

pytestmark = pytest.mark.unit


class FakeQueue:
    def __init__(self):
        self.added = []

    def add(self, p):
        self.added.append(str(p))


class E:
    def __init__(self, src, dest=None, is_dir=False):
        self.src_path = str(src)
        self.dest_path = str(dest) if dest else None
        self.is_directory = is_dir


def test_burst_is_flushed_once():
    batches = []
    done = threading.Event()

    def process(paths):
        batches.append(paths)
        done.set()

    q = ChangeQueue(process, delay_secs=0.1)
    for _ in range(5):
        q.add("/data/catalog.w3cat")
        time.sleep(0.01)
    assert q.scheduled
    assert done.wait(5.0)
    time.sleep(0.2)
    assert batches == [["/data/catalog.w3cat"]]
    assert not q.scheduled


def test_callback_error_is_logged_and_queue_keeps_working(caplog):
    calls = []
    second = threading.Event()

    def process(paths):
        calls.append(paths)
        if len(calls) == 1:
            raise RuntimeError("boom")
        second.set()

    q = ChangeQueue(process, delay_secs=0.05)
    with caplog.at_level(logging.ERROR):
        q.add("a")
        deadline = time.time() + 5
        while not calls and time.time() < deadline:
            time.sleep(0.01)
        q.add("b")
        assert second.wait(5.0)
    assert any("boom" in m for m in caplog.messages)


def test_cancel_drops_pending_flush():
    calls = []
    q = ChangeQueue(calls.append, delay_secs=0.1)
    q.add("a")
    q.cancel()
    time.sleep(0.3)
    assert calls == []
    assert not q.scheduled


def test_handler_only_reacts_to_catalog_file(tmp_path):
    source = tmp_path / "catalog.w3cat"
    q = FakeQueue()
    handler = SourceFileHandler(source, q)
    assert handler.watch_dir == str(tmp_path)

    handler.on_modified(E(tmp_path / "other.txt"))
    handler.on_created(E(tmp_path / "catalog.w3cat-journal"))
    handler.on_modified(E(tmp_path, is_dir=True))
    assert q.added == []

    handler.on_modified(E(source))
    handler.on_created(E(source))
    handler.on_moved(E(tmp_path / "catalog.tmp", dest=source))
    assert len(q.added) == 3
    assert all(p.endswith("catalog.w3cat") for p in q.added)


def test_handler_ignores_moves_away_from_catalog(tmp_path):
    source = tmp_path / "catalog.w3cat"
    q = FakeQueue()
    handler = SourceFileHandler(source, q)
    handler.on_moved(E(source, dest=tmp_path / "backup.w3cat"))
    assert q.added == []


def test_seconds_until_next_hour():
    assert seconds_until_next_hour(datetime(2024, 1, 1, 10, 59, 30)) == 30
    assert seconds_until_next_hour(datetime(2024, 1, 1, 10, 0, 0)) == 3600
    assert seconds_until_next_hour(datetime(2024, 12, 31, 23, 30, 0)) == 1800


def test_schedule_run_once_logs_errors(caplog):
    def failing(now):
        raise ValueError("scheduled failure")

    schedule = HourlySchedule(failing, clock=lambda: datetime(2024, 1, 1, 3, 0, 0))
    with caplog.at_level(logging.ERROR):
        schedule.run_once()
    assert any("scheduled failure" in m for m in caplog.messages)


def test_schedule_start_stop():
    schedule = HourlySchedule(lambda now: None)
    assert not schedule.active
    schedule.start()
    assert schedule.active
    schedule.stop()
    assert not schedule.active
