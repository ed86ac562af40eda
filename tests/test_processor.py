"""Tests for the pure process() step and the single-consumer StreamProcessor."""

import logging
import threading

import pytest

from config import SessionConfig, StreamConfig
from midi.decoder import ControlChangeEvent, NoteEvent, PitchClass, ShortMessage, StatusKind
from session.state import BufferedNote, new_session
from stream.processor import StreamProcessor, process

NOTE_ON_C5 = NoteEvent(channel=1, key=PitchClass.C, octave=5, velocity=64, is_on=True)
CLOCK = b"\xF8"


def keep_all():
    return StreamProcessor(SessionConfig(window_ms=0))


# ── process() ────────────────────────────────────────────────────────


class TestProcess:
    def test_note_on_enters_buffer(self):
        state = process(new_session(), [0x90, 0x3C, 0x40], 1000)
        assert state.note_buffer == (BufferedNote(1000, NOTE_ON_C5),)
        assert state.last_message_timestamp == 1000

    def test_control_change_does_not(self):
        state = process(new_session(), [0xB0, 0x07, 0x7F], 1000)
        assert state.note_buffer == ()
        assert state.last_message_timestamp == 1000

    def test_accepts_raw_messages(self):
        raw = ShortMessage(status=0x90, command=0x90, channel=1, data1=0x3C, data2=0x40)
        assert process(new_session(), raw, 5) == process(new_session(), b"\x90\x3c\x40", 5)

    def test_unknown_status_does_not_raise(self):
        state = process(new_session(), [0xF4], 42)
        assert state.last_message_timestamp == 42

    def test_deterministic(self):
        pairs = [(CLOCK, t) for t in range(0, 24 * 100, 100)] + [(b"\x90\x40\x10", 3000)]
        a = b = new_session()
        for data, ts in pairs:
            a = process(a, data, ts)
            b = process(b, data, ts)
        assert a == b
        assert a.bpm is not None


# ── StreamProcessor, synchronous ─────────────────────────────────────


class TestFeed:
    def test_tempo_from_clock_stream(self):
        proc = keep_all()
        state = proc.feed((CLOCK, 20833 * k) for k in range(1, 25))
        assert state.bpm == 60_000_000 / (20833 * 24)
        assert proc.snapshot() == state
        assert proc.processed == 24

    def test_listeners_see_every_step(self):
        proc = keep_all()
        seen = []
        proc.add_listener(lambda ts, event, state: seen.append((ts, event, state.last_message_timestamp)))
        proc.feed([(b"\x90\x3c\x40", 10), (b"\xb0\x07\x7f", 20)])
        assert seen == [
            (10, NOTE_ON_C5, 10),
            (20, ControlChangeEvent(1, 7, 127), 20),
        ]

    def test_listener_sees_substituted_timestamp(self):
        proc = keep_all()
        seen = []
        proc.add_listener(lambda ts, event, state: seen.append(ts))
        proc.feed([(b"\xb0\x07\x7f", 500), (b"\x90\x3c\x40", -1)])
        assert seen == [500, 500]

    def test_failing_listener_is_logged_and_skipped(self, caplog):
        proc = keep_all()
        calls = []

        def broken(ts, event, state):
            raise RuntimeError("boom")

        proc.add_listener(broken)
        proc.add_listener(lambda ts, event, state: calls.append(ts))
        with caplog.at_level(logging.ERROR):
            state = proc.feed([(b"\x90\x3c\x40", 1), (b"\x90\x3e\x40", 2)])
        assert calls == [1, 2]
        assert len(state.note_buffer) == 2
        assert "listener" in caplog.text

    def test_remove_listener(self):
        proc = keep_all()
        calls = []
        listener = lambda ts, event, state: calls.append(ts)  # noqa: E731
        proc.add_listener(listener)
        proc.add_listener(listener)
        assert len(proc.listeners) == 1
        proc.remove_listener(listener)
        proc.feed([(CLOCK, 1)])
        assert calls == []

    def test_window_evicts_old_notes(self):
        proc = StreamProcessor(SessionConfig(window_ms=1))
        state = proc.feed([(b"\x90\x3c\x40", 1000), (b"\x90\x3e\x40", 2500)])
        assert [b.timestamp for b in state.note_buffer] == [2500]

    def test_window_follows_non_note_messages(self):
        proc = StreamProcessor(SessionConfig(window_ms=1))
        state = proc.feed([(b"\x90\x3c\x40", 1000), (CLOCK, 2001)])
        assert state.note_buffer == ()


# ── StreamProcessor, threaded ────────────────────────────────────────


class TestWorker:
    def test_submit_then_stop_drains_queue(self):
        proc = keep_all()
        proc.start()
        assert proc.running
        for k in range(1, 25):
            assert proc.submit(CLOCK, 1000 * k)
        proc.submit(b"\x90\x3c\x40", 30000)
        proc.stop()
        state = proc.snapshot()
        assert not proc.running
        assert state.bpm == 60_000_000 / 24000
        assert state.note_buffer == (BufferedNote(30000, NOTE_ON_C5),)

    def test_listener_runs_on_worker_thread(self):
        proc = keep_all()
        names = []
        done = threading.Event()

        def listener(ts, event, state):
            names.append(threading.current_thread().name)
            done.set()

        proc.add_listener(listener)
        proc.start()
        proc.submit(CLOCK, 1)
        assert done.wait(2.0)
        proc.stop()
        assert names == ["midi-stream"]

    def test_submit_from_many_threads_keeps_count(self):
        proc = keep_all()
        proc.start()

        def producer():
            for _ in range(100):
                proc.submit(b"\xb0\x01\x01", 1)

        threads = [threading.Thread(target=producer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        proc.stop()
        assert proc.processed == 400

    def test_full_queue_drops_without_blocking(self, caplog):
        proc = StreamProcessor(SessionConfig(), StreamConfig(queue_size=1))
        with caplog.at_level(logging.WARNING):
            assert proc.submit(CLOCK, 1)
            assert not proc.submit(CLOCK, 2)
        assert proc.dropped == 1
        assert "dropped" in caplog.text

    def test_bad_item_does_not_kill_worker(self, caplog):
        proc = keep_all()
        proc.start()
        with caplog.at_level(logging.ERROR):
            proc.submit([0x90, 300, 1], 10)
            proc.submit(b"\x90\x3c\x40", 20)
            proc.stop()
        state = proc.snapshot()
        assert not proc.running
        assert proc.processed == 1
        assert state.note_buffer == (BufferedNote(20, NOTE_ON_C5),)
        assert "unprocessable" in caplog.text

    def test_stop_timeout_keeps_single_worker(self):
        proc = keep_all()
        release = threading.Event()
        entered = threading.Event()

        def slow(ts, event, state):
            entered.set()
            release.wait(2.0)

        proc.add_listener(slow)
        proc.start()
        proc.submit(CLOCK, 1)
        assert entered.wait(2.0)
        worker = proc._thread
        proc.stop(timeout=0.05)
        assert proc.running
        proc.start()
        assert proc._thread is worker

        release.set()
        proc.stop()
        assert not proc.running
        assert proc.processed == 1

    def test_drop_count_under_contention(self):
        proc = StreamProcessor(SessionConfig(), StreamConfig(queue_size=1))
        proc.submit(CLOCK, 0)

        def producer():
            for _ in range(200):
                proc.submit(CLOCK, 1)

        threads = [threading.Thread(target=producer) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert proc.dropped == 800

    def test_feed_while_running_is_refused(self):
        proc = keep_all()
        proc.start()
        try:
            with pytest.raises(RuntimeError):
                proc.feed([(CLOCK, 1)])
        finally:
            proc.stop()

    def test_stop_without_start_is_noop(self):
        proc = keep_all()
        proc.stop()
        assert proc.snapshot() == new_session()

    def test_timing_clock_status_kind(self):
        proc = keep_all()
        events = []
        proc.add_listener(lambda ts, event, state: events.append(event.status))
        proc.feed([(CLOCK, 1)])
        assert events == [StatusKind.TIMING_CLOCK]
