"""Tests for configuration, CLI argument handling and App wiring."""

import threading

import pytest

import main
from app import App, status_line
from config import AppConfig, LogConfig, SessionConfig, SourceConfig, StreamConfig
from midi.sources import DeviceInfo, SourceError
from session.state import SessionState


# ── config ───────────────────────────────────────────────────────────


class TestConfig:
    def test_defaults(self):
        cfg = AppConfig()
        assert cfg.session.window_us == 2_000_000
        assert cfg.stream.queue_size == 0
        assert cfg.source.backend == "mido"
        assert cfg.log.level == "INFO"

    def test_sections_are_not_shared(self):
        a, b = AppConfig(), AppConfig()
        a.session.window_ms = 5
        assert b.session.window_ms == 2000

    @pytest.mark.parametrize(
        "factory",
        [
            lambda: SessionConfig(window_ms=-1),
            lambda: StreamConfig(queue_size=-5),
            lambda: SourceConfig(backend="jack"),
            lambda: SourceConfig(poll_ms=0),
            lambda: LogConfig(level="loud"),
        ],
    )
    def test_invalid_values(self, factory):
        with pytest.raises(ValueError):
            factory()

    def test_log_level_is_normalised(self):
        assert LogConfig(level="debug").level == "DEBUG"


# ── CLI ──────────────────────────────────────────────────────────────


class TestCli:
    def test_args_to_config(self):
        args = main.build_parser().parse_args(
            ["--backend", "pygame", "--port", "Keys", "--window-ms", "500",
             "--queue-size", "64", "--log-level", "debug"])
        cfg = main.config_from_args(args)
        assert cfg.source.backend == "pygame"
        assert cfg.source.port == "Keys"
        assert cfg.session.window_ms == 500
        assert cfg.stream.queue_size == 64
        assert cfg.log.level == "DEBUG"

    def test_invalid_value_exits_with_usage_error(self):
        with pytest.raises(SystemExit) as exc:
            main.main(["--window-ms", "-3"])
        assert exc.value.code == 2

    def test_list(self, monkeypatch, capsys):
        devices = [DeviceInfo(name="Keys", interface="ALSA", is_input=True, is_output=False)]
        monkeypatch.setattr(main, "list_input_devices", lambda backend: devices)
        assert main.main(["--list"]) == 0
        assert capsys.readouterr().out.strip() == "ALSA: Keys"

    def test_source_error_on_startup(self, monkeypatch):
        def broken(cfg):
            raise SourceError("no default MIDI input device")

        monkeypatch.setattr(main, "App", broken)
        monkeypatch.setattr(main, "setup_crashlog", lambda: None)
        monkeypatch.setattr(main, "_init_logging", lambda cfg: None)
        assert main.main([]) == 1


# ── App ──────────────────────────────────────────────────────────────


class ScriptedSource:
    """Pushes a fixed list of messages into the processor, then reports finished."""
    def __init__(self, pairs):
        self.pairs = pairs
        self.sink = None
        self.finished = threading.Event()
        self.stopped = False

    def start(self):
        for data, ts in self.pairs:
            self.sink(data, ts)
        self.finished.set()

    def stop(self):
        self.stopped = True


class BrokenSource:
    def start(self):
        raise SourceError("cannot open MIDI input 'x'")

    def stop(self):
        pass


def fast_config():
    return AppConfig(session=SessionConfig(window_ms=0), log=LogConfig(status_every=0.01))


def test_app_runs_until_source_finishes():
    pairs = [(b"\xf8", 1000 * k) for k in range(1, 25)] + [(b"\x90\x3c\x40", 25000)]
    source = ScriptedSource(pairs)
    app = App(fast_config(), source=source)
    source.sink = app.processor.submit
    assert app.run() == 0
    assert source.stopped
    assert app.state.bpm == 60_000_000 / 24000
    assert len(app.state.note_buffer) == 1
    assert not app.processor.running


def test_app_reports_source_failure():
    app = App(fast_config(), source=BrokenSource())
    assert app.run() == 1
    assert not app.processor.running


def test_status_line():
    assert status_line(SessionState()).startswith("BPM: --  |  NOTES: 0")
    assert status_line(SessionState(bpm=120.0)).startswith("BPM: 120.0")
