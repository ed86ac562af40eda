# main.py
import sys, os
sys.path.append(os.path.dirname(__file__))  # top-level packages live next to this file

from utils.crashlog import setup_crashlog, log_dir
import argparse
import logging
from logging.handlers import RotatingFileHandler
from config import AppConfig, SessionConfig, StreamConfig, SourceConfig, LogConfig, BACKENDS, LOG_LEVELS
from midi.sources import SourceError, list_input_devices
from app import App

FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

def _init_logging(cfg: LogConfig):
    if logging.getLogger().handlers:
        return

    logging.basicConfig(level=cfg.level, format=FORMAT, encoding="utf-8")
    log_path = os.path.join(log_dir(), cfg.file_name)
    try:
        fh = RotatingFileHandler(log_path, maxBytes=2*1024*1024, backupCount=3, encoding="utf-8")
    except OSError as e:
        logging.warning("file logging disabled (%s): %s", log_path, e)
        return
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(FORMAT))
    logging.getLogger().addHandler(fh)

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="midi-session",
                                 description="Decode a live MIDI input and track tempo and notes.")
    ap.add_argument('--list', action='store_true', help='list MIDI inputs and exit')
    ap.add_argument('--backend', default='mido', choices=list(BACKENDS))
    ap.add_argument('--port', default=None, help='input name (default: system default input)')
    ap.add_argument('--file', default=None, help='replay a .mid file instead of a device')
    ap.add_argument('--window-ms', type=int, default=2000, help='note buffer horizon, 0 = keep all')
    ap.add_argument('--queue-size', type=int, default=0, help='hand-off queue bound, 0 = unbounded')
    ap.add_argument('--poll-ms', type=int, default=1)
    ap.add_argument('--log-level', default='INFO', type=str.upper, choices=list(LOG_LEVELS))
    ap.add_argument('--status-every', type=float, default=5.0, help='seconds between status lines')
    return ap

def config_from_args(args: argparse.Namespace) -> AppConfig:
    return AppConfig(
        session=SessionConfig(window_ms=args.window_ms),
        stream=StreamConfig(queue_size=args.queue_size),
        source=SourceConfig(backend=args.backend, port=args.port, file=args.file, poll_ms=args.poll_ms),
        log=LogConfig(level=args.log_level, status_every=args.status_every),
    )

def main(argv=None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)
    try:
        cfg = config_from_args(args)
    except ValueError as e:
        ap.error(str(e))

    if args.list:
        try:
            devices = list_input_devices(cfg.source.backend)
        except (OSError, ImportError) as e:
            print(f"cannot list {cfg.source.backend} inputs: {e}", file=sys.stderr)
            return 1
        for d in devices:
            print(f"{d.interface}: {d.name}")
        return 0

    setup_crashlog()
    _init_logging(cfg.log)
    logging.info("midi-session starting (backend=%s, port=%s, file=%s)",
                 cfg.source.backend, cfg.source.port, cfg.source.file)

    try:
        app = App(cfg)
    except SourceError as e:
        logging.error("%s", e)
        return 1
    return app.run()

if __name__ == '__main__':
    sys.exit(main())
