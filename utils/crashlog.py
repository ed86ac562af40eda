# utils/crashlog.py
import os, sys, datetime, traceback, threading
from typing import Optional

_log_dir: Optional[str] = None

def log_dir() -> str:
    d = _log_dir or os.path.join(os.getcwd(), "logs")
    os.makedirs(d, exist_ok=True)
    return d

def set_log_dir(path: Optional[str]):
    global _log_dir
    _log_dir = path

def _new_log_path(prefix: str = "crash") -> str:
    stamp = datetime.datetime.now().strftime("%Y%m%d-%H%M%S-%f")
    return os.path.join(log_dir(), f"{prefix}-{stamp}.txt")

def _write_report(prefix: str, header: str, exc_type, exc, tb) -> str:
    path = _new_log_path(prefix)
    with open(path, "w", encoding="utf-8") as out:
        out.write(header + "\n")
        out.write("=" * 60 + "\n")
        traceback.print_exception(exc_type, exc, tb, file=out)
    return path

def setup_crashlog():
    """Uncaught exceptions (main thread and device/stream threads) end up in logs/crash-*.txt."""
    def _hook(exc_type, exc, tb):
        try:
            _write_report("crash", "UNCAUGHT EXCEPTION", exc_type, exc, tb)
        finally:
            sys.__excepthook__(exc_type, exc, tb)
    sys.excepthook = _hook

    def _thread_hook(args):
        name = args.thread.name if args.thread else "?"
        try:
            _write_report("crash", f"UNCAUGHT EXCEPTION IN THREAD {name}",
                          args.exc_type, args.exc_value, args.exc_traceback)
        finally:
            threading.__excepthook__(args)
    threading.excepthook = _thread_hook

def log_exception(title: str, exc: BaseException) -> str:
    return _write_report("error", f"[{title}] {type(exc).__name__}: {exc}",
                         type(exc), exc, exc.__traceback__)
