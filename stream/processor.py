# stream/processor.py
import logging
import queue
import threading
from typing import Callable, Iterable, List, Optional, Tuple

from config import SessionConfig, StreamConfig
from midi.decoder import DecodedEvent, RawMessage, ShortMessage, SysexMessage, decode, from_bytes
from session.state import SessionState, apply_event, evict_older_than, new_session

Listener = Callable[[int, DecodedEvent, SessionState], None]

_STOP = object()


def _to_raw(raw) -> RawMessage:
    if isinstance(raw, (ShortMessage, SysexMessage)):
        return raw
    return from_bytes(raw)


def process(state: SessionState, raw, timestamp: int) -> SessionState:
    """Decode one message (RawMessage or wire bytes) and fold it into `state`."""
    return apply_event(state, decode(_to_raw(raw)), timestamp)


class StreamProcessor:
    """Single consumer of one device stream.
    Device threads call submit(); only the worker thread touches the state.
    Readers get immutable snapshots.
    """
    def __init__(self, session_cfg: Optional[SessionConfig] = None,
                 stream_cfg: Optional[StreamConfig] = None):
        self.session_cfg = session_cfg or SessionConfig()
        self.stream_cfg = stream_cfg or StreamConfig()
        self.queue: "queue.Queue" = queue.Queue(maxsize=self.stream_cfg.queue_size)
        self.listeners: List[Listener] = []
        self.dropped = 0
        self.processed = 0

        self._state = new_session()
        self._state_lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_sent = False

    # ---------- readers ----------
    def snapshot(self) -> SessionState:
        with self._state_lock:
            return self._state

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def add_listener(self, callback: Listener) -> None:
        if callback not in self.listeners:
            self.listeners.append(callback)

    def remove_listener(self, callback: Listener) -> None:
        if callback in self.listeners:
            self.listeners.remove(callback)

    # ---------- producer side ----------
    def submit(self, data, timestamp: int) -> bool:
        """Hand a message to the worker without blocking the caller."""
        try:
            self.queue.put_nowait((data, timestamp))
            return True
        except queue.Full:
            with self._state_lock:
                self.dropped += 1
            logging.warning("stream queue full (%d), dropped message at %d",
                            self.stream_cfg.queue_size, timestamp)
            return False

    # ---------- consumer side ----------
    def step(self, data, timestamp: int) -> SessionState:
        state = self.snapshot()
        event = decode(_to_raw(data))
        state = apply_event(state, event, timestamp)
        state = evict_older_than(state, self.session_cfg.window_us)
        with self._state_lock:
            self._state = state
            self.processed += 1
        self._notify(state.last_message_timestamp, event, state)
        return state

    def _notify(self, timestamp: int, event: DecodedEvent, state: SessionState):
        for listener in list(self.listeners):
            try:
                listener(timestamp, event, state)
            except Exception:
                logging.exception("listener %r failed on %r", listener, event)

    def feed(self, pairs: Iterable[Tuple[bytes, int]]) -> SessionState:
        """Fold pairs synchronously on the calling thread (file replay, tests)."""
        if self.running:
            raise RuntimeError("feed() while the worker thread is running")
        state = self.snapshot()
        for data, timestamp in pairs:
            state = self.step(data, timestamp)
        return state

    def _run(self):
        while True:
            item = self.queue.get()
            if item is _STOP:
                break
            data, timestamp = item
            try:
                self.step(data, timestamp)
            except Exception:
                logging.exception("dropped unprocessable message %r at %r", data, timestamp)

    def start(self):
        if self.running:
            return
        self._stop_sent = False
        self._thread = threading.Thread(target=self._run, name="midi-stream", daemon=True)
        self._thread.start()
        logging.debug("stream processor started")

    def stop(self, timeout: Optional[float] = 2.0):
        """Process everything submitted so far, then stop the worker."""
        if not self.running:
            return
        # blocking put: the stop marker must not be lost to a full queue
        if not self._stop_sent:
            self.queue.put(_STOP)
            self._stop_sent = True
        self._thread.join(timeout)
        if self._thread.is_alive():
            logging.warning("stream worker still busy after %ss, left running", timeout)
            return
        self._thread = None
        logging.debug("stream processor stopped (processed=%d, dropped=%d)",
                      self.processed, self.dropped)
