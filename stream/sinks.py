# stream/sinks.py
import logging
import threading
from typing import List, Optional, Tuple

from midi.decoder import (ControlChangeEvent, DecodedEvent, NoteEvent, PitchBendEvent,
                          PressureEvent, ProgramChangeEvent, StatusKind, StatusOnlyEvent,
                          SysexEvent, UnknownEvent)
from session.state import SessionState


def describe(event: DecodedEvent) -> str:
    """One-line summary of a decoded event for logs."""
    if isinstance(event, NoteEvent):
        kind = "NOTE ON " if event.is_on else "NOTE OFF"
        return f"{kind} | ch {event.channel:2d} | {event.key.label}{event.octave} ({event.note}) | vel {event.velocity}"
    if isinstance(event, PressureEvent):
        return f"PRESSURE | ch {event.channel:2d} | {event.key.label}{event.octave} | {event.pressure} ({event.kind.name.lower()})"
    if isinstance(event, ControlChangeEvent):
        return f"CC       | ch {event.channel:2d} | cc {event.controller} | val {event.value}"
    if isinstance(event, ProgramChangeEvent):
        return f"PROGRAM  | ch {event.channel:2d} | prog {event.program}"
    if isinstance(event, PitchBendEvent):
        return f"PITCH    | ch {event.channel:2d} | {event.value - 8192:+d}"
    if isinstance(event, StatusOnlyEvent):
        return event.status.name.replace("_", " ")
    if isinstance(event, SysexEvent):
        kind = event.status.name if event.status else "UNKNOWN SYSEX"
        return f"{kind} | {len(event.payload)} bytes | {event.payload[:16].hex(' ')}"
    if isinstance(event, UnknownEvent):
        return (f"UNKNOWN  | status 0x{event.raw_status:02X} cmd 0x{event.raw_command:02X}"
                f" | {event.byte1} {event.byte2}")
    return repr(event)


def describe_buffer(state: SessionState) -> List[str]:
    """The note buffer, oldest first, one line per note."""
    return [f"{n.timestamp:12d}  {n.event.key.label:<2} {n.event.octave:2d}  vel {n.event.velocity:3d}"
            f"  {'on' if n.event.is_on else 'off'}"
            for n in state.note_buffer]


class LoggingSink:
    """Writes events at DEBUG and tempo changes at INFO. Clock pulses are skipped unless asked for."""
    def __init__(self, show_clock: bool = False):
        self.show_clock = show_clock
        self.last_bpm: Optional[float] = None

    def __call__(self, timestamp: int, event: DecodedEvent, state: SessionState):
        if isinstance(event, StatusOnlyEvent) and event.status is StatusKind.TIMING_CLOCK:
            if self.show_clock:
                logging.debug("%12d  %s", timestamp, describe(event))
        else:
            logging.debug("%12d  %s", timestamp, describe(event))

        # only moves of half a beat per minute or more get a line
        if state.bpm is not None and (self.last_bpm is None or abs(state.bpm - self.last_bpm) >= 0.5):
            logging.info("tempo %.1f BPM", state.bpm)
            self.last_bpm = state.bpm


class CollectingSink:
    """Keeps every (timestamp, event) pair it receives, newest last."""
    def __init__(self):
        self._lock = threading.Lock()
        self._items: List[Tuple[int, DecodedEvent]] = []

    def __call__(self, timestamp: int, event: DecodedEvent, state: SessionState):
        with self._lock:
            self._items.append((timestamp, event))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def items(self) -> List[Tuple[int, DecodedEvent]]:
        with self._lock:
            return list(self._items)

    def flush_before(self, cutoff: int) -> int:
        """Drop entries with timestamp <= cutoff; returns how many were removed."""
        with self._lock:
            before = len(self._items)
            self._items = [(t, e) for t, e in self._items if t > cutoff]
            return before - len(self._items)
