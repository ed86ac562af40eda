# session/state.py
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from midi.decoder import DecodedEvent, NoteEvent, StatusOnlyEvent, StatusKind

CLOCKS_PER_QUARTER = 24  # MIDI timing clock: 24 pulses per quarter note
MICROS_PER_MINUTE = 60_000_000
NO_TIMESTAMP = -1


@dataclass(frozen=True)
class BufferedNote:
    timestamp: int
    event: NoteEvent


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of one device stream. Every fold step returns a new instance."""
    last_message_timestamp: int = 0
    timing_clock_queue_len: int = 0
    beat_stamp: int = 0
    bpm: Optional[float] = None
    note_buffer: Tuple[BufferedNote, ...] = ()


def new_session() -> SessionState:
    return SessionState()


def advance_clock(state: SessionState, timestamp: int) -> SessionState:
    n = state.timing_clock_queue_len
    if n < CLOCKS_PER_QUARTER - 1:
        return replace(state, timing_clock_queue_len=n + 1, last_message_timestamp=timestamp)
    # 24th pulse: close the quarter note
    elapsed = timestamp - state.beat_stamp
    return replace(state,
                   bpm=MICROS_PER_MINUTE / max(1, elapsed),
                   beat_stamp=timestamp,
                   timing_clock_queue_len=0,
                   last_message_timestamp=timestamp)


def buffer_note(state: SessionState, event: NoteEvent, timestamp: int) -> SessionState:
    # zero velocity is never buffered, note-on or note-off alike
    if event.velocity <= 0:
        return replace(state, last_message_timestamp=timestamp)
    return replace(state,
                   note_buffer=state.note_buffer + (BufferedNote(timestamp, event),),
                   last_message_timestamp=timestamp)


def apply_event(state: SessionState, event: DecodedEvent, timestamp: int) -> SessionState:
    """One fold step. A timestamp of -1 means 'unavailable' and reuses the last one seen."""
    if timestamp == NO_TIMESTAMP:
        timestamp = state.last_message_timestamp
    if isinstance(event, StatusOnlyEvent) and event.status is StatusKind.TIMING_CLOCK:
        return advance_clock(state, timestamp)
    if isinstance(event, NoteEvent):
        return buffer_note(state, event, timestamp)
    return replace(state, last_message_timestamp=timestamp)


def evict_before(state: SessionState, cutoff: int) -> SessionState:
    """Drop every buffered note with timestamp <= cutoff, keeping the order of the rest."""
    kept = tuple(n for n in state.note_buffer if n.timestamp > cutoff)
    if len(kept) == len(state.note_buffer):
        return state
    return replace(state, note_buffer=kept)


def evict_older_than(state: SessionState, window_us: Optional[int]) -> SessionState:
    if not window_us:
        return state
    return evict_before(state, state.last_message_timestamp - window_us)
