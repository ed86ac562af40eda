# midi/decoder.py
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union


class PitchClass(Enum):
    C = 0
    CS = 1
    D = 2
    DS = 3
    E = 4
    F = 5
    FS = 6
    G = 7
    GS = 8
    A = 9
    AS = 10
    B = 11

    @property
    def label(self) -> str:
        return self.name.replace("S", "#")


class StatusKind(Enum):
    ACTIVE_SENSING = 0xFE
    CONTINUE = 0xFB
    END_OF_EXCLUSIVE = 0xF7
    MIDI_TIME_CODE = 0xF1
    SONG_POSITION_POINTER = 0xF2
    SONG_SELECT = 0xF3
    START = 0xFA
    STOP = 0xFC
    SYSTEM_RESET = 0xFF
    TIMING_CLOCK = 0xF8
    TUNE_REQUEST = 0xF6


class CommandKind(Enum):
    NOTE_OFF = 0x80
    NOTE_ON = 0x90
    POLY_PRESSURE = 0xA0
    CONTROL_CHANGE = 0xB0
    PROGRAM_CHANGE = 0xC0
    CHANNEL_PRESSURE = 0xD0
    PITCH_BEND = 0xE0


class SysexKind(Enum):
    SYSTEM_EXCLUSIVE = 0xF0
    SPECIAL_SYSTEM_EXCLUSIVE = 0xF7


# byte -> kind lookup tables
SHORT_STATUS = {k.value: k for k in StatusKind}
SHORT_COMMAND = {k.value: k for k in CommandKind}
SYSEX_STATUS = {k.value: k for k in SysexKind}


# ---------- raw (wire) messages ----------
@dataclass(frozen=True)
class ShortMessage:
    status: int
    command: int
    channel: int  # 1..16
    data1: int = 0
    data2: int = 0


@dataclass(frozen=True)
class SysexMessage:
    status: int
    payload: bytes = b""


RawMessage = Union[ShortMessage, SysexMessage]


# ---------- decoded events ----------
@dataclass(frozen=True)
class NoteEvent:
    channel: int
    key: PitchClass
    octave: int
    velocity: int
    is_on: bool

    @property
    def note(self) -> int:
        return self.octave * 12 + self.key.value


@dataclass(frozen=True)
class PressureEvent:
    channel: int
    key: PitchClass
    octave: int
    pressure: int
    kind: CommandKind = CommandKind.POLY_PRESSURE

    @property
    def note(self) -> int:
        return self.octave * 12 + self.key.value


@dataclass(frozen=True)
class ControlChangeEvent:
    channel: int
    controller: int
    value: int


@dataclass(frozen=True)
class ProgramChangeEvent:
    channel: int
    program: int


@dataclass(frozen=True)
class PitchBendEvent:
    channel: int
    value: int  # 0..16383, center 8192


@dataclass(frozen=True)
class StatusOnlyEvent:
    status: StatusKind


@dataclass(frozen=True)
class SysexEvent:
    status: Optional[SysexKind]
    payload: bytes


@dataclass(frozen=True)
class UnknownEvent:
    raw_status: int
    raw_command: int
    byte1: int = 0
    byte2: int = 0


DecodedEvent = Union[NoteEvent, PressureEvent, ControlChangeEvent, ProgramChangeEvent,
                     PitchBendEvent, StatusOnlyEvent, SysexEvent, UnknownEvent]


def pitch_class(note: int) -> PitchClass:
    return PitchClass(note % 12)


def combine14(low: int, high: int) -> int:
    """Two 7-bit data bytes -> one 14-bit value (low7 | high7 << 7)."""
    return (low & 0x7F) | ((high & 0x7F) << 7)


def short_message_length(status: int) -> int:
    """Total byte count (status included) of a short message starting with `status`."""
    if status < 0x80:
        return 1
    if status < 0xF0:
        return 2 if (status & 0xF0) in (0xC0, 0xD0) else 3
    if status in (0xF1, 0xF3):
        return 2
    if status == 0xF2:
        return 3
    return 1


def from_bytes(data) -> RawMessage:
    """Wire bytes -> RawMessage. Never fails; missing data bytes read as 0."""
    data = bytes(data)
    if not data:
        return ShortMessage(status=0, command=0, channel=1)
    status = data[0]
    if status in SYSEX_STATUS:
        return SysexMessage(status=status, payload=data[1:])
    command = status & 0xF0 if status < 0xF0 else 0
    data1 = data[1] if len(data) > 1 else 0
    data2 = data[2] if len(data) > 2 else 0
    return ShortMessage(status=status, command=command, channel=(status & 0x0F) + 1,
                        data1=data1, data2=data2)


def _decode_command(command: CommandKind, channel: int, data1: int, data2: int) -> DecodedEvent:
    if command in (CommandKind.NOTE_ON, CommandKind.NOTE_OFF):
        return NoteEvent(channel=channel, key=pitch_class(data1), octave=data1 // 12,
                         velocity=data2, is_on=command is CommandKind.NOTE_ON)
    if command in (CommandKind.CHANNEL_PRESSURE, CommandKind.POLY_PRESSURE):
        return PressureEvent(channel=channel, key=pitch_class(data1), octave=data1 // 12,
                             pressure=data2, kind=command)
    if command is CommandKind.CONTROL_CHANGE:
        return ControlChangeEvent(channel=channel, controller=data1, value=data2)
    if command is CommandKind.PROGRAM_CHANGE:
        return ProgramChangeEvent(channel=channel, program=data1)
    return PitchBendEvent(channel=channel, value=combine14(data1, data2))


def decode(raw: RawMessage) -> DecodedEvent:
    """
    Total, pure decode of one raw message.
    Channel-voice commands win over system statuses; anything else becomes UnknownEvent.
    """
    if isinstance(raw, SysexMessage):
        return SysexEvent(status=SYSEX_STATUS.get(raw.status), payload=bytes(raw.payload))

    command = SHORT_COMMAND.get(raw.command)
    if command is not None:
        return _decode_command(command, raw.channel, raw.data1, raw.data2)
    status = SHORT_STATUS.get(raw.status)
    if status is not None:
        return StatusOnlyEvent(status=status)
    return UnknownEvent(raw_status=raw.status, raw_command=raw.command,
                        byte1=raw.data1, byte2=raw.data2)


def decode_bytes(data) -> DecodedEvent:
    return decode(from_bytes(data))
