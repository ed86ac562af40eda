# midi/sources.py
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

import mido
import pygame.midi

from midi.decoder import short_message_length

Sink = Callable[[bytes, int], object]  # (raw bytes, timestamp µs)


class SourceError(RuntimeError):
    """A MIDI input could not be opened."""


@dataclass(frozen=True)
class DeviceInfo:
    name: str
    interface: str
    is_input: bool
    is_output: bool
    device_id: Optional[int] = None  # pygame.midi only

    @property
    def key(self) -> Tuple[str, str]:
        # stable across runs, device ids are not
        return (self.interface, self.name)


def list_input_devices(backend: str = "mido") -> List[DeviceInfo]:
    if backend == "mido":
        iface = mido.backend.name
        return [DeviceInfo(name=n, interface=iface, is_input=True, is_output=False)
                for n in mido.get_input_names()]
    if backend == "pygame":
        pygame.midi.init()
        out: List[DeviceInfo] = []
        for i in range(pygame.midi.get_count()):
            interf, name, is_in, is_out, _opened = pygame.midi.get_device_info(i)
            if is_in:
                out.append(DeviceInfo(name=name.decode(errors="replace"),
                                      interface=interf.decode(errors="replace"),
                                      is_input=True, is_output=bool(is_out), device_id=i))
        return out
    raise ValueError(f"unknown backend {backend!r}")


def find_pygame_input(name: Optional[str]) -> int:
    """pygame.midi device id for an input name (None -> system default input)."""
    if name is None:
        pygame.midi.init()
        dev = pygame.midi.get_default_input_id()
        if dev == -1:
            raise SourceError("no default MIDI input device")
        return dev
    for info in list_input_devices("pygame"):
        if info.name == name:
            return info.device_id
    raise SourceError(f"MIDI input not found: {name!r}")


class DeviceClock:
    """Microseconds since the port was opened."""
    def __init__(self):
        self._t0 = time.perf_counter_ns()

    def reset(self):
        self._t0 = time.perf_counter_ns()

    def now(self) -> int:
        return (time.perf_counter_ns() - self._t0) // 1000


class MidoInputSource:
    """mido input port; messages arrive on the backend's thread and are handed straight to `sink`."""
    def __init__(self, name: Optional[str], sink: Sink, clock: Optional[DeviceClock] = None):
        self.name = name
        self.sink = sink
        self.clock = clock or DeviceClock()
        self.port = None

    def _on_message(self, msg):
        self.sink(bytes(msg.bytes()), self.clock.now())

    def start(self):
        self.clock.reset()
        try:
            self.port = mido.open_input(self.name, callback=self._on_message)
        except (OSError, ImportError) as e:
            raise SourceError(f"cannot open MIDI input {self.name!r}: {e}") from e
        logging.info("listening on %s", self.port.name)

    def stop(self):
        if self.port is not None:
            self.port.close()
            self.port = None


class PacketAssembler:
    """
    pygame.midi delivers fixed 4-byte packets:
    - short messages are padded, trim them to their real length
    - sysex is split across packets, collect it until 0xF7
    - real-time bytes may arrive in the middle of a sysex dump
    - any other status byte ends a sysex that never saw its 0xF7
    """
    def __init__(self):
        self._sysex: Optional[bytearray] = None
        self._sysex_ts = 0

    def feed(self, packet, timestamp: int) -> List[Tuple[bytes, int]]:
        out: List[Tuple[bytes, int]] = []
        if not packet:
            return out
        status = packet[0]
        if self._sysex is not None:
            if status >= 0xF8:
                out.append((bytes([status]), timestamp))
                return out
            for i, b in enumerate(packet):
                if b >= 0xF8:
                    out.append((bytes([b]), timestamp))
                elif b == 0xF7:
                    self._sysex.append(b)
                    out.append((bytes(self._sysex), self._sysex_ts))
                    self._sysex = None
                    break
                elif b >= 0x80:
                    # any other status byte ends the dump; the unterminated part is lost
                    logging.warning("unterminated sysex dropped (%d bytes)", len(self._sysex))
                    self._sysex = None
                    out.extend(self.feed(packet[i:], timestamp))
                    break
                else:
                    self._sysex.append(b)
            return out
        if status == 0xF0:
            self._sysex = bytearray([0xF0])
            self._sysex_ts = timestamp
            return self.feed(packet[1:], timestamp) if len(packet) > 1 else out
        out.append((bytes(packet[:short_message_length(status)]), timestamp))
        return out


class PygameInputSource:
    """pygame.midi input, polled from its own thread."""
    def __init__(self, device_id: int, sink: Sink, poll_ms: int = 1,
                 input_factory: Optional[Callable] = None):
        self.device_id = device_id
        self.sink = sink
        self.poll_ms = poll_ms
        self.input_factory = input_factory
        self.input = None
        self.assembler = PacketAssembler()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        factory = self.input_factory
        if factory is None:
            pygame.midi.init()
            factory = pygame.midi.Input
        try:
            self.input = factory(self.device_id)
        except pygame.midi.MidiException as e:
            raise SourceError(f"cannot open pygame.midi input {self.device_id}: {e}") from e
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="pygame-midi-in", daemon=True)
        self._thread.start()
        logging.info("listening on pygame.midi device %d", self.device_id)

    def poll_once(self) -> int:
        """Read whatever is pending; returns the number of packets read."""
        if not self.input.poll():
            return 0
        packets = self.input.read(64)
        for packet, ts_ms in packets:
            for data, ts in self.assembler.feed(packet, int(ts_ms) * 1000):
                self.sink(data, ts)
        return len(packets)

    def _run(self):
        while not self._stop.is_set():
            if not self.poll_once():
                self._stop.wait(self.poll_ms / 1000.0)

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(1.0)
            self._thread = None
        if self.input is not None:
            self.input.close()
            self.input = None


def file_messages(path: str) -> Iterator[Tuple[bytes, int]]:
    """Replay a standard MIDI file as (bytes, µs since start) pairs, following tempo changes."""
    mid = mido.MidiFile(path)
    tpb = mid.ticks_per_beat
    tempo = 500000  # default 120 bpm
    time_sec = 0.0
    for msg in mido.merge_tracks(mid.tracks):
        time_sec += mido.tick2second(msg.time, tpb, tempo)
        if msg.is_meta:
            if msg.type == 'set_tempo':
                tempo = msg.tempo
            continue
        yield bytes(msg.bytes()), int(round(time_sec * 1_000_000))


class FileSource:
    """Feeds a MIDI file to `sink`, either paced in real time or as fast as possible."""
    def __init__(self, path: str, sink: Sink, realtime: bool = True):
        self.path = path
        self.sink = sink
        self.realtime = realtime
        self.finished = threading.Event()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _run(self):
        clock = DeviceClock()
        try:
            for data, ts in file_messages(self.path):
                if self.realtime:
                    wait = (ts - clock.now()) / 1_000_000
                    if wait > 0 and self._stop.wait(wait):
                        break
                elif self._stop.is_set():
                    break
                self.sink(data, ts)
        finally:
            self.finished.set()

    def start(self):
        try:
            mido.MidiFile(self.path)
        except (OSError, EOFError, ValueError) as e:
            raise SourceError(f"cannot read MIDI file {self.path!r}: {e}") from e
        self._thread = threading.Thread(target=self._run, name="midi-file", daemon=True)
        self._thread.start()
        logging.info("replaying %s", self.path)

    def stop(self):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(1.0)
            self._thread = None
