# app.py
import logging
import threading
from config import AppConfig
from midi.sources import (FileSource, MidoInputSource, PygameInputSource, SourceError,
                          find_pygame_input)
from session.state import SessionState
from stream.processor import StreamProcessor
from stream.sinks import LoggingSink, describe_buffer
from utils.crashlog import log_exception

def make_source(cfg: AppConfig, sink):
    src = cfg.source
    if src.file:
        return FileSource(src.file, sink, realtime=True)
    if src.backend == "pygame":
        return PygameInputSource(find_pygame_input(src.port), sink, poll_ms=src.poll_ms)
    return MidoInputSource(src.port, sink)

def status_line(state: SessionState) -> str:
    bpm = f"{state.bpm:.1f}" if state.bpm is not None else "--"
    return (f"BPM: {bpm}  |  NOTES: {len(state.note_buffer)}"
            f"  |  CLOCK: {state.timing_clock_queue_len}/24  |  T: {state.last_message_timestamp}")

class App:
    """Source -> StreamProcessor -> sinks, until Ctrl-C or the end of a replayed file."""
    def __init__(self, cfg: AppConfig, source=None):
        self.cfg = cfg
        self.processor = StreamProcessor(cfg.session, cfg.stream)
        self.processor.add_listener(LoggingSink())
        self.source = source if source is not None else make_source(cfg, self.processor.submit)
        self._quit = threading.Event()

    def stop(self):
        self._quit.set()

    def run(self) -> int:
        try:
            self.processor.start()
            self.source.start()
        except SourceError as e:
            logging.error("%s", e)
            self.processor.stop()
            return 1

        finished = getattr(self.source, "finished", None)
        try:
            while not self._quit.wait(self.cfg.log.status_every):
                logging.info(status_line(self.processor.snapshot()))
                if finished is not None and finished.is_set():
                    break
        except KeyboardInterrupt:
            logging.info("interrupted")
        except Exception as e:
            log_exception("App.run", e)
            raise
        finally:
            self.source.stop()
            self.processor.stop()

        state = self.processor.snapshot()
        logging.info("done: %s (processed=%d, dropped=%d)",
                     status_line(state), self.processor.processed, self.processor.dropped)
        for line in describe_buffer(state):
            logging.debug("buffered %s", line)
        return 0

    @property
    def state(self) -> SessionState:
        return self.processor.snapshot()
