# ========================= config.py =========================
from dataclasses import dataclass, field
from typing import Optional

BACKENDS = ("mido", "pygame")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR")

@dataclass
class SessionConfig:
    window_ms: int = 2000  # note buffer horizon, 0 keeps everything

    def __post_init__(self):
        if self.window_ms < 0:
            raise ValueError(f"window_ms must be >= 0, got {self.window_ms}")

    @property
    def window_us(self) -> int:
        return self.window_ms * 1000

@dataclass
class StreamConfig:
    queue_size: int = 0  # 0 = unbounded hand-off queue

    def __post_init__(self):
        if self.queue_size < 0:
            raise ValueError(f"queue_size must be >= 0, got {self.queue_size}")

@dataclass
class SourceConfig:
    backend: str = "mido"
    port: Optional[str] = None
    file: Optional[str] = None
    poll_ms: int = 1  # pygame.midi has no callbacks, it is polled

    def __post_init__(self):
        if self.backend not in BACKENDS:
            raise ValueError(f"unknown backend {self.backend!r}, expected one of {BACKENDS}")
        if self.poll_ms < 1:
            raise ValueError(f"poll_ms must be >= 1, got {self.poll_ms}")

@dataclass
class LogConfig:
    level: str = "INFO"
    file_name: str = "monitor.log"
    status_every: float = 5.0  # seconds between status lines

    def __post_init__(self):
        self.level = self.level.upper()
        if self.level not in LOG_LEVELS:
            raise ValueError(f"unknown log level {self.level!r}")

@dataclass
class AppConfig:
    session: SessionConfig = field(default_factory=SessionConfig)
    stream: StreamConfig = field(default_factory=StreamConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    log: LogConfig = field(default_factory=LogConfig)
