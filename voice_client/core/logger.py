import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Final

from voice_client.core.config import Settings, get_settings
from voice_client.core.trace import get_event_name, get_trace_id

ROOT_LOGGER: Final[str] = "voice_client"


class JsonFormatter(logging.Formatter):
    """Serialise chaque entree en une ligne JSON."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name.removeprefix(f"{ROOT_LOGGER}."),
            "message": record.getMessage(),
            "trace_id": get_trace_id() or None,
            "event": get_event_name() or None,
        }
        if record.exc_info:
            log_record["exc"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Rotation basee sur la taille et le temps."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 0,
        backup_count: int = 0,
        when: str = "midnight",
        encoding: str | None = "utf-8",
        delay: bool = True,
    ) -> None:
        self.maxBytes = max_bytes
        super().__init__(
            str(filename),
            when=when,
            backupCount=backup_count,
            encoding=encoding,
            delay=delay,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.maxBytes > 0:
            if self.stream is None:  # pragma: no cover - ouverture differee
                self.stream = self._open()
            msg = f"{self.format(record)}\n"
            if (self.stream.tell() + len(msg.encode(self.encoding or "utf-8"))) >= self.maxBytes:
                return True
        return super().shouldRollover(record)


def configure_logging(settings: Settings | None = None) -> Path:
    """Attach the JSON-lines file handler to the package root logger (idempotent)."""
    settings = settings or get_settings()
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    file_path = log_dir / "client.jsonl"

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(settings.log_level.upper())
    for handler in root.handlers:
        if isinstance(handler, SizeAndTimeRotatingFileHandler) and Path(handler.baseFilename) == file_path.resolve():
            return file_path

    handler = SizeAndTimeRotatingFileHandler(
        file_path,
        max_bytes=settings.log_rotate_mb * 1024 * 1024,
        backup_count=settings.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    return file_path


_LOGGERS: dict[str, logging.Logger] = {}


def get_logger(name: str) -> logging.Logger:
    """Retourne le logger de la categorie `name` sous la racine du paquet."""
    if name not in _LOGGERS:
        _LOGGERS[name] = logging.getLogger(f"{ROOT_LOGGER}.{name}")
    return _LOGGERS[name]


client = get_logger("client")
event_bridge = get_logger("event_bridge")
cache = get_logger("cache")
sync = get_logger("sync")
