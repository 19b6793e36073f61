import contextvars
import logging
import logging.handlers
import queue
from pathlib import Path
from typing import List, Optional

# Custom TRACE level below DEBUG.
TRACE_LEVEL_NUM = 5
logging.addLevelName(TRACE_LEVEL_NUM, "TRACE")


def trace(self: logging.Logger, message: str, *args, **kwargs) -> None:
    """Logger helper for TRACE level."""
    if self.isEnabledFor(TRACE_LEVEL_NUM):
        self._log(TRACE_LEVEL_NUM, message, args, **kwargs)


logging.Logger.trace = trace  # type: ignore

LOG_QUEUE: "queue.Queue[logging.LogRecord]" = queue.Queue()
QUEUE_LISTENER: Optional[logging.handlers.QueueListener] = None

_PEER_ID: contextvars.ContextVar[str] = contextvars.ContextVar("peer_id", default="-")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s peer_id=%(peer_id)s: %(message)s"


class PeerContextFilter(logging.Filter):
    """Stamps the current peer id onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "peer_id"):
            record.peer_id = _PEER_ID.get()
        return True


def set_peer_id(peer_id: Optional[str]) -> contextvars.Token:
    return _PEER_ID.set(peer_id or "-")


def clear_peer_id(token: Optional[contextvars.Token] = None) -> None:
    if token is not None:
        _PEER_ID.reset(token)
    else:
        _PEER_ID.set("-")


def configure_logging(
    level: str,
    log_file: Optional[str],
    transcript_log_file: Optional[str] = None,
) -> None:
    """Configure root logging with queue-based handlers.

    Transcript text is routed to ``TRANSCRIPT_LOGGER`` which never propagates
    to the root handlers; it is written only when ``transcript_log_file`` is set.
    """
    global QUEUE_LISTENER
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if level.upper() == "TRACE":
        numeric_level = TRACE_LEVEL_NUM

    formatter = logging.Formatter(LOG_FORMAT)

    handlers: List[logging.Handler] = []
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    queue_handler = logging.handlers.QueueHandler(LOG_QUEUE)
    queue_handler.addFilter(PeerContextFilter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(numeric_level)
    root_logger.addHandler(queue_handler)

    if QUEUE_LISTENER:
        QUEUE_LISTENER.stop()
    QUEUE_LISTENER = logging.handlers.QueueListener(
        LOG_QUEUE, *handlers, respect_handler_level=True
    )
    QUEUE_LISTENER.start()

    for handler in TRANSCRIPT_LOGGER.handlers:
        handler.close()
    TRANSCRIPT_LOGGER.handlers.clear()
    if transcript_log_file:
        transcript_path = Path(transcript_log_file).expanduser()
        transcript_path.parent.mkdir(parents=True, exist_ok=True)
        transcript_handler = logging.FileHandler(transcript_path)
        transcript_handler.setFormatter(
            logging.Formatter("%(asctime)s %(message)s")
        )
        TRANSCRIPT_LOGGER.addHandler(transcript_handler)
    else:
        TRANSCRIPT_LOGGER.addHandler(logging.NullHandler())


LOGGER = logging.getLogger("caption_server")
TRANSCRIPT_LOGGER = logging.getLogger("caption_server.transcripts")
TRANSCRIPT_LOGGER.propagate = False
TRANSCRIPT_LOGGER.setLevel(logging.INFO)

__all__ = [
    "configure_logging",
    "clear_peer_id",
    "set_peer_id",
    "LOGGER",
    "TRANSCRIPT_LOGGER",
    "TRACE_LEVEL_NUM",
]
