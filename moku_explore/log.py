import os
import sys
import time
import queue
import json
import logging
from logging.handlers import RotatingFileHandler

from flask import g

# Bounded so an undrained queue can't grow forever
MSG_QUEUE_SIZE = 500
msg_queue: queue.Queue = queue.Queue(maxsize=MSG_QUEUE_SIZE)

logger = logging.getLogger("moku_explore")
logger.setLevel(logging.INFO)

BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(BASE_DIR, 'instance')
os.makedirs(LOG_DIR, exist_ok=True)
LOG_FILE = os.path.join(LOG_DIR, 'moku_explore.log')

if not any(getattr(h, "baseFilename", None) == LOG_FILE for h in logger.handlers):
    file_handler = RotatingFileHandler(LOG_FILE, maxBytes=10*1024*1024, backupCount=5)
    file_handler.setFormatter(logging.Formatter('%(asctime)s - %(levelname)s - %(name)s - %(message)s'))
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(logging.Formatter('%(message)s'))
    logger.addHandler(stream_handler)

# Debug events (local-only file)
DEBUG_LOGGING = os.environ.get('DEBUG_LOGGING', 'false').lower() in ('1', 'true', 'yes', 'on')
DEBUG_LOG_FILE = os.path.join(LOG_DIR, 'debug.log')

debug_logger = logging.getLogger("moku_explore.debug")
debug_logger.setLevel(logging.INFO)
debug_logger.propagate = False
if DEBUG_LOGGING and not any(getattr(h, "baseFilename", None) == DEBUG_LOG_FILE for h in debug_logger.handlers):
    debug_handler = RotatingFileHandler(DEBUG_LOG_FILE, maxBytes=10 * 1024 * 1024, backupCount=10)
    debug_handler.setFormatter(logging.Formatter('%(message)s'))
    debug_logger.addHandler(debug_handler)
if not DEBUG_LOGGING:
    debug_logger.disabled = True


def _request_prefix() -> str:
    """Return request id prefix if available."""
    try:
        if g and getattr(g, "request_id", None):
            return f"[{g.request_id}] "
    except RuntimeError:
        # Outside request context
        pass
    return ""


def log(msg: str) -> None:
    """Log a message to console, file, and message queue."""
    full = f"{_request_prefix()}{msg}"
    logger.info(full)

    timestamp = time.strftime("[%H:%M:%S]")
    try:
        msg_queue.put_nowait(f"{timestamp} {full}")
    except queue.Full:
        # Drop the oldest line to make room
        try:
            msg_queue.get_nowait()
        except queue.Empty:
            pass
        msg_queue.put_nowait(f"{timestamp} {full}")


def drain_messages(limit: int = MSG_QUEUE_SIZE) -> list:
    """Pop up to `limit` queued messages, oldest first."""
    messages = []
    while len(messages) < limit:
        try:
            messages.append(msg_queue.get_nowait())
        except queue.Empty:
            break
    return messages


def debug_log_event(event: dict) -> None:
    """Write structured debug events to a local file."""
    if debug_logger.disabled:
        return
    try:
        debug_logger.info(json.dumps(event, ensure_ascii=True, separators=(',', ':')))
    except Exception as exc:
        logger.info(f"Debug log failure: {exc}")
