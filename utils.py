import datetime
import os
import time

import config


def log_text(text):
    """Logging mit automatischer Rotation bei 10MB Limit (verhindert unbegrenztes Wachstum)"""
    path = config.LOG_PATH
    try:
        if os.path.exists(path) and os.path.getsize(path) > config.LOG_ROTATE_BYTES:
            # Rotate: .txt -> .txt.old (ueberschreibt alte Rotation)
            try:
                os.replace(path, f"{path}.old")
            except OSError:
                try:
                    os.remove(path)
                except OSError:
                    pass

        with open(path, "a", encoding="utf-8") as f:
            f.write(f"{datetime.datetime.now().isoformat()}:\n{text}\n\n")
    except OSError:
        pass


def log_debug(message: str):
    """Append a debug line to the log file with timestamp (for development diagnostics)."""
    try:
        ts = datetime.datetime.now().isoformat()
        with open(config.LOG_PATH, "a", encoding="utf-8") as f:
            f.write(f"{ts} [DEBUG] {message}\n")
    except OSError:
        pass


def now_ms() -> int:
    """Monotonic milliseconds; only differences are meaningful."""
    return int(time.monotonic() * 1000)


def short_addr(identity: str, length: int = 12) -> str:
    """'sol:AbCdEf...' style shortening for log lines."""
    if len(identity) <= length:
        return identity
    return identity[:length] + "..."
