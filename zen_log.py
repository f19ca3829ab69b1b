import datetime
import os
import threading
from typing import Iterable, Optional, Set


SECRET_MASK = "***"
CATEGORIES = ("BOOT", "KEY", "ACTION", "TASK", "STATE", "WARN", "ERR", "CMD")


class DebugLogger:
    """Appends ``"<timestamp> [CATEGORY] message"`` lines to a file.

    Disabled unless a path is given. Background threads log through the same
    instance, so writes are serialised. Registered secrets (the configured
    passwords) are masked in every line.
    """

    def __init__(self, path: Optional[str]) -> None:
        self.path = os.path.abspath(path) if path else None
        self.enabled = bool(path)
        self._secrets: Set[str] = set()
        self._lock = threading.Lock()
        if not self.enabled:
            return
        parent = os.path.dirname(self.path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.log("BOOT", f"debug enabled path={self.path}")

    def mask(self, secrets: Iterable[str]) -> None:
        self._secrets.update(secret for secret in secrets if secret)

    def log(self, category: str, message: str) -> None:
        if not self.enabled or not self.path:
            return
        category = category.upper()
        if category not in CATEGORIES:
            message = f"category={category} {message}"
            category = "WARN"
        # longest first so a secret containing another is masked whole
        for secret in sorted(self._secrets, key=len, reverse=True):
            message = message.replace(secret, SECRET_MASK)
        timestamp = datetime.datetime.now().isoformat(timespec="milliseconds")
        line = f"{timestamp} [{category}] {message}".replace("\n", "\\n")
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as fp:
                    fp.write(line + "\n")
            except OSError:
                pass
