"""Reloadable key/value store backed by a dotenv-style file.

Holds the runtime-mutable part of the configuration (the actor's public key
record). Unlike :class:`fedblog.core.config.Settings`, which is read once, the
store can be rewritten while the process runs and re-read with ``reload()``;
subscribers registered with ``on_change`` are told about every changed key.
"""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional

from dotenv import dotenv_values

from fedblog.core.storage import atomic_write_bytes, file_signature, retry_with_backoff

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[str, Optional[str], Optional[str]], None]


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
    return f'"{escaped}"'


class ConfigStore:
    """dotenv file with atomic updates and change notification."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._values: Dict[str, Optional[str]] = {}
        self._signature = None
        self._callbacks: List[ChangeCallback] = []
        self._lock = threading.RLock()

    def on_change(self, callback: ChangeCallback) -> None:
        self._callbacks.append(callback)

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        with self._lock:
            value = self._values.get(key)
        return default if value is None else value

    def is_stale(self) -> bool:
        return file_signature(self.path) != self._signature

    def reload(self) -> bool:
        """Re-read the file; returns True when any value changed."""
        with self._lock:
            signature = file_signature(self.path)
            values = dict(dotenv_values(self.path)) if signature else {}
            old = self._values
            self._values = values
            self._signature = signature

        changed = [
            key for key in set(old) | set(values) if old.get(key) != values.get(key)
        ]
        for key in sorted(changed):
            self._notify(key, old.get(key), values.get(key))
        if changed:
            logger.info("Config store %s reloaded, %d key(s) changed", self.path, len(changed))
        return bool(changed)

    def refresh_if_stale(self) -> bool:
        if self.is_stale():
            return self.reload()
        return False

    def set(self, key: str, value: str, comment: Optional[str] = None) -> bool:
        """Persist ``key=value``; skips the write when the file already holds it.

        Returns True when the file was rewritten.
        """
        with self._lock:
            current = dotenv_values(self.path).get(key) if self.path.exists() else None
            if current == value:
                logger.debug("Config key %s unchanged, skipping write", key)
                return False

            retry_with_backoff(
                lambda: self._rewrite(key, value, comment),
                description=f"update {self.path}",
            )
        logger.info("Config key %s written to %s", key, self.path)
        self.reload()
        return True

    def _rewrite(self, key: str, value: str, comment: Optional[str]) -> None:
        try:
            lines = self.path.read_text(encoding="utf-8").split("\n")
        except FileNotFoundError:
            lines = ["# Environment Variables"]

        entry = f"{key}={_quote(value)}"
        found = False
        new_lines = []
        for line in lines:
            if line.startswith(f"{key}="):
                if not found:
                    new_lines.append(entry)
                found = True
            else:
                new_lines.append(line)

        if not found:
            new_lines.append("")
            if comment:
                new_lines.append(f"# {comment}")
            new_lines.append(entry)

        content = "\n".join(new_lines)
        if not content.endswith("\n"):
            content += "\n"
        atomic_write_bytes(self.path, content.encode("utf-8"))

    def _notify(self, key: str, old: Optional[str], new: Optional[str]) -> None:
        for callback in list(self._callbacks):
            try:
                callback(key, old, new)
            except Exception as e:
                logger.error("Config change callback failed for %s: %s", key, e)
