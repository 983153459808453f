"""Durable file helpers shared by the key store, config store and federation state."""

import logging
import os
import tempfile
import time
from pathlib import Path
from typing import Callable, Optional, Tuple, Type, TypeVar

from fedblog.core.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 0.1


def retry_with_backoff(
    func: Callable[[], T],
    description: str,
    attempts: int = DEFAULT_ATTEMPTS,
    base_delay: float = DEFAULT_BASE_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = (OSError,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``func`` with exponential backoff, raising PersistenceFailure on exhaustion.

    Delay before retry ``n`` (1-based) is ``base_delay * 2 ** (n - 1)``.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except retry_on as e:
            logger.warning("Attempt %d/%d to %s failed: %s", attempt, attempts, description, e)
            if attempt >= attempts:
                raise PersistenceFailure(
                    f"Failed to {description} after {attempts} attempts: {e}"
                ) from e
            sleep(base_delay * (2 ** (attempt - 1)))
    raise PersistenceFailure(f"Failed to {description}: no attempts made")


def atomic_write_bytes(path: Path, data: bytes, mode: Optional[int] = None) -> None:
    """Write ``data`` to a temp file beside ``path`` then rename it into place."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        prefix=f"{path.name}.tmp.", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def write_if_changed(path: Path, data: bytes, mode: Optional[int] = None) -> bool:
    """Atomically write ``data`` unless the file already holds exactly those bytes.

    Returns True when a write happened.
    """
    path = Path(path)
    try:
        if path.read_bytes() == data:
            return False
    except FileNotFoundError:
        pass
    atomic_write_bytes(path, data, mode=mode)
    return True


def file_signature(path: Path) -> Optional[Tuple[int, int]]:
    """(mtime_ns, size) of ``path``, or None when it does not exist."""
    try:
        st = os.stat(path)
    except FileNotFoundError:
        return None
    return st.st_mtime_ns, st.st_size
