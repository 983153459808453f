"""Actor key pair lifecycle.

The private key lives in ``<data_dir>/private-key.pem`` (mode 0600); the public
key is recorded in the :class:`~fedblog.core.config_store.ConfigStore` under
``ACTIVITYPUB_PUBLIC_KEY``. Generation is serialised across processes sharing
the data directory with an OS-level advisory lock; the holder writes its pid
next to the lock so a reclaimed stale owner shows up in the logs.
"""

import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from filelock import FileLock, Timeout

from fedblog.core.config_store import ConfigStore
from fedblog.core.errors import PersistenceFailure
from fedblog.core.storage import atomic_write_bytes, file_signature, retry_with_backoff, write_if_changed
from fedblog.core.activitypub.utils import generate_key_pair

logger = logging.getLogger(__name__)

PRIVATE_KEY_FILENAME = "private-key.pem"
LEGACY_KEY_GLOB = "private-key-*.pem"
LOCK_FILENAME = ".keymanager.lock"
OWNER_FILENAME = ".keymanager.pid"
PUBLIC_KEY_CONFIG_KEY = "ACTIVITYPUB_PUBLIC_KEY"
PUBLIC_KEY_MARKER = "BEGIN PUBLIC KEY"


class KeyStore:
    def __init__(
        self,
        data_dir: Path,
        config_store: ConfigStore,
        lock_timeout: float = 10.0,
        key_generator: Callable[[], Tuple[str, str]] = generate_key_pair,
    ):
        self.data_dir = Path(data_dir)
        self.private_key_file = self.data_dir / PRIVATE_KEY_FILENAME
        self.lock_file = self.data_dir / LOCK_FILENAME
        self.owner_file = self.data_dir / OWNER_FILENAME
        self.config_store = config_store
        self.lock_timeout = lock_timeout
        self._key_generator = key_generator

        self._private_key: Optional[str] = None
        self._private_signature = None
        self._keys_present = False
        self._callbacks: List[Callable[[], None]] = []
        self._state_lock = threading.RLock()

    # -- observers ---------------------------------------------------------

    def on_keys_refreshed(self, callback: Callable[[], None]) -> None:
        """Call ``callback`` each time the store goes from keys absent to present."""
        self._callbacks.append(callback)

    def _update_presence(self) -> bool:
        with self._state_lock:
            present = self._public_key_in_memory() is not None and self._private_key is not None
            became_present = present and not self._keys_present
            self._keys_present = present

        if became_present:
            logger.info("Actor keys are now available, running %d refresh callback(s)", len(self._callbacks))
            for callback in list(self._callbacks):
                try:
                    callback()
                except Exception as e:
                    logger.error("Key refresh callback failed: %s", e)
        return present

    # -- loading -----------------------------------------------------------

    def _public_key_in_memory(self) -> Optional[str]:
        value = self.config_store.get(PUBLIC_KEY_CONFIG_KEY)
        if not value:
            return None
        value = value.replace("\\n", "\n")
        if PUBLIC_KEY_MARKER not in value:
            return None
        return value

    def _load_private_key(self) -> None:
        signature = file_signature(self.private_key_file)
        if signature is None:
            key = None
        else:
            try:
                key = self.private_key_file.read_text(encoding="utf-8")
            except OSError as e:
                logger.error("Could not read private key %s: %s", self.private_key_file, e)
                key = None

        with self._state_lock:
            had_key = self._private_key is not None
            self._private_key = key or None
            self._private_signature = signature

        if key and not had_key:
            logger.info("Private key loaded from %s", self.private_key_file)
        elif not key:
            logger.info("No private key found at %s", self.private_key_file)

    def refresh(self) -> bool:
        """Re-read both keys from durable storage; returns whether both are present."""
        self.config_store.reload()
        self._load_private_key()
        return self._update_presence()

    load = refresh

    def has_keys(self) -> bool:
        """True only when both keys are present on durable storage right now."""
        self.get_public_key()
        self.get_private_key()
        with self._state_lock:
            return self._keys_present

    def get_public_key(self) -> Optional[str]:
        if self._public_key_in_memory() is None or self.config_store.is_stale():
            self.config_store.reload()
            self._update_presence()
        return self._public_key_in_memory()

    def get_private_key(self) -> Optional[str]:
        if self._private_key is None or file_signature(self.private_key_file) != self._private_signature:
            self._load_private_key()
            self._update_presence()
        return self._private_key

    # -- generation --------------------------------------------------------

    @contextmanager
    def _locked(self) -> Iterator[None]:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_file), timeout=self.lock_timeout)
        try:
            lock.acquire()
        except Timeout as e:
            raise PersistenceFailure(
                f"Could not acquire key lock {self.lock_file} within {self.lock_timeout}s"
            ) from e

        try:
            self._claim_ownership()
            yield
        finally:
            try:
                self.owner_file.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning("Could not remove lock owner file: %s", e)
            lock.release()

    def _claim_ownership(self) -> None:
        pid = os.getpid()
        try:
            previous = self.owner_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            previous = ""
        except OSError:
            previous = "unknown"

        if previous and previous != str(pid):
            logger.warning("Reclaimed stale key lock previously held by pid %s", previous)
        atomic_write_bytes(self.owner_file, str(pid).encode("ascii"))

    def _cleanup_legacy_keys(self) -> int:
        removed = 0
        for path in self.data_dir.glob(LEGACY_KEY_GLOB):
            if path.name == PRIVATE_KEY_FILENAME:
                continue
            try:
                path.unlink()
                removed += 1
                logger.info("Removed old key file: %s", path.name)
            except OSError as e:
                logger.warning("Could not remove old key file %s: %s", path.name, e)
        return removed

    def _generate_and_save(self) -> None:
        self._cleanup_legacy_keys()

        public_pem, private_pem = self._key_generator()

        try:
            previous = self.private_key_file.read_bytes()
        except FileNotFoundError:
            previous = None

        written = retry_with_backoff(
            lambda: write_if_changed(self.private_key_file, private_pem.encode("utf-8"), mode=0o600),
            description=f"write {self.private_key_file}",
        )
        if written:
            logger.info("Private key saved: %s", self.private_key_file)
        else:
            logger.info("Private key unchanged, skipping write")

        try:
            if not self.config_store.set(PUBLIC_KEY_CONFIG_KEY, public_pem, comment="ActivityPub Keys"):
                logger.info("Public key unchanged, skipping config update")
        except Exception:
            if written:
                self._restore_private_key(previous)
            raise

    def _restore_private_key(self, previous: Optional[bytes]) -> None:
        """Put back the private key that matches the published public key.

        When that is impossible the new private key is removed, leaving a
        single-key state that blocks signing.
        """
        logger.error("Public key record was not updated, rolling back the private key")
        try:
            if previous is None:
                self.private_key_file.unlink()
            else:
                atomic_write_bytes(self.private_key_file, previous, mode=0o600)
        except OSError as e:
            logger.error("Could not restore previous private key: %s", e)
            try:
                self.private_key_file.unlink()
            except FileNotFoundError:
                pass
            except OSError as unlink_error:
                logger.error("Could not remove unpublished private key: %s", unlink_error)
        finally:
            self._load_private_key()
            self._update_presence()

    def _complete_on_disk(self) -> bool:
        self.refresh()
        return self.private_key_file.exists() and self._public_key_in_memory() is not None

    def ensure_keys(self, force: bool = False) -> bool:
        """Generate and persist a key pair when none exists, or always when ``force``.

        Returns True when a new pair was written. Raises PersistenceFailure when
        the lock cannot be taken or the keys cannot be written.
        """
        if not force and self._complete_on_disk():
            logger.info("Keys already exist")
            return False

        logger.info("Generating new RSA key pair%s", " (forced)" if force else "")
        with self._locked():
            if not force and self._complete_on_disk():
                logger.info("Keys were generated by another process while waiting for the lock")
                return False
            self._generate_and_save()

        if not self.refresh():
            raise PersistenceFailure("Keys were written but could not be read back")
        logger.info("Keys generated and saved")
        return True

    def regenerate(self) -> bool:
        """Force a new key pair and reload it."""
        self.ensure_keys(force=True)
        return self.has_keys()
