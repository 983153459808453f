"""Followers, following and the inbound activity log, mirrored to disk.

All mutations go through :class:`FederationState`, serialised by one
``asyncio.Lock``; every mutation that changes something rewrites the three
JSON files (temp file + atomic rename). A failed save leaves the in-memory
state authoritative and raises PersistenceFailure.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import orjson

from fedblog.core.errors import PersistenceFailure
from fedblog.core.storage import atomic_write_bytes, retry_with_backoff
from fedblog.core.activitypub.utils import isoformat

logger = logging.getLogger(__name__)

FOLLOWERS_FILE = "followers.json"
FOLLOWING_FILE = "following.json"
ACTIVITIES_FILE = "activities.json"


def make_activity_record(activity: Dict[str, Any], received: datetime) -> Dict[str, Any]:
    """Activity log entry: the raw activity plus its received timestamp."""
    return {**activity, "received": isoformat(received)}


class FederationState:
    def __init__(
        self,
        data_dir: Path,
        activity_log_limit: Optional[int] = 1000,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.data_dir = Path(data_dir)
        self.activity_log_limit = activity_log_limit
        self._clock = clock
        # dicts keep insertion order and give O(1) membership
        self._followers: Dict[str, None] = {}
        self._following: Dict[str, None] = {}
        self._activities: List[Dict[str, Any]] = []
        self._lock = asyncio.Lock()

    # -- reads -------------------------------------------------------------

    @property
    def followers(self) -> List[str]:
        return list(self._followers)

    @property
    def following(self) -> List[str]:
        return list(self._following)

    @property
    def activities(self) -> List[Dict[str, Any]]:
        return list(self._activities)

    def is_follower(self, actor_uri: str) -> bool:
        return actor_uri in self._followers

    # -- loading -----------------------------------------------------------

    def _read_list(self, filename: str) -> List[Any]:
        path = self.data_dir / filename
        try:
            data = orjson.loads(path.read_bytes())
        except FileNotFoundError:
            logger.info("No existing %s file", filename)
            return []
        except (OSError, orjson.JSONDecodeError) as e:
            logger.warning("Could not read %s, starting empty: %s", path, e)
            return []
        if not isinstance(data, list):
            logger.warning("Unexpected content in %s, starting empty", path)
            return []
        return data

    def load(self) -> None:
        """Load all collections; missing or corrupt files start empty."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._followers = dict.fromkeys(u for u in self._read_list(FOLLOWERS_FILE) if isinstance(u, str))
        self._following = dict.fromkeys(u for u in self._read_list(FOLLOWING_FILE) if isinstance(u, str))
        self._activities = [a for a in self._read_list(ACTIVITIES_FILE) if isinstance(a, dict)]
        self._trim_activities()
        logger.info(
            "Loaded %d followers, %d following, %d activities",
            len(self._followers), len(self._following), len(self._activities),
        )

    # -- persistence -------------------------------------------------------

    def _write_all(self) -> None:
        snapshot = {
            FOLLOWERS_FILE: list(self._followers),
            FOLLOWING_FILE: list(self._following),
            ACTIVITIES_FILE: self._activities,
        }
        for filename, data in snapshot.items():
            atomic_write_bytes(self.data_dir / filename, orjson.dumps(data, option=orjson.OPT_INDENT_2))

    async def save_data(self) -> None:
        """Persist all collections, retrying with backoff off the event loop."""
        try:
            await asyncio.to_thread(
                retry_with_backoff, self._write_all, description="save federation state"
            )
        except PersistenceFailure as e:
            logger.error("Federation state not persisted, in-memory state kept: %s", e)
            raise

    def _trim_activities(self) -> None:
        limit = self.activity_log_limit
        if limit is not None and limit >= 0 and len(self._activities) > limit:
            del self._activities[: len(self._activities) - limit]

    # -- mutations ---------------------------------------------------------

    async def add_follower(self, actor_uri: str) -> bool:
        async with self._lock:
            if actor_uri in self._followers:
                return False
            self._followers[actor_uri] = None
            await self.save_data()
        logger.info("Added follower: %s (Total: %d)", actor_uri, len(self._followers))
        return True

    async def remove_follower(self, actor_uri: str) -> bool:
        async with self._lock:
            if actor_uri not in self._followers:
                return False
            del self._followers[actor_uri]
            await self.save_data()
        logger.info("Removed follower: %s (Total: %d)", actor_uri, len(self._followers))
        return True

    async def add_following(self, actor_uri: str) -> bool:
        async with self._lock:
            if actor_uri in self._following:
                return False
            self._following[actor_uri] = None
            await self.save_data()
        return True

    async def remove_following(self, actor_uri: str) -> bool:
        async with self._lock:
            if actor_uri not in self._following:
                return False
            del self._following[actor_uri]
            await self.save_data()
        return True

    async def append_activity(self, activity: Dict[str, Any]) -> Dict[str, Any]:
        record = make_activity_record(activity, self._clock())
        async with self._lock:
            self._activities.append(record)
            self._trim_activities()
            await self.save_data()
        return record
