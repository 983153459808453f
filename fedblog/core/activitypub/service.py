"""The federation service object.

Built once at process start (see ``fedblog.main.create_app``) and handed to
request handlers through ``request.app.state``. Everything it needs is passed
in: settings, the content provider, the shared HTTP client, and optionally
pre-built stores, a clock and a sleep function for tests.
"""

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Coroutine, Dict, List, Optional, Set

import httpx

from fedblog.core.config import Settings
from fedblog.core.config_store import ConfigStore
from fedblog.core.content import ContentProvider
from fedblog.core.errors import KeyUnavailable, MalformedInboundActivity
from fedblog.core.activitypub.directory import ActorDirectory
from fedblog.core.activitypub.federation import BroadcastResult, DeliveryWorker
from fedblog.core.activitypub.keys import KeyStore
from fedblog.core.activitypub.processor import DispatchResult, FollowResult, InboxDispatcher
from fedblog.core.activitypub.state import FederationState
from fedblog.models.activitypub import ContentItem, FollowActivity, UndoActivity, parse_activity

logger = logging.getLogger(__name__)


class FederationService:
    def __init__(
        self,
        settings: Settings,
        content_provider: ContentProvider,
        http_client: httpx.AsyncClient,
        config_store: Optional[ConfigStore] = None,
        key_store: Optional[KeyStore] = None,
        state: Optional[FederationState] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        data_dir = Path(settings.DATA_DIR)
        self.settings = settings
        self.content_provider = content_provider
        self.config_store = config_store or ConfigStore(Path(settings.ENV_FILE))
        self.key_store = key_store or KeyStore(data_dir, self.config_store, settings.KEY_LOCK_TIMEOUT)
        self.state = state or FederationState(data_dir, settings.ACTIVITY_LOG_LIMIT, clock)
        self.directory = ActorDirectory(settings, self.key_store, self.state)
        self.delivery = DeliveryWorker(settings, self.key_store, http_client, sleep=sleep)
        self.dispatcher = InboxDispatcher(
            settings,
            self.state,
            self.directory,
            self.delivery,
            content_provider,
            schedule=self._spawn,
            clock=clock,
            sleep=sleep,
        )
        self._tasks: Set[asyncio.Task] = set()

    # -- lifecycle ---------------------------------------------------------

    async def startup(self) -> None:
        """Load state and make sure the actor has keys; key failures are fatal."""
        self.state.load()
        self.key_store.on_keys_refreshed(
            lambda: logger.info("Actor %s is ready to sign", self.directory.actor_id)
        )
        await asyncio.to_thread(self.key_store.ensure_keys)
        if not self.key_store.has_keys():
            raise KeyUnavailable("Actor keys are not available after startup")

        self.content_provider.on_new_item(self._on_new_item)
        logger.info(
            "Federating as %s with %d followers, %d following, %d activities",
            self.directory.acct, len(self.state.followers),
            len(self.state.following), len(self.state.activities),
        )

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background federation task failed: %s", task.exception())

    @property
    def pending_tasks(self) -> List[asyncio.Task]:
        return list(self._tasks)

    def _on_new_item(self, item: ContentItem) -> None:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("New item %s published outside the event loop, not broadcasting", item.slug)
            return
        if item.is_wiki:
            self._spawn(self.broadcast_new_wiki_page(item))
        else:
            self._spawn(self.broadcast_new_post(item))

    # -- operations used by the outer application --------------------------

    def are_keys_available(self) -> bool:
        return self.key_store.has_keys()

    async def regenerate_keys(self) -> bool:
        return await asyncio.to_thread(self.key_store.regenerate)

    async def handle_inbound(self, payload: Any) -> DispatchResult:
        return await self.dispatcher.dispatch(payload)

    async def handle_follow(self, activity: Dict[str, Any], items: List[ContentItem]) -> FollowResult:
        parsed = parse_activity(activity)
        if not isinstance(parsed, FollowActivity):
            raise MalformedInboundActivity(f"Expected Follow, got {parsed.type}")
        return await self.dispatcher.handle_follow(parsed, items)

    async def handle_undo(self, activity: Dict[str, Any]) -> bool:
        parsed = parse_activity(activity)
        if not isinstance(parsed, UndoActivity):
            raise MalformedInboundActivity(f"Expected Undo, got {parsed.type}")
        return await self.dispatcher.handle_undo(parsed)

    async def broadcast_new_post(self, item: ContentItem) -> BroadcastResult:
        followers = self.state.followers
        logger.info("Broadcasting new post %r to %d followers", item.title, len(followers))
        return await self.delivery.broadcast(followers, self.directory.create_activity(item))

    async def broadcast_new_wiki_page(self, item: ContentItem) -> BroadcastResult:
        if not self.directory.federated_items([item]):
            logger.info("Wiki page %s is not federated, skipping broadcast", item.slug)
            return BroadcastResult(delivered=0, total=0)
        followers = self.state.followers
        logger.info("Broadcasting new wiki page %r to %d followers", item.title, len(followers))
        return await self.delivery.broadcast(followers, self.directory.create_activity(item))

    def snapshot(self) -> Dict[str, Any]:
        """Debug view of the federation state"""
        items = self.content_provider.list_content_items()
        return {
            "server": {
                "domain": self.settings.domain,
                "username": self.settings.FEDIVERSE_USERNAME,
                "displayName": self.settings.FEDIVERSE_DISPLAY_NAME,
                "baseUrl": self.settings.base_url,
                "publicKey": self.key_store.get_public_key() is not None,
                "privateKey": self.key_store.get_private_key() is not None,
            },
            "stats": {
                "followers": len(self.state.followers),
                "following": len(self.state.following),
                "activities": len(self.state.activities),
                "blogPosts": sum(1 for item in items if not item.is_wiki),
                "wikiPages": sum(1 for item in items if item.is_wiki),
                "pendingTasks": len(self._tasks),
            },
            "followers": self.state.followers,
            "following": self.state.following,
            "recentActivities": self.state.activities[-5:],
        }
