import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Coroutine, Dict, List

from fedblog.core.config import Settings
from fedblog.core.activitypub.directory import ActorDirectory
from fedblog.core.activitypub.federation import DeliveryWorker
from fedblog.core.activitypub.state import FederationState
from fedblog.core.activitypub.utils import create_accept_activity
from fedblog.core.content import ContentProvider
from fedblog.models.activitypub import (
    AnnounceActivity,
    ContentItem,
    FollowActivity,
    InboundActivity,
    LikeActivity,
    UndoActivity,
    parse_activity,
)

logger = logging.getLogger(__name__)


class DispatchOutcome(str, Enum):
    FOLLOW_ACCEPT = "FollowAccept"
    UNFOLLOW_APPLIED = "UnfollowApplied"
    ARCHIVED = "Archived"


@dataclass
class DispatchResult:
    outcome: DispatchOutcome
    status_code: int
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass
class FollowResult:
    follower: str
    accept_delivered: bool
    accept_activity: Dict[str, Any]


class InboxDispatcher:
    """Classify inbound activities and apply their side effects.

    Every state change is persisted before ``dispatch`` returns; a
    PersistenceFailure propagates so the route can answer 500 and the
    remote server retries.
    """

    def __init__(
        self,
        settings: Settings,
        state: FederationState,
        directory: ActorDirectory,
        delivery: DeliveryWorker,
        content_provider: ContentProvider,
        schedule: Callable[[Coroutine[Any, Any, Any]], Any],
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.state = state
        self.directory = directory
        self.delivery = delivery
        self.content_provider = content_provider
        self._schedule = schedule
        self._clock = clock
        self._sleep = sleep

    async def dispatch(self, payload: Any) -> DispatchResult:
        """Raises MalformedInboundActivity for payloads that cannot be classified."""
        activity = parse_activity(payload)
        logger.info("Incoming %s from %s", activity.type, activity.actor)

        if isinstance(activity, FollowActivity):
            result = await self.handle_follow(activity, self.content_provider.list_content_items())
            message = "Follow accepted" if result.accept_delivered else "Follow accepted (Accept delivery failed)"
            return DispatchResult(DispatchOutcome.FOLLOW_ACCEPT, 202, {
                "message": message,
                "follower": result.follower,
                "totalFollowers": len(self.state.followers),
                "acceptDelivered": result.accept_delivered,
            })

        if isinstance(activity, UndoActivity) and activity.undoes_follow:
            await self.handle_undo(activity)
            return DispatchResult(DispatchOutcome.UNFOLLOW_APPLIED, 200, {
                "message": "Unfollow processed",
                "totalFollowers": len(self.state.followers),
            })

        await self.archive(activity)
        if isinstance(activity, LikeActivity):
            message = "Like received"
        elif isinstance(activity, AnnounceActivity):
            message = "Boost received"
        else:
            message = "Activity received"
        return DispatchResult(DispatchOutcome.ARCHIVED, 200, {"message": message})

    async def handle_follow(self, activity: FollowActivity, items: List[ContentItem]) -> FollowResult:
        follower = activity.actor
        await self.state.add_follower(follower)

        accept = create_accept_activity(self.settings, activity.raw, follower, self._clock())
        delivered = await self.delivery.deliver(follower, accept)
        if delivered:
            logger.info("Accept activity sent to %s", follower)
        else:
            logger.warning("Failed to send Accept activity to %s", follower)

        self._schedule(self.push_recent_content(follower, list(items)))
        return FollowResult(follower=follower, accept_delivered=delivered, accept_activity=accept)

    async def handle_undo(self, activity: UndoActivity) -> bool:
        if not activity.undoes_follow:
            return False
        logger.info("Processing Unfollow from %s", activity.actor)
        return await self.state.remove_follower(activity.actor)

    async def archive(self, activity: InboundActivity) -> None:
        logger.info("Archiving %s from %s", activity.type, activity.actor)
        await self.state.append_activity(activity.raw)

    def recent_content(self, follower: str, items: List[ContentItem]) -> List[Dict[str, Any]]:
        """Create activities for the newest posts and wiki pages, addressed to one follower."""
        blog = [item for item in items if not item.is_wiki][: self.settings.FOLLOW_PUSH_BLOG_LIMIT]
        wiki = [item for item in items if item.is_wiki]
        wiki = self.directory.federated_items(wiki)[: self.settings.FOLLOW_PUSH_WIKI_LIMIT]
        return [self.directory.create_activity(item, cc=[follower]) for item in blog + wiki]

    async def push_recent_content(self, follower: str, items: List[ContentItem]) -> int:
        activities = self.recent_content(follower, items)
        if not activities:
            logger.info("No content available to send to %s", follower)
            return 0

        await self._sleep(self.settings.FOLLOW_PUSH_INITIAL_DELAY)
        logger.info("Sending %d recent item(s) to new follower %s", len(activities), follower)
        sent = await self.delivery.deliver_each(follower, activities, self.settings.FOLLOW_PUSH_DELAY)
        logger.info("Content push completed: %d/%d items sent to %s", sent, len(activities), follower)
        return sent
