"""Content items supplied to federation and the inbound activity variants."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fedblog.core.errors import MalformedInboundActivity

HOME_PAGE_SLUGS = frozenset({"home", "index"})


class ContentKind(str, Enum):
    BLOG = "blog"
    WIKI = "wiki"


class ContentItem(BaseModel):
    """A blog post or wiki page as handed over by the content provider."""

    model_config = ConfigDict(frozen=True)

    slug: str
    title: str
    content_html: str = ""
    summary: Optional[str] = None
    published: datetime
    tags: List[str] = Field(default_factory=list)
    kind: ContentKind = ContentKind.BLOG
    category: Optional[str] = None

    @field_validator("published")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_wiki(self) -> bool:
        return self.kind == ContentKind.WIKI

    @property
    def is_home_page(self) -> bool:
        return self.is_wiki and self.slug in HOME_PAGE_SLUGS


class _Activity(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: str
    actor: Optional[str] = None
    raw: Dict[str, Any]


class FollowActivity(_Activity):
    kind: Literal["Follow"] = "Follow"
    actor: str


class UndoActivity(_Activity):
    kind: Literal["Undo"] = "Undo"
    actor: str
    undoes_follow: bool = False


class LikeActivity(_Activity):
    kind: Literal["Like"] = "Like"


class AnnounceActivity(_Activity):
    kind: Literal["Announce"] = "Announce"


class CreateActivity(_Activity):
    kind: Literal["Create"] = "Create"


class OtherActivity(_Activity):
    """Any vocabulary we do not interpret; kept verbatim for the activity log."""

    kind: Literal["Other"] = "Other"


InboundActivity = Union[
    FollowActivity, UndoActivity, LikeActivity, AnnounceActivity, CreateActivity, OtherActivity
]

_SIMPLE_VARIANTS = {
    "Like": LikeActivity,
    "Announce": AnnounceActivity,
    "Create": CreateActivity,
}


def object_id(value: Any) -> Optional[str]:
    """Return the id of an ActivityStreams reference, inline or by URI."""
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("id"), str):
        return value["id"]
    return None


def parse_activity(payload: Any) -> InboundActivity:
    """Classify a decoded inbox payload.

    Raises MalformedInboundActivity for non-objects, a missing type, or a
    Follow/Undo that does not name its actor.
    """
    if not isinstance(payload, dict):
        raise MalformedInboundActivity("Activity must be a JSON object")

    activity_type = payload.get("type")
    if not isinstance(activity_type, str) or not activity_type:
        raise MalformedInboundActivity("Activity has no type")

    actor = object_id(payload.get("actor"))

    if activity_type == "Follow":
        if not actor:
            raise MalformedInboundActivity("Follow activity has no actor")
        return FollowActivity(type=activity_type, actor=actor, raw=payload)

    if activity_type == "Undo":
        if not actor:
            raise MalformedInboundActivity("Undo activity has no actor")
        inner = payload.get("object")
        undoes_follow = isinstance(inner, dict) and inner.get("type") == "Follow"
        return UndoActivity(type=activity_type, actor=actor, undoes_follow=undoes_follow, raw=payload)

    variant = _SIMPLE_VARIANTS.get(activity_type, OtherActivity)
    return variant(type=activity_type, actor=actor, raw=payload)
