"""Read-side documents served for the site actor."""

from typing import Any, Dict, Iterable, List, Optional

from fedblog.core.config import Settings
from fedblog.core.activitypub.keys import KeyStore
from fedblog.core.activitypub.state import FederationState
from fedblog.core.activitypub.utils import (
    AS_CONTEXT,
    collection_url,
    content_url,
    create_actor_object,
    create_create_activity,
    generate_actor_id,
    isoformat,
)
from fedblog.models.activitypub import ContentItem

COLLECTION_KINDS = ("followers", "following")


def newest_first(items: Iterable[ContentItem]) -> List[ContentItem]:
    """Sort by publish time, newest first; equal timestamps keep their order."""
    return sorted(items, key=lambda item: item.published, reverse=True)


class ActorDirectory:
    def __init__(self, settings: Settings, key_store: KeyStore, state: FederationState):
        self.settings = settings
        self.key_store = key_store
        self.state = state

    @property
    def actor_id(self) -> str:
        return generate_actor_id(self.settings)

    @property
    def acct(self) -> str:
        return f"acct:{self.settings.FEDIVERSE_USERNAME}@{self.settings.domain}"

    def webfinger(self, resource: Optional[str]) -> Optional[Dict[str, Any]]:
        """JRD for our own acct: resource, None for anything else."""
        if resource != self.acct:
            return None
        return {
            "subject": self.acct,
            "aliases": [self.actor_id],
            "links": [
                {
                    "rel": "self",
                    "type": "application/activity+json",
                    "href": self.actor_id,
                },
                {
                    "rel": "http://webfinger.net/rel/profile-page",
                    "type": "text/html",
                    "href": self.settings.base_url,
                },
            ],
        }

    def actor_document(self) -> Optional[Dict[str, Any]]:
        """Person document, or None while either key is missing."""
        public_key = self.key_store.get_public_key()
        private_key = self.key_store.get_private_key()
        if not public_key or not private_key:
            return None
        return create_actor_object(self.settings, public_key)

    def federated_items(self, items: Iterable[ContentItem]) -> List[ContentItem]:
        """Items that may be federated: no wiki home page, wiki only when enabled."""
        include_wiki = self.settings.INCLUDE_WIKI_IN_ACTIVITYPUB
        return [
            item for item in items
            if not item.is_home_page and (include_wiki or not item.is_wiki)
        ]

    def create_activity(self, item: ContentItem, cc: Optional[List[str]] = None,
                        with_context: bool = True) -> Dict[str, Any]:
        return create_create_activity(self.settings, item, cc=cc, with_context=with_context)

    def outbox_document(self, items: Iterable[ContentItem]) -> Dict[str, Any]:
        items = list(items)
        blog = [item for item in items if not item.is_wiki]
        wiki = [item for item in items if item.is_wiki]
        selected = newest_first(self.federated_items(blog + wiki))
        activities = [self.create_activity(item, with_context=False) for item in selected]
        return {
            "@context": AS_CONTEXT,
            "type": "OrderedCollection",
            "id": collection_url(self.settings, "outbox"),
            "totalItems": len(activities),
            "orderedItems": activities,
        }

    def collection_document(self, kind: str) -> Dict[str, Any]:
        if kind not in COLLECTION_KINDS:
            raise ValueError(f"Unknown collection: {kind}")
        items = self.state.followers if kind == "followers" else self.state.following
        return {
            "@context": AS_CONTEXT,
            "type": "OrderedCollection",
            "id": collection_url(self.settings, kind),
            "totalItems": len(items),
            "orderedItems": items,
        }

    def inbox_summary(self) -> Dict[str, Any]:
        return {
            "@context": AS_CONTEXT,
            "type": "OrderedCollection",
            "id": f"{self.settings.base_url}/inbox",
            "totalItems": len(self.state.activities),
            "summary": (
                f"ActivityPub inbox. {len(self.state.followers)} followers. "
                "Follow requests automatically accepted."
            ),
        }

    def json_feed(self, items: Iterable[ContentItem]) -> Dict[str, Any]:
        """JSON Feed 1.1 of blog posts and wiki pages (home page excluded)"""
        base_url = self.settings.base_url
        items = list(items)
        entries = []
        for item in [i for i in items if not i.is_wiki] + [i for i in items if i.is_wiki]:
            if item.is_home_page:
                continue
            url = content_url(self.settings, item)
            if item.is_wiki:
                title = f"📖 {item.title}"
                tags = ([f"wiki-{item.category}"] if item.category else []) + list(item.tags)
            else:
                title = item.title
                tags = list(item.tags)
            entries.append((item, {
                "id": url,
                "url": url,
                "title": title,
                "content_html": item.content_html,
                "summary": item.summary,
                "date_published": isoformat(item.published),
                "tags": tags,
                "_type": item.kind.value,
            }))

        entries.sort(key=lambda entry: entry[0].published, reverse=True)

        return {
            "version": "https://jsonfeed.org/version/1.1",
            "title": self.settings.FEDIVERSE_DISPLAY_NAME,
            "home_page_url": base_url,
            "feed_url": f"{base_url}/feed.json",
            "description": self.settings.FEDIVERSE_DESCRIPTION,
            "icon": f"{base_url}/assets/img/avatar.jpg",
            "authors": [{
                "name": self.settings.FEDIVERSE_DISPLAY_NAME,
                "url": base_url,
            }],
            "items": [entry for _, entry in entries],
        }
