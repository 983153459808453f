"""Content provider seam between the blog/wiki side and federation."""

import logging
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Tuple

import orjson

from fedblog.models.activitypub import ContentItem

logger = logging.getLogger(__name__)

NewItemCallback = Callable[[ContentItem], None]


class ContentProvider(Protocol):
    def list_content_items(self) -> List[ContentItem]:
        """All items, newest first."""
        ...

    def on_new_item(self, callback: NewItemCallback) -> None:
        ...


class InMemoryContentProvider:
    """Holds content items and reports newly published ones to subscribers."""

    def __init__(self, items: Optional[Iterable[ContentItem]] = None):
        self._items: Dict[Tuple[str, str], ContentItem] = {}
        self._callbacks: List[NewItemCallback] = []
        for item in items or []:
            self._items[(item.kind.value, item.slug)] = item

    @classmethod
    def from_json_file(cls, path: Path) -> "InMemoryContentProvider":
        """Seed from a JSON array of content items; a missing file gives an empty provider."""
        path = Path(path)
        try:
            data = orjson.loads(path.read_bytes())
        except FileNotFoundError:
            logger.warning("Content file %s not found, starting without content", path)
            return cls()
        items = [ContentItem.model_validate(entry) for entry in data]
        logger.info("Loaded %d content items from %s", len(items), path)
        return cls(items)

    def list_content_items(self) -> List[ContentItem]:
        return sorted(self._items.values(), key=lambda item: item.published, reverse=True)

    def on_new_item(self, callback: NewItemCallback) -> None:
        self._callbacks.append(callback)

    def publish(self, item: ContentItem) -> bool:
        """Add or replace an item; subscribers hear only about items not seen before."""
        key = (item.kind.value, item.slug)
        is_new = key not in self._items
        self._items[key] = item
        if is_new:
            logger.info("New %s item detected: %r", item.kind.value, item.title)
            for callback in list(self._callbacks):
                try:
                    callback(item)
                except Exception as e:
                    logger.error("New item callback failed for %s: %s", item.slug, e)
        return is_new
