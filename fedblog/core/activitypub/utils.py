import uuid
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List
from urllib.parse import quote
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fedblog.core.config import Settings
from fedblog.models.activitypub import ContentItem

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"
PUBLIC_COLLECTION = "https://www.w3.org/ns/activitystreams#Public"

def isoformat(value: datetime) -> str:
    """ISO 8601 in UTC with millisecond precision and a Z suffix"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def generate_actor_id(settings: Settings) -> str:
    """Actor ID of the site actor"""
    return f"{settings.base_url}/actor.json"

def generate_key_id(settings: Settings) -> str:
    return f"{generate_actor_id(settings)}#main-key"

def collection_url(settings: Settings, name: str) -> str:
    """URL of one of the actor's collections (outbox, followers, following)"""
    return f"{settings.base_url}/{name}.json"

def generate_activity_id(settings: Settings, activity_type: str) -> str:
    """Unique ID for a synthesized activity"""
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    unique_id = str(uuid.uuid4())[:8]
    return f"{settings.base_url}/activities/{activity_type.lower()}/{timestamp}-{unique_id}"

def content_url(settings: Settings, item: ContentItem) -> str:
    return f"{settings.base_url}/{item.kind.value}/{item.slug}"

def create_actor_object(settings: Settings, public_key_pem: str) -> Dict[str, Any]:
    """Person document for the site actor"""
    actor_id = generate_actor_id(settings)

    return {
        "@context": [
            AS_CONTEXT,
            SECURITY_CONTEXT
        ],
        "id": actor_id,
        "type": "Person",
        "preferredUsername": settings.FEDIVERSE_USERNAME,
        "name": settings.FEDIVERSE_DISPLAY_NAME,
        "summary": settings.FEDIVERSE_DESCRIPTION,
        "url": settings.base_url,
        "icon": {
            "type": "Image",
            "mediaType": "image/jpeg",
            "url": f"{settings.base_url}/assets/img/avatar.jpg"
        },
        "inbox": f"{settings.base_url}/inbox",
        "outbox": collection_url(settings, "outbox"),
        "followers": collection_url(settings, "followers"),
        "following": collection_url(settings, "following"),
        "publicKey": {
            "id": generate_key_id(settings),
            "owner": actor_id,
            "publicKeyPem": public_key_pem
        },
        "manuallyApprovesFollowers": False,
        "discoverable": True,
        "indexable": True,
        "alsoKnownAs": []
    }

def generate_key_pair() -> tuple[str, str]:
    """Generate an RSA key pair, returned as (public SPKI PEM, private PKCS8 PEM)"""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )

    public_key = private_key.public_key()

    public_pem = public_key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo
    ).decode('utf-8')

    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption()
    ).decode('utf-8')

    return public_pem, private_pem

def _hashtag(name: str, href: str) -> Dict[str, str]:
    return {"type": "Hashtag", "href": href, "name": f"#{name}"}

def create_article_tags(settings: Settings, item: ContentItem) -> List[Dict[str, str]]:
    base = f"{settings.base_url}/{item.kind.value}"
    tags = []
    if item.is_wiki:
        tags.append(_hashtag("wiki", base))
        if item.category:
            tags.append(_hashtag(item.category, f"{base}?category={quote(item.category, safe='')}"))
    tags.extend(_hashtag(tag, f"{base}?tag={quote(tag, safe='')}") for tag in item.tags)
    return tags

def create_article_object(
    settings: Settings,
    item: ContentItem,
    cc: Optional[List[str]] = None
) -> Dict[str, Any]:
    """Article object for a blog post or wiki page"""
    url = content_url(settings, item)
    published = isoformat(item.published)

    if item.is_wiki:
        name = f"📖 {item.title}"
        summary = item.summary or f"Wiki page: {item.title}"
    else:
        name = item.title
        summary = item.summary

    return {
        "type": "Article",
        "id": url,
        "url": url,
        "name": name,
        "content": item.content_html,
        "summary": summary,
        "published": published,
        "attributedTo": generate_actor_id(settings),
        "to": [PUBLIC_COLLECTION],
        "cc": cc if cc is not None else [collection_url(settings, "followers")],
        "mediaType": "text/html",
        "tag": create_article_tags(settings, item)
    }

def create_create_activity(
    settings: Settings,
    item: ContentItem,
    cc: Optional[List[str]] = None,
    with_context: bool = True
) -> Dict[str, Any]:
    """Create(Article) wrapper; ``cc`` defaults to the followers collection"""
    article = create_article_object(settings, item, cc)

    activity = {
        "type": "Create",
        "id": f"{settings.base_url}/activities/{item.kind.value}/{item.slug}",
        "actor": generate_actor_id(settings),
        "published": article["published"],
        "to": article["to"],
        "cc": article["cc"],
        "object": article
    }

    if with_context:
        activity = {"@context": AS_CONTEXT, **activity}

    return activity

def create_accept_activity(
    settings: Settings,
    follow: Dict[str, Any],
    follower: str,
    published: datetime
) -> Dict[str, Any]:
    """Accept(Follow) sent back to a new follower"""
    return {
        "@context": AS_CONTEXT,
        "type": "Accept",
        "id": generate_activity_id(settings, "accept"),
        "actor": generate_actor_id(settings),
        "object": follow,
        "to": [follower],
        "published": isoformat(published)
    }
