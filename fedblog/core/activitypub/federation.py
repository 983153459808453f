"""Outbound delivery: resolve a remote inbox, sign, POST.

Broadcasts run sequentially with a fixed pause between deliveries so remote
inboxes see a paced stream and the log reads in order. Do not parallelise
the loop without adding a concurrency cap and jittered backoff.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List

import httpx
import orjson

from fedblog.core.config import Settings
from fedblog.core.errors import KeyUnavailable, RemoteFetchFailure, SignatureFailure
from fedblog.core.activitypub.keys import KeyStore
from fedblog.core.activitypub.signature import sign_request
from fedblog.core.activitypub.utils import generate_key_id

logger = logging.getLogger(__name__)

ACTOR_ACCEPT = 'application/activity+json, application/ld+json; profile="https://www.w3.org/ns/activitystreams"'


@dataclass
class BroadcastResult:
    delivered: int
    total: int

    @property
    def failed(self) -> int:
        return self.total - self.delivered


def is_signature_rejection(status_code: int, body: str) -> bool:
    return status_code in (401, 403) or "signature" in body.lower()


class DeliveryWorker:
    def __init__(
        self,
        settings: Settings,
        key_store: KeyStore,
        client: httpx.AsyncClient,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.key_store = key_store
        self.client = client
        self.timeout = httpx.Timeout(settings.DELIVERY_TIMEOUT)
        self._sleep = sleep

    async def fetch_inbox(self, actor_uri: str) -> str:
        """Resolve a remote actor's inbox URL"""
        try:
            response = await self.client.get(
                actor_uri,
                headers={"Accept": ACTOR_ACCEPT, "User-Agent": self.settings.USER_AGENT},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise RemoteFetchFailure(actor_uri, f"network error: {e}") from e

        if not response.is_success:
            raise RemoteFetchFailure(actor_uri, f"actor fetch returned {response.status_code}")

        try:
            actor_data = response.json()
        except ValueError as e:
            raise RemoteFetchFailure(actor_uri, "actor document is not valid JSON") from e

        inbox = actor_data.get("inbox") if isinstance(actor_data, dict) else None
        if not isinstance(inbox, str) or not inbox:
            raise RemoteFetchFailure(actor_uri, "no inbox in actor document")
        return inbox

    def _signed_headers(self, inbox_url: str, body: bytes) -> Dict[str, str]:
        if not self.key_store.get_public_key():
            raise KeyUnavailable("No published public key, remote servers could not verify the signature")
        private_key = self.key_store.get_private_key()
        if not private_key:
            raise KeyUnavailable("No private key for signing")
        headers = sign_request(
            "POST",
            inbox_url,
            body,
            private_key,
            generate_key_id(self.settings),
            user_agent=self.settings.USER_AGENT,
        )
        if headers is None:
            raise SignatureFailure("Signing produced no headers")
        return headers

    async def _post(self, inbox_url: str, body: bytes, headers: Dict[str, str]) -> None:
        try:
            response = await self.client.post(inbox_url, content=body, headers=headers, timeout=self.timeout)
        except httpx.HTTPError as e:
            raise RemoteFetchFailure(inbox_url, f"network error: {e}") from e

        logger.info("Inbox %s responded %s", inbox_url, response.status_code)
        if response.is_success:
            return

        text = response.text[:500]
        if is_signature_rejection(response.status_code, text):
            raise SignatureFailure(
                f"{inbox_url} rejected the signature ({response.status_code}): {text}"
            )
        raise RemoteFetchFailure(inbox_url, f"inbox returned {response.status_code}: {text}")

    async def deliver(self, destination: str, activity: Dict[str, Any]) -> bool:
        """Deliver ``activity`` to the actor at ``destination``; never raises for remote failures."""
        if not self.key_store.has_keys():
            logger.error("Keys unavailable, not delivering %s to %s", activity.get("type"), destination)
            return False

        logger.info("Sending %s to %s", activity.get("type"), destination)
        try:
            inbox_url = await self.fetch_inbox(destination)
            body = orjson.dumps(activity)
            headers = self._signed_headers(inbox_url, body)
            await self._post(inbox_url, body, headers)
        except KeyUnavailable as e:
            logger.error("Delivery to %s aborted: %s", destination, e)
            return False
        except SignatureFailure as e:
            logger.error("Signature problem delivering to %s: %s", destination, e)
            return False
        except RemoteFetchFailure as e:
            logger.warning("Delivery to %s failed: %s", destination, e)
            return False
        return True

    async def broadcast(self, recipients: Iterable[str], activity: Dict[str, Any]) -> BroadcastResult:
        """Deliver one activity to each recipient in turn, pausing between deliveries."""
        recipients = list(recipients)
        if not recipients:
            logger.info("No followers to broadcast to")
            return BroadcastResult(delivered=0, total=0)

        delivered = 0
        for recipient in recipients:
            try:
                if await self.deliver(recipient, activity):
                    delivered += 1
            except Exception as e:
                logger.error("Error broadcasting to %s: %s", recipient, e)
            await self._sleep(self.settings.BROADCAST_DELAY)

        logger.info("Broadcast complete: %d/%d successful", delivered, len(recipients))
        return BroadcastResult(delivered=delivered, total=len(recipients))

    async def deliver_each(self, destination: str, activities: List[Dict[str, Any]], delay: float) -> int:
        """Deliver several activities to one actor in order; returns how many succeeded."""
        sent = 0
        for activity in activities:
            try:
                if await self.deliver(destination, activity):
                    sent += 1
            except Exception as e:
                logger.error("Error delivering %s to %s: %s", activity.get("id"), destination, e)
            await self._sleep(delay)
        return sent
