"""
HTTP Signatures for outbound ActivityPub requests

Implements the draft-cavage-http-signatures profile used across the
fediverse: a SHA-256 body digest and an RSA-SHA256 (PKCS#1 v1.5) signature
over a fixed, ordered list of headers.
"""

import base64
import hashlib
import logging
from datetime import datetime
from email.utils import format_datetime, formatdate
from typing import Dict, Optional
from urllib.parse import urlsplit

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from fedblog.core.errors import SignatureFailure

logger = logging.getLogger(__name__)

ACTIVITY_CONTENT_TYPE = "application/activity+json"
SIGNED_HEADERS = ("(request-target)", "host", "date", "digest", "content-type")
ALGORITHM = "rsa-sha256"


def compute_digest(body: bytes) -> str:
    """Digest header value for ``body``: ``SHA-256=<base64>``"""
    return "SHA-256=" + base64.b64encode(hashlib.sha256(body).digest()).decode("ascii")


def http_date(now: Optional[datetime] = None) -> str:
    """RFC 1123 date for the Date header"""
    if now is None:
        return formatdate(timeval=None, localtime=False, usegmt=True)
    return format_datetime(now, usegmt=True)


def request_target(method: str, url: str) -> str:
    parsed = urlsplit(url)
    path = parsed.path or "/"
    if parsed.query:
        path += f"?{parsed.query}"
    return f"{method.lower()} {path}"


def build_signing_string(method: str, url: str, host: str, date: str, digest: str,
                         content_type: str = ACTIVITY_CONTENT_TYPE) -> str:
    values = {
        "(request-target)": request_target(method, url),
        "host": host,
        "date": date,
        "digest": digest,
        "content-type": content_type,
    }
    return "\n".join(f"{name}: {values[name]}" for name in SIGNED_HEADERS)


def _load_private_key(private_key_pem: str) -> rsa.RSAPrivateKey:
    try:
        key = serialization.load_pem_private_key(private_key_pem.encode("utf-8"), password=None)
    except (ValueError, TypeError) as e:
        raise SignatureFailure(f"Private key could not be loaded: {e}") from e
    if not isinstance(key, rsa.RSAPrivateKey):
        raise SignatureFailure("Private key is not an RSA key")
    return key


def sign_request(
    method: str,
    url: str,
    body: bytes,
    private_key_pem: Optional[str],
    key_id: str,
    now: Optional[datetime] = None,
    user_agent: Optional[str] = None,
) -> Optional[Dict[str, str]]:
    """
    Build the signed headers for an outbound request

    Args:
        method: HTTP method (e.g., "POST")
        url: Full target URL
        body: Exact bytes that will be transmitted
        private_key_pem: PKCS8 PEM private key; when missing no headers are produced
        key_id: keyId advertised in the Signature header ("<actor-id>#main-key")
        now: Fixed timestamp for the Date header, defaults to the current time

    Returns:
        dict of headers, or None if no private key is available

    Raises:
        SignatureFailure: the key could not be loaded or signing failed
    """
    if not private_key_pem:
        logger.error("No private key available for signing %s %s", method, url)
        return None

    key = _load_private_key(private_key_pem)

    host = urlsplit(url).netloc
    date = http_date(now)
    digest = compute_digest(body or b"")
    signing_string = build_signing_string(method, url, host, date, digest)

    try:
        signature = key.sign(signing_string.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
    except ValueError as e:
        raise SignatureFailure(f"Signing failed: {e}") from e

    signature_b64 = base64.b64encode(signature).decode("ascii")
    headers = {
        "Host": host,
        "Date": date,
        "Digest": digest,
        "Content-Type": ACTIVITY_CONTENT_TYPE,
        "Accept": ACTIVITY_CONTENT_TYPE,
        "Signature": (
            f'keyId="{key_id}",algorithm="{ALGORITHM}",'
            f'headers="{" ".join(SIGNED_HEADERS)}",signature="{signature_b64}"'
        ),
    }
    if user_agent:
        headers["User-Agent"] = user_agent
    return headers


def parse_signature_header(signature_header: str) -> Dict[str, str]:
    """Split a Signature header into its key="value" components"""
    components = {}
    for part in signature_header.split('",'):
        if "=" not in part:
            continue
        name, _, value = part.partition("=")
        components[name.strip()] = value.strip().strip('"')
    return components


def verify_signature(signing_string: str, signature_b64: str, public_key_pem: str) -> bool:
    """Check an RSA-SHA256 signature against a PEM public key"""
    try:
        key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        key.verify(
            base64.b64decode(signature_b64),
            signing_string.encode("utf-8"),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, ValueError, TypeError):
        return False
    return True
