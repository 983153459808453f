"""Federation error taxonomy.

Each failure is raised where it is detected and handled at the nearest
boundary: a single failed delivery is logged and reported as ``False``, a
malformed inbound activity becomes a 400, a failed state save becomes a 500.
Only a key store that cannot persist its keys at startup stops the process.
"""


class FederationError(Exception):
    """Base class for federation failures."""


class KeyUnavailable(FederationError):
    """Public or private key missing for an operation that needs the identity."""


class RemoteFetchFailure(FederationError):
    """Remote actor could not be resolved to an inbox, or an inbox POST failed."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"{url}: {reason}")
        self.url = url
        self.reason = reason


class SignatureFailure(FederationError):
    """Outbound request could not be signed, or the remote rejected the signature."""


class PersistenceFailure(FederationError):
    """Durable write failed after retries."""


class MalformedInboundActivity(FederationError):
    """Inbound payload is not a usable ActivityStreams object."""
