"""Identity extraction from a bearer token's claims."""

import logging
from dataclasses import dataclass, field

import jwt

from log_tailer.errors import CredentialError

logger = logging.getLogger(__name__)

IDENTITY_CLAIMS = ("userId", "sub")


@dataclass(frozen=True)
class Credentials:
    identity: str
    claims: dict = field(default_factory=dict)


def resolve_credentials(token: str) -> Credentials:
    """Decode the token's claims and pick the caller identity.

    The signature is not checked here; the sink verifies the token on every
    request. Identity is ``userId``, falling back to ``sub``.
    """
    if not token or not token.strip():
        raise CredentialError("cannot get credentials for blank token")

    try:
        claims = jwt.decode(token.strip(), options={"verify_signature": False})
    except jwt.PyJWTError as e:
        raise CredentialError(f"could not decode token: {e}") from e

    identity = None
    for name in IDENTITY_CLAIMS:
        if claims.get(name):
            identity = str(claims[name])
            break
    if identity is None:
        raise CredentialError("could not get user id from token")

    logger.debug("Resolved identity %s from token", identity)
    return Credentials(identity=identity, claims=claims)


def resolve_foreign_key(credentials: Credentials, claim: str, explicit_value: str | None = None) -> str:
    """Return the foreign-key value: explicit_value if given, else the named claim."""
    if explicit_value:
        return explicit_value
    value = credentials.claims.get(claim)
    if value is None or value == "":
        raise CredentialError(f"token has no {claim!r} claim and no explicit value was given")
    return str(value)
