"""Resolve the acting identity from identity-provider bearer tokens.

Credentials are issued elsewhere; this module only verifies the signature
and turns the claims into an :class:`Actor`.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from chatcollab.core.config import Settings
from chatcollab.core.errors import Unauthenticated

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    id: str
    name: str
    email: str = ""
    avatar_url: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or "Unknown"


def decode_actor(token: str, settings: Settings) -> Actor:
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as exc:
        raise Unauthenticated("Invalid token") from exc
    subject = payload.get("sub")
    if not subject:
        raise Unauthenticated("Invalid token")
    return Actor(
        id=str(subject),
        name=payload.get("name") or "Unknown",
        email=(payload.get("email") or "").strip().lower(),
        avatar_url=payload.get("picture"),
    )


def create_identity_token(actor: Actor, settings: Settings) -> str:
    """Sign an identity token the way the upstream provider does (dev/test helper)."""
    claims = {"sub": actor.id, "name": actor.name, "email": actor.email}
    if actor.avatar_url:
        claims["picture"] = actor.avatar_url
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def get_optional_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Optional[Actor]:
    if credentials is None or not credentials.credentials:
        return None
    return decode_actor(credentials.credentials, request.app.state.settings)


def get_current_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise Unauthenticated("Not authenticated")
    return actor
