"""Bearer-token authentication for the quiz HTTP routes."""
from dataclasses import dataclass
from typing import Dict, Optional
import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import config

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str = ""


class TokenVerifier:
    """Resolves bearer tokens to users from a static token table."""

    def __init__(self, tokens: Optional[Dict[str, SessionUser]] = None):
        self.tokens: Dict[str, SessionUser] = dict(tokens or {})

    @classmethod
    def from_config(cls, raw: str = "") -> "TokenVerifier":
        """Parse ``token=user_id:email`` entries separated by commas."""
        tokens = {}
        for entry in (raw or config.AUTH_TOKENS).split(","):
            entry = entry.strip()
            if not entry or "=" not in entry:
                continue
            token, user = entry.split("=", 1)
            user_id, _, email = user.partition(":")
            if token.strip() and user_id.strip():
                tokens[token.strip()] = SessionUser(id=user_id.strip(), email=email.strip())
        return cls(tokens)

    def register(self, token: str, user: SessionUser):
        self.tokens[token] = user

    def verify(self, token: str) -> Optional[SessionUser]:
        return self.tokens.get(token)


token_verifier = TokenVerifier.from_config()


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> SessionUser:
    """FastAPI dependency resolving the Authorization header to a user."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required: no auth header present")
    user = token_verifier.verify(credentials.credentials)
    if user is None:
        logger.info("Rejected unknown bearer token")
        raise HTTPException(status_code=401, detail="Authentication failed")
    return user
