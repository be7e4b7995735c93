"""Signed-in user sessions shared between the web process and the worker."""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from .job import CamelModel


class OAuthTokens(BaseModel):
    """Google OAuth token set as stored by the sign-in flow."""

    model_config = ConfigDict(extra="allow")

    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    expiry_date: Optional[int] = None  # Milliseconds since epoch
    scope: Optional[str] = None
    token_type: Optional[str] = None


class Session(CamelModel):
    """One browser session."""

    session_id: str
    authenticated: bool = False
    user_id: Optional[str] = None
    tokens: Optional[OAuthTokens] = None

    @property
    def is_usable(self) -> bool:
        """Authenticated and carrying tokens."""
        return self.authenticated and self.tokens is not None
