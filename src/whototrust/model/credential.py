"""OAuth credential models.

A Credential is the token pair EVE SSO issues for one character. A
CredentialSet groups every character token authorized under a main character
and is the unit that gets encrypted and written to disk.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

EXPIRY_DELTA = timedelta(seconds=10)
"""Tokens are treated as expired this long before their actual expiry."""


class Credential(BaseModel):
    """OAuth token issued by EVE SSO for a single character."""

    access_token: str
    refresh_token: str = ""
    expiry: Optional[datetime] = None
    token_type: str = "Bearer"

    @property
    def expired(self) -> bool:
        if self.expiry is None:
            return False
        expiry = self.expiry
        if expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)
        return expiry - EXPIRY_DELTA <= datetime.now(timezone.utc)

    @property
    def valid(self) -> bool:
        return len(self.access_token) > 0 and not self.expired

    def overwrite(self, other: "Credential") -> None:
        """Replace every field of this credential with the values of ``other``."""
        for name in type(self).model_fields:
            setattr(self, name, getattr(other, name))

    @classmethod
    def from_token_response(
        cls,
        payload: Dict[str, Any],
        previous_refresh_token: str = "",
        now: Optional[datetime] = None,
    ) -> "Credential":
        """Build a credential from a token endpoint JSON body.

        Accepts either an absolute ``expiry`` or a relative ``expires_in``. When the
        provider omits the refresh token, the previous one stays in use.

        Raises:
            ValueError: If the payload has no access token
        """
        access_token = payload.get("access_token", None)
        if not access_token:
            raise ValueError("No access token")

        refresh_token = payload.get("refresh_token", None) or previous_refresh_token

        expiry = payload.get("expiry", None)
        expires_in = payload.get("expires_in", None)
        if expiry is None and expires_in is not None:
            if now is None:
                now = datetime.now(timezone.utc)
            expiry = now + timedelta(0, int(expires_in))

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            expiry=expiry,
            token_type=payload.get("token_type", None) or "Bearer",
        )


class CredentialSet(BaseModel):
    """Every character credential authorized under one main character."""

    main_identity: int
    tokens: Dict[int, Credential] = Field(default_factory=dict)
