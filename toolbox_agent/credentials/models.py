"""OAuth credential bundle models.

Bundles are ephemeral: they exist between a broker fetch and the
injection that consumes them, and are cleared right after.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, SecretStr


class ProviderCredential(BaseModel):
    """Tokens for one OAuth provider."""

    model_config = ConfigDict(populate_by_name=True)

    access_token: SecretStr = Field(alias="accessToken")
    refresh_token: SecretStr | None = Field(default=None, alias="refreshToken")
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    scopes: list[str] = Field(default_factory=list)


class OAuthCredentialBundle(BaseModel):
    """Map of provider id to credentials, as returned by the broker."""

    credentials: dict[str, ProviderCredential] = Field(default_factory=dict)

    def __repr__(self) -> str:
        return f"OAuthCredentialBundle(providers={sorted(self.credentials)})"

    __str__ = __repr__

    @property
    def providers(self) -> list[str]:
        """Provider ids present in the bundle."""
        return sorted(self.credentials)

    def earliest_expiry(self) -> datetime | None:
        """Earliest declared token expiry, or None if no token declares one."""
        expiries = [c.expires_at for c in self.credentials.values() if c.expires_at]
        return min(expiries) if expiries else None

    def clear(self) -> None:
        """Drop all tokens held by this bundle."""
        self.credentials.clear()

    def is_empty(self) -> bool:
        """Whether the bundle holds no credentials."""
        return not self.credentials
