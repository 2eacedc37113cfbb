"""Identity providers: who is acting right now."""

from typing import Protocol

from .config import Settings
from .validation import normalize_email


class IdentityProvider(Protocol):
    """Source of the current participant."""

    def current_participant(self) -> str | None: ...


class SettingsIdentity:
    """Reads the current participant from configuration (CHIPIN_USER_EMAIL)."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def current_participant(self) -> str | None:
        if not self.settings.user_email:
            return None
        return normalize_email(self.settings.user_email)


class StaticIdentity:
    """A fixed participant, used for embedding and tests."""

    def __init__(self, email: str | None):
        self.email = normalize_email(email) if email else None

    def current_participant(self) -> str | None:
        return self.email
