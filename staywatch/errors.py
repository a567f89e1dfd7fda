"""Exception types shared across the pipeline."""

from typing import Optional


class StaywatchError(Exception):
    """Base class for staywatch errors."""


class ProviderNotFoundError(StaywatchError):
    """No adapter is registered for a provider code."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"No adapter found for provider: {code}")


class ProviderDisabledError(StaywatchError):
    """Provider is switched off by configuration."""

    def __init__(self, code: str):
        self.code = code
        super().__init__(f"Provider disabled: {code}")


class ProviderFetchError(StaywatchError):
    """Provider page or API could not be retrieved."""

    def __init__(self, message: str, url: Optional[str] = None, http_status: Optional[int] = None):
        self.url = url
        self.http_status = http_status
        super().__init__(message)


class ProviderTimeoutError(ProviderFetchError):
    """Provider did not respond in time."""


class ProviderBlockedError(ProviderFetchError):
    """Provider refused the request (403/429, bot challenge or strict robots)."""


class ProviderParseError(ProviderFetchError):
    """Page was retrieved but extraction failed."""


class ProfileIncompleteError(StaywatchError):
    """Holiday profile lacks a field needed to build a search."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(f"Profile incomplete, missing: {', '.join(missing)}")


class NotificationError(StaywatchError):
    """Notification sender failed to deliver."""


class ProfileNotFoundError(StaywatchError):
    """Profile does not exist or belongs to another user."""

    def __init__(self, profile_id: int):
        self.profile_id = profile_id
        super().__init__(f"Profile not found: {profile_id}")
