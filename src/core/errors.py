"""Error taxonomy shared by the core and adapters.

Adapters translate library exceptions (httpx, cryptography, Telethon) into
these types so the scheduler can decide what is fatal and what only skips a
single subscriber for this round.
"""

from __future__ import annotations


class RocketNotifyError(Exception):
    """Base class for all rocketnotify errors."""


class ConfigError(RocketNotifyError):
    """A required secret or setting is missing at startup."""


class AuthError(RocketNotifyError):
    """Login was rejected or returned no usable credentials."""


class AuthExpiredError(AuthError):
    """The backend answered 401 for a previously valid session."""


class ReauthRequiredError(AuthError):
    """The session expired and no password is retained to log in again."""


class BackendUnavailableError(RocketNotifyError):
    """The backend kept failing after all retry attempts."""


class DecryptionError(RocketNotifyError):
    """A stored secret could not be decrypted (corrupt value or key mismatch)."""


class DeliveryError(RocketNotifyError):
    """The notification could not be delivered to the messaging platform."""
