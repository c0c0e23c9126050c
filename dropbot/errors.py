from __future__ import annotations


class DropBotError(Exception):
    """Base exception for failures reported back to command callers."""


class InvalidDurationError(DropBotError, ValueError):
    """Raised when a time interval string is unparseable or too short."""


class InvalidSetupError(DropBotError, ValueError):
    """Raised when a mystery box setup is missing required values."""


class NotConfiguredError(DropBotError):
    """Raised when an operation needs a mystery box setup that does not exist."""


class AlreadyRunningError(DropBotError):
    """Raised when starting a schedule that already has a drop pending."""


class NotRunningError(DropBotError):
    """Raised when asking for the next drop of a schedule that is not armed."""


class ChannelUnavailableError(DropBotError):
    """Raised when a target channel or message can no longer be reached."""


class MessagingError(DropBotError):
    """Raised when Discord rejects a send or edit for a transient reason."""


class ClaimNotFoundError(DropBotError):
    """Raised when no claim matches the guild, user and claim id."""


class AlreadyUsedError(DropBotError):
    """Raised when redeeming a claim that is already marked used."""


class PersistenceError(DropBotError):
    """Raised when the backing table is unreachable or a write fails."""


class ClaimTokenCollisionError(PersistenceError):
    """Raised when a freshly generated claim id already exists."""


class CountdownExistsError(DropBotError):
    """Raised when a channel already has an active countdown."""


__all__ = [
    "DropBotError",
    "InvalidDurationError",
    "InvalidSetupError",
    "NotConfiguredError",
    "AlreadyRunningError",
    "NotRunningError",
    "ChannelUnavailableError",
    "MessagingError",
    "ClaimNotFoundError",
    "AlreadyUsedError",
    "PersistenceError",
    "ClaimTokenCollisionError",
    "CountdownExistsError",
]
